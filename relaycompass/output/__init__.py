"""
Output modules for RelayCompass
"""

from .console import ConsoleOutput, sort_by_latency

__all__ = ['ConsoleOutput', 'sort_by_latency']
