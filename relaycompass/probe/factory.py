"""
Platform pinger selection
"""

import sys

from ..models import IPVersion
from .base import BasePinger


def create_pinger(ip_version: IPVersion = IPVersion.IPV4) -> BasePinger:
    """Factory function to create the appropriate pinger for the current OS"""
    if sys.platform == 'win32':
        from .windows import WindowsPinger
        return WindowsPinger(ip_version)

    from .manager import SocketManager
    return SocketManager(ip_version)


class PingerFactory:
    """Creates pingers; the dispatcher only talks to this interface"""

    def create_pinger(self, ip_version: IPVersion) -> BasePinger:
        return create_pinger(ip_version)
