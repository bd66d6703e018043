"""
ICMP latency engine for RelayCompass
"""

from .base import BasePinger
from .channels import ProbeChannels
from .dispatcher import Dispatcher, ping_locations
from .factory import PingerFactory, create_pinger
from .fake import FakePinger, FakePingerFactory

__all__ = [
    'BasePinger', 'ProbeChannels', 'Dispatcher', 'ping_locations',
    'PingerFactory', 'create_pinger', 'FakePinger', 'FakePingerFactory',
]
