"""
Scriptable pinger for exercising the dispatcher without sockets
"""

import threading
from dataclasses import dataclass
from typing import Callable, Optional

from ..models import IPVersion
from .base import BasePinger


PingFunc = Callable[[str, float, Optional[threading.Event]], Optional[float]]


@dataclass
class PingCall:
    """One recorded ping() call"""
    address: str
    timeout: float


class FakePinger(BasePinger):
    """
    ping_func(address, timeout, cancel) decides each answer.
    Default: every ping succeeds with 10ms latency.
    """

    def __init__(self, ping_func: Optional[PingFunc] = None,
                 close_error: Optional[Exception] = None):
        self.ping_func = ping_func or (lambda address, timeout, cancel: 10.0)
        self.close_error = close_error
        self.calls: list[PingCall] = []
        self.closed = False
        self._lock = threading.Lock()

    def ping(self, address: str, timeout: float,
             cancel: Optional[threading.Event] = None) -> Optional[float]:
        with self._lock:
            self.calls.append(PingCall(address=address, timeout=timeout))
        return self.ping_func(address, timeout, cancel)

    def close(self):
        with self._lock:
            self.closed = True
        if self.close_error is not None:
            raise self.close_error

    @property
    def call_count(self) -> int:
        with self._lock:
            return len(self.calls)


class FakePingerFactory:
    """Records create_pinger() calls and hands out FakePingers"""

    def __init__(self, pinger: Optional[BasePinger] = None,
                 error: Optional[Exception] = None):
        self.pinger = pinger
        self.error = error
        self.calls: list[IPVersion] = []
        self.created: list[BasePinger] = []
        self._lock = threading.Lock()

    def create_pinger(self, ip_version: IPVersion) -> BasePinger:
        with self._lock:
            self.calls.append(ip_version)
            if self.error is not None:
                raise self.error
            pinger = self.pinger if self.pinger is not None else FakePinger()
            self.created.append(pinger)
            return pinger
