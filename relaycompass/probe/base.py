"""
Abstract base class for pinger implementations
"""

import threading
from abc import ABC, abstractmethod
from typing import Optional


class BasePinger(ABC):
    """Abstract base class for ICMP pingers"""

    @abstractmethod
    def ping(self, address: str, timeout: float,
             cancel: Optional[threading.Event] = None) -> Optional[float]:
        """
        Send one echo request and wait for the matching reply.

        Args:
            address: Target IP literal of the pinger's address family
            timeout: Seconds to wait for the reply
            cancel: Event that aborts the wait when set

        Returns:
            Round-trip time in milliseconds, or None on timeout, error,
            invalid address or cancellation
        """
        pass

    @abstractmethod
    def close(self):
        """Release the socket or handle"""
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
