"""
Exception hierarchy for RelayCompass
"""

from typing import Optional


class CompassError(Exception):
    """Base class for RelayCompass errors"""
    pass


class RelayFileError(CompassError):
    """relays.json could not be located, read or parsed"""
    pass


class APIError(CompassError):
    """Structured error from the location API client"""

    def __init__(self, message: str, status_code: Optional[int] = None,
                 retriable: bool = False):
        super().__init__(message)
        self.status_code = status_code
        self.retriable = retriable

    def __str__(self) -> str:
        message = super().__str__()
        if self.status_code:
            return f"API error (status {self.status_code}): {message}"
        return f"API error: {message}"


class ListenerClosedError(CompassError, RuntimeError):
    """A pinger was used after close()"""
    pass


class OperationCancelled(CompassError):
    """The operation was cancelled by the caller"""

    def __init__(self, message: str = "operation cancelled"):
        super().__init__(message)


class ScanCancelled(OperationCancelled):
    """
    A ping scan was cancelled.

    Carries whatever results were gathered before cancellation so the caller
    can tell an aborted scan apart from one that found nothing.
    """

    def __init__(self, results: list):
        super().__init__(f"scan cancelled after {len(results)} results")
        self.results = results
