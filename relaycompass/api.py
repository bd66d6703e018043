"""
Caller location lookup via the Mullvad "am I Mullvad" API
"""

import logging
import queue
import threading
from typing import Optional

import httpx

from . import __version__
from .errors import APIError, OperationCancelled
from .models import UserLocation


logger = logging.getLogger(__name__)


# How often a pending request looks at its cancel event (seconds)
CANCEL_CHECK_INTERVAL = 0.05


def is_retriable_status(status_code: int) -> bool:
    """Statuses worth another attempt"""
    return status_code in (408, 429, 503) or status_code >= 500


class LocationClient:
    """
    Client for https://am.i.mullvad.net/json.

    Retries network errors and retriable statuses with exponential
    backoff (retry_delay, 2 * retry_delay, ...).
    """

    API_URL = "https://am.i.mullvad.net/json"

    def __init__(
        self,
        url: str = API_URL,
        timeout: float = 10.0,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        version: str = __version__,
        transport: Optional[httpx.BaseTransport] = None
    ):
        self.url = url
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._client = httpx.Client(
            timeout=timeout,
            transport=transport,
            headers={'User-Agent': f"relaycompass/{version}"},
        )

    def get_user_location(self, cancel: Optional[threading.Event] = None) -> UserLocation:
        """
        Fetch the caller's geographic location.

        Raises:
            APIError: every attempt failed, or a non-retriable error occurred
            OperationCancelled: `cancel` was set during a request or while
                waiting to retry
        """
        cancel = cancel or threading.Event()
        last_error: Optional[Exception] = None
        attempts = 0

        logger.debug("Fetching user location from %s (max retries: %d)", self.url, self.max_retries)

        for attempt in range(self.max_retries + 1):
            if attempt > 0:
                delay = self.retry_delay * (2 ** (attempt - 1))
                logger.warning(
                    "Retrying API request (attempt %d/%d) after %.1fs delay",
                    attempt + 1, self.max_retries + 1, delay
                )
                if cancel.wait(delay):
                    logger.error("API request cancelled")
                    raise OperationCancelled("location lookup cancelled")

            attempts += 1
            try:
                location = self._fetch_or_cancel(cancel)
            except APIError as e:
                last_error = e
                if not e.retriable:
                    logger.error("Non-retriable API error: %s", e)
                    break
                logger.warning("Retriable API error on attempt %d: %s", attempt + 1, e)
                continue
            except httpx.HTTPError as e:
                last_error = e
                logger.warning("Network error on attempt %d: %s", attempt + 1, e)
                continue

            logger.info(
                "Fetched user location: %s, %s (%.4f, %.4f)",
                location.city, location.country, location.latitude, location.longitude
            )
            return location

        logger.error("Failed to fetch user location after %d attempts: %s", attempts, last_error)
        raise APIError(f"failed after {attempts} attempts: {last_error}")

    def _fetch_or_cancel(self, cancel: threading.Event) -> UserLocation:
        """
        Run one attempt on a worker thread so `cancel` can abandon it.

        An abandoned request finishes in the background, bounded by the
        client timeout; its outcome is discarded.
        """
        outcome: queue.Queue = queue.Queue(maxsize=1)

        def attempt():
            try:
                outcome.put_nowait((self._fetch(), None))
            except Exception as e:
                outcome.put_nowait((None, e))

        threading.Thread(target=attempt, name="location-fetch", daemon=True).start()

        while True:
            if cancel.is_set():
                logger.error("API request cancelled")
                raise OperationCancelled("location lookup cancelled")
            try:
                location, error = outcome.get(timeout=CANCEL_CHECK_INTERVAL)
            except queue.Empty:
                continue
            if error is not None:
                raise error
            return location

    def _fetch(self) -> UserLocation:
        """Single attempt"""
        logger.debug("Sending GET request to %s", self.url)
        response = self._client.get(self.url)
        logger.debug("Received HTTP %d response", response.status_code)

        if response.status_code != 200:
            raise APIError(
                f"unexpected status code {response.status_code}",
                status_code=response.status_code,
                retriable=is_retriable_status(response.status_code),
            )

        content_type = response.headers.get('content-type', '')
        if 'application/json' not in content_type:
            raise APIError(
                f"unexpected content-type: {content_type} (expected application/json)"
            )

        try:
            data = response.json()
        except ValueError as e:
            raise APIError(f"failed to parse API response: {e}")

        if not isinstance(data, dict):
            raise APIError("failed to parse API response: not a JSON object")

        return UserLocation(
            ip=data.get('ip', ''),
            latitude=float(data.get('latitude') or 0.0),
            longitude=float(data.get('longitude') or 0.0),
            country=data.get('country') or '',
            city=data.get('city') or '',
            mullvad_exit_ip=bool(data.get('mullvad_exit_ip')),
        )

    def close(self):
        """Close HTTP client"""
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
