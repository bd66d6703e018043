"""
Ping orchestrator

Fans a list of relay locations out to a bounded pool of worker threads
that share one pinger, and collects one result per location.
"""

import dataclasses
import logging
import queue
import threading
import time
from typing import Callable, Optional

from ..errors import ScanCancelled
from ..models import IPVersion, Location, PingResult
from .base import BasePinger
from .factory import PingerFactory


logger = logging.getLogger(__name__)


_DONE = object()


class Dispatcher:
    """
    Worker-pool ping scan.

    Creates exactly one pinger per run, never starts more workers than
    there are locations, and closes the pinger before returning.
    """

    def __init__(
        self,
        timeout_ms: int = 500,
        workers: int = 25,
        ip_version: IPVersion = IPVersion.IPV4,
        factory: Optional[PingerFactory] = None
    ):
        self.timeout_ms = timeout_ms
        self.workers = workers
        self.ip_version = ip_version
        self.factory = factory or PingerFactory()

    def run(
        self,
        locations: list[Location],
        cancel: Optional[threading.Event] = None,
        on_result: Optional[Callable[[PingResult], None]] = None
    ) -> list[Location]:
        """
        Ping every location once.

        Args:
            locations: Targets; each must carry an address of ip_version
            cancel: Event that aborts the scan when set
            on_result: Optional callback for real-time progress, called
                from worker threads

        Returns:
            Copies of the locations with latency_ms filled in, in
            completion order

        Raises:
            OSError: The pinger could not be created
            ScanCancelled: `cancel` was set; carries the partial results
        """
        if not locations:
            return []

        cancel = cancel or threading.Event()

        logger.info(
            "Starting to ping %d locations with %d workers (timeout: %dms, IP version: %s)",
            len(locations), self.workers, self.timeout_ms, self.ip_version
        )

        start = time.perf_counter()
        try:
            pinger = self.factory.create_pinger(self.ip_version)
        except OSError as e:
            logger.error("Failed to create pinger: %s", e)
            raise
        logger.debug("Socket creation completed in %.3fs", time.perf_counter() - start)

        try:
            results = self._scan(pinger, locations, cancel, on_result)
        finally:
            try:
                pinger.close()
            except OSError as e:
                logger.warning("Failed to close pinger: %s", e)

        succeeded = sum(1 for r in results if r.latency_ms is not None)
        logger.info(
            "Ping completed: %d successful, %d failed out of %d total",
            succeeded, len(results) - succeeded, len(results)
        )

        pinged = [
            dataclasses.replace(r.location, latency_ms=r.latency_ms)
            for r in results
        ]

        if cancel.is_set():
            logger.warning("Ping operation cancelled")
            raise ScanCancelled(pinged)

        return pinged

    def _scan(self, pinger: BasePinger, locations: list[Location],
              cancel: threading.Event,
              on_result: Optional[Callable[[PingResult], None]]) -> list[PingResult]:
        work: queue.Queue = queue.Queue()
        results: queue.Queue = queue.Queue()
        timeout = self.timeout_ms / 1000

        num_workers = min(self.workers, len(locations))
        threads = [
            threading.Thread(
                target=self._worker,
                args=(pinger, work, results, timeout, cancel, on_result),
                name=f"ping-worker-{i}",
                daemon=True,
            )
            for i in range(num_workers)
        ]
        for thread in threads:
            thread.start()
        logger.debug("Started %d workers", num_workers)

        for location in locations:
            if cancel.is_set():
                break
            work.put(location)
        for _ in threads:
            work.put(_DONE)

        for thread in threads:
            thread.join()

        collected = []
        while True:
            try:
                collected.append(results.get_nowait())
            except queue.Empty:
                break
        return collected

    def _worker(self, pinger: BasePinger, work: queue.Queue, results: queue.Queue,
                timeout: float, cancel: threading.Event,
                on_result: Optional[Callable[[PingResult], None]]):
        while True:
            item = work.get()
            if item is _DONE or cancel.is_set():
                return

            address = item.address_for(self.ip_version)
            try:
                latency = pinger.ping(address, timeout, cancel)
            except Exception as e:
                logger.debug("Ping to %s (%s) failed: %s", item.hostname, address, e)
                latency = None
            # A probe cut short by cancellation has no real answer
            if cancel.is_set():
                return

            result = PingResult(location=item, latency_ms=latency)
            results.put(result)
            if on_result:
                try:
                    on_result(result)
                except Exception as e:
                    logger.warning("Result callback failed for %s: %s", item.hostname, e)


def ping_locations(
    locations: list[Location],
    timeout_ms: int = 500,
    workers: int = 25,
    ip_version: IPVersion = IPVersion.IPV4,
    factory: Optional[PingerFactory] = None,
    cancel: Optional[threading.Event] = None,
    on_result: Optional[Callable[[PingResult], None]] = None
) -> list[Location]:
    """Ping all locations concurrently and return them with latencies"""
    dispatcher = Dispatcher(
        timeout_ms=timeout_ms,
        workers=workers,
        ip_version=ip_version,
        factory=factory
    )
    return dispatcher.run(locations, cancel=cancel, on_result=on_result)
