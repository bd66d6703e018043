"""
Sequence number to waiting-probe table

The reader thread hands replies to waiting probes through this table.
Each outstanding probe owns one entry: a capacity-one queue that receives
the responder address.
"""

import queue
import threading
import time
from typing import Any, Optional


# ICMP echo sequence field is 16 bits wide
SEQ_MODULUS = 0x10000

# How often a waiting probe looks at its cancel event (seconds)
CHECK_INTERVAL = 0.05


def wait_reply(channel: queue.Queue, timeout: float,
               cancel: Optional[threading.Event] = None) -> Optional[Any]:
    """
    Wait for one item on `channel`.

    Returns None when `timeout` seconds pass or `cancel` is set first.
    Cancellation is noticed within CHECK_INTERVAL.
    """
    deadline = time.perf_counter() + timeout

    while True:
        if cancel is not None and cancel.is_set():
            return None

        remaining = deadline - time.perf_counter()
        if remaining <= 0:
            return None

        try:
            return channel.get(timeout=min(remaining, CHECK_INTERVAL))
        except queue.Empty:
            continue


class ProbeChannels:
    """
    Thread-safe map of sequence number -> one-shot reply queue.

    Sequence numbers increase monotonically and wrap within the 16-bit
    echo field. A number is never handed out while an entry for it is
    still registered.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._entries: dict[int, queue.Queue] = {}
        self._counter = 0

    def register(self) -> tuple[int, queue.Queue]:
        """Allocate a free sequence number and register its reply queue"""
        with self._lock:
            if len(self._entries) >= SEQ_MODULUS:
                raise RuntimeError("no free ICMP sequence numbers")

            seq = self._next_seq()
            while seq in self._entries:
                seq = self._next_seq()

            channel: queue.Queue = queue.Queue(maxsize=1)
            self._entries[seq] = channel
            return seq, channel

    def _next_seq(self) -> int:
        self._counter = (self._counter + 1) % SEQ_MODULUS
        return self._counter

    def pop(self, seq: int) -> Optional[queue.Queue]:
        """Atomically look up and remove an entry"""
        with self._lock:
            return self._entries.pop(seq, None)

    def discard(self, seq: int):
        """Remove an entry; removing a missing entry is a no-op"""
        with self._lock:
            self._entries.pop(seq, None)

    def deliver(self, seq: int, peer_ip: str) -> bool:
        """
        Route a reply to the probe waiting on `seq`.

        Never blocks: if nobody is waiting, or the waiter already has a
        reply, the reply is dropped.

        Returns:
            True if the reply was handed to a waiting probe
        """
        channel = self.pop(seq)
        if channel is None:
            return False

        try:
            channel.put_nowait(peer_ip)
        except queue.Full:
            return False
        return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, seq: int) -> bool:
        with self._lock:
            return seq in self._entries
