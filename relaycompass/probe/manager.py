"""
Shared-socket ICMP pinger for Linux/macOS

One ICMP datagram socket serves every concurrent ping. A background
reader thread receives all replies and routes each one to the waiting
ping by its echo sequence number.
"""

import ipaddress
import logging
import socket
import threading
import time
from typing import Optional

from ..errors import ListenerClosedError
from ..models import IPVersion
from .base import BasePinger
from .channels import ProbeChannels, wait_reply
from .icmp import (
    ECHO_PAYLOAD,
    build_echo_request,
    default_identifier,
    destination,
    open_icmp_socket,
    parse_echo_reply,
)


logger = logging.getLogger(__name__)


# Receive timeout of the reader loop; bounds how long close() waits
READ_TIMEOUT = 0.1
READ_BUFFER = 1500


class SocketManager(BasePinger):
    """
    Pinger multiplexing many outstanding echo requests over one socket.

    Lifecycle: the constructor opens the socket (unless one is given) and
    starts the reader thread; close() stops the reader, closes the socket
    and waits for the reader to exit.
    """

    def __init__(self, ip_version: IPVersion = IPVersion.IPV4,
                 sock: Optional[socket.socket] = None):
        self.ip_version = ip_version
        self.identifier = default_identifier()
        self.channels = ProbeChannels()
        self._sock = sock if sock is not None else open_icmp_socket(ip_version)
        self._send_lock = threading.Lock()
        self._close_lock = threading.Lock()
        self._stopping = threading.Event()
        self._closed = False

        self._reader = threading.Thread(
            target=self._read_loop,
            name=f"icmp-reader-{ip_version}",
            daemon=True,
        )
        self._reader.start()

    @property
    def closed(self) -> bool:
        return self._closed

    def _read_loop(self):
        """Receive replies until close() and hand them to waiting pings"""
        while not self._stopping.is_set():
            try:
                self._sock.settimeout(READ_TIMEOUT)
                data, addr = self._sock.recvfrom(READ_BUFFER)
            except socket.timeout:
                continue
            except OSError as e:
                if self._stopping.is_set():
                    return
                logger.debug("ICMP read error: %s", e)
                continue

            reply = parse_echo_reply(self.ip_version, data)
            if reply is None:
                continue

            peer_ip = _host_of(addr)
            if peer_ip is None:
                continue

            if not self.channels.deliver(reply.seq, peer_ip):
                logger.debug("Discarding unmatched echo reply seq=%d from %s", reply.seq, peer_ip)

    def ping(self, address: str, timeout: float,
             cancel: Optional[threading.Event] = None) -> Optional[float]:
        """Send one echo request to `address` and wait for its reply"""
        if self._closed:
            raise ListenerClosedError("ping on a closed socket manager")

        target = _parse_ip(address, self.ip_version)
        if target is None:
            return None

        try:
            seq, channel = self.channels.register()
        except RuntimeError as e:
            logger.warning("Cannot ping %s: %s", address, e)
            return None

        try:
            packet = build_echo_request(self.ip_version, self.identifier, seq, ECHO_PAYLOAD)
            dst = destination(self.ip_version, str(target))

            start = time.perf_counter()
            try:
                with self._send_lock:
                    self._sock.sendto(packet, dst)
            except OSError as e:
                logger.debug("Send to %s failed: %s", address, e)
                return None

            peer_ip = wait_reply(channel, timeout, cancel)
            if peer_ip is None:
                return None

            elapsed = time.perf_counter() - start

            if _parse_ip(peer_ip, self.ip_version) != target:
                logger.debug("Reply seq=%d came from %s, expected %s", seq, peer_ip, target)
                return None

            return round(elapsed * 1000, 3)
        finally:
            self.channels.discard(seq)

    def close(self):
        """Stop the reader thread and close the socket"""
        with self._close_lock:
            if self._closed:
                logger.debug("Socket manager already closed")
                return
            self._closed = True

        self._stopping.set()
        try:
            self._sock.close()
        finally:
            if self._reader is not threading.current_thread():
                self._reader.join()


def _host_of(addr) -> Optional[str]:
    """Extract the host part of a recvfrom() address"""
    if isinstance(addr, tuple) and addr:
        host = addr[0]
    elif isinstance(addr, str):
        host = addr
    else:
        return None
    # Link-local IPv6 peers carry a %scope suffix
    return host.split('%', 1)[0]


def _parse_ip(address: str, ip_version: IPVersion):
    """Parse an IP literal of the given family, None if it is not one"""
    try:
        ip = ipaddress.ip_address(address)
    except ValueError:
        return None

    if ip_version.is_ipv6:
        return ip if ip.version == 6 else None
    return ip if ip.version == 4 else None
