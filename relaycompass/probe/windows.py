"""
ICMP pinger for Windows using the native IcmpSendEcho API

Windows has no unprivileged ICMP datagram sockets, but iphlpapi offers
IcmpSendEcho (IPv4) and Icmp6SendEcho2 (IPv6). Both block for up to the
timeout, so each call runs on its own thread and the caller waits on it
with the usual timeout/cancel checks.

Known limitation: cancelling a ping returns control to the caller
promptly, but the native call keeps running until its own timeout.
"""

import ctypes
import ipaddress
import logging
import queue
import sys
import threading
from typing import Optional

from ..errors import ListenerClosedError
from ..models import IPVersion
from .base import BasePinger
from .channels import wait_reply
from .icmp import ECHO_PAYLOAD


logger = logging.getLogger(__name__)


INVALID_HANDLE_VALUE = ctypes.c_void_p(-1).value
AF_INET6 = 23

# Extra wait for a native call that returns right at its own timeout
CALL_GRACE = 0.05

# Windows IP status codes
IP_SUCCESS = 0
IP_STATUS_NAMES = {
    0: "Success",
    11001: "Reply buffer too small",
    11002: "Destination network unreachable",
    11003: "Destination host unreachable",
    11004: "Destination protocol unreachable",
    11005: "Destination port unreachable",
    11006: "Insufficient IP resources",
    11007: "Bad IP option",
    11008: "Hardware error",
    11009: "Packet too big",
    11010: "Request timed out",
    11011: "Bad request",
    11012: "Bad route",
    11013: "TTL expired in transit",
    11014: "TTL expired in reassembly",
    11015: "Parameter problem",
    11016: "Source quench",
    11017: "IP option too big",
    11018: "Bad destination",
}


def ip_status_to_string(status: int) -> str:
    """Human-readable IP status code"""
    return IP_STATUS_NAMES.get(status, f"Unknown status: {status}")


class IP_OPTION_INFORMATION(ctypes.Structure):
    _fields_ = [
        ("Ttl", ctypes.c_uint8),
        ("Tos", ctypes.c_uint8),
        ("Flags", ctypes.c_uint8),
        ("OptionsSize", ctypes.c_uint8),
        ("OptionsData", ctypes.c_void_p),
    ]


class ICMP_ECHO_REPLY(ctypes.Structure):
    _fields_ = [
        ("Address", ctypes.c_uint32),
        ("Status", ctypes.c_uint32),
        ("RoundTripTime", ctypes.c_uint32),
        ("DataSize", ctypes.c_uint16),
        ("Reserved", ctypes.c_uint16),
        ("Data", ctypes.c_void_p),
        ("Options", IP_OPTION_INFORMATION),
    ]


class IPV6_ADDRESS_EX(ctypes.Structure):
    _pack_ = 1
    _fields_ = [
        ("sin6_port", ctypes.c_uint16),
        ("sin6_flowinfo", ctypes.c_uint32),
        ("sin6_addr", ctypes.c_uint8 * 16),
        ("sin6_scope_id", ctypes.c_uint32),
    ]


class ICMPV6_ECHO_REPLY(ctypes.Structure):
    _fields_ = [
        ("Address", IPV6_ADDRESS_EX),
        ("Status", ctypes.c_uint32),
        ("RoundTripTime", ctypes.c_uint32),
    ]


class SOCKADDR_IN6(ctypes.Structure):
    _fields_ = [
        ("sin6_family", ctypes.c_uint16),
        ("sin6_port", ctypes.c_uint16),
        ("sin6_flowinfo", ctypes.c_uint32),
        ("sin6_addr", ctypes.c_uint8 * 16),
        ("sin6_scope_id", ctypes.c_uint32),
    ]


def _load_iphlpapi():
    """Load iphlpapi.dll and declare the ICMP function signatures"""
    import ctypes.wintypes as wintypes

    dll = ctypes.WinDLL('iphlpapi', use_last_error=True)

    dll.IcmpCreateFile.restype = wintypes.HANDLE
    dll.IcmpCreateFile.argtypes = []

    dll.Icmp6CreateFile.restype = wintypes.HANDLE
    dll.Icmp6CreateFile.argtypes = []

    dll.IcmpCloseHandle.restype = wintypes.BOOL
    dll.IcmpCloseHandle.argtypes = [wintypes.HANDLE]

    dll.IcmpSendEcho.restype = wintypes.DWORD
    dll.IcmpSendEcho.argtypes = [
        wintypes.HANDLE,
        ctypes.c_uint32,
        ctypes.c_void_p,
        wintypes.WORD,
        ctypes.POINTER(IP_OPTION_INFORMATION),
        ctypes.c_void_p,
        wintypes.DWORD,
        wintypes.DWORD,
    ]

    dll.Icmp6SendEcho2.restype = wintypes.DWORD
    dll.Icmp6SendEcho2.argtypes = [
        wintypes.HANDLE,
        wintypes.HANDLE,
        ctypes.c_void_p,
        ctypes.c_void_p,
        ctypes.POINTER(SOCKADDR_IN6),
        ctypes.POINTER(SOCKADDR_IN6),
        ctypes.c_void_p,
        wintypes.WORD,
        ctypes.POINTER(IP_OPTION_INFORMATION),
        ctypes.c_void_p,
        wintypes.DWORD,
        wintypes.DWORD,
    ]

    return dll


class WindowsPinger(BasePinger):
    """
    ICMP pinger using the Windows IcmpSendEcho API.

    One ICMP handle per address family; the handle is closed only after
    every in-flight native call has returned.
    """

    def __init__(self, ip_version: IPVersion = IPVersion.IPV4, dll=None):
        if dll is None and sys.platform != 'win32':
            raise OSError("the IcmpSendEcho API is only available on Windows")

        self.ip_version = ip_version
        self._dll = dll if dll is not None else _load_iphlpapi()
        self._cond = threading.Condition()
        self._in_flight = 0
        self._closed = False

        if ip_version.is_ipv6:
            logger.debug("Creating IPv6 ICMP handle")
            handle = self._dll.Icmp6CreateFile()
        else:
            logger.debug("Creating IPv4 ICMP handle")
            handle = self._dll.IcmpCreateFile()

        if not handle or handle == INVALID_HANDLE_VALUE:
            logger.error("Failed to create ICMP handle")
            raise OSError("Failed to create ICMP handle")

        self._handle = handle
        logger.debug("Successfully created ICMP handle")

    def ping(self, address: str, timeout: float,
             cancel: Optional[threading.Event] = None) -> Optional[float]:
        """Send one echo request on a worker thread and wait for it"""
        if cancel is not None and cancel.is_set():
            return None

        try:
            target = ipaddress.ip_address(address)
        except ValueError:
            return None
        if target.version != (6 if self.ip_version.is_ipv6 else 4):
            return None

        with self._cond:
            if self._closed:
                raise ListenerClosedError("ping on a closed Windows pinger")
            self._in_flight += 1

        result: queue.Queue = queue.Queue(maxsize=1)
        worker = threading.Thread(
            target=self._send_echo,
            args=(target, timeout, result),
            name=f"icmp-echo-{address}",
            daemon=True,
        )
        try:
            worker.start()
        except RuntimeError:
            self._done()
            raise

        return wait_reply(result, timeout + CALL_GRACE, cancel)

    def _send_echo(self, target, timeout: float, result: queue.Queue):
        """Run the blocking native call and post its latency (or None)"""
        try:
            if self.ip_version.is_ipv6:
                latency = self._echo_ipv6(target, timeout)
            else:
                latency = self._echo_ipv4(target, timeout)
        except (OSError, ctypes.ArgumentError) as e:
            logger.debug("Echo to %s failed: %s", target, e)
            latency = None
        finally:
            self._done()

        result.put_nowait(latency)

    def _done(self):
        with self._cond:
            self._in_flight -= 1
            self._cond.notify_all()

    def _echo_ipv4(self, target: ipaddress.IPv4Address, timeout: float) -> Optional[float]:
        # IcmpSendEcho takes the address in network byte order as laid out in memory
        dest_addr = int.from_bytes(target.packed, 'little')

        request = ctypes.create_string_buffer(ECHO_PAYLOAD, len(ECHO_PAYLOAD))
        reply_size = ctypes.sizeof(ICMP_ECHO_REPLY) + len(ECHO_PAYLOAD) + 8
        reply_buffer = ctypes.create_string_buffer(reply_size)

        ret = self._dll.IcmpSendEcho(
            self._handle,
            dest_addr,
            request,
            len(ECHO_PAYLOAD),
            None,
            reply_buffer,
            reply_size,
            max(1, int(timeout * 1000)),
        )

        reply = ICMP_ECHO_REPLY.from_buffer(reply_buffer)
        if ret == 0 or reply.Status != IP_SUCCESS:
            logger.debug("IcmpSendEcho to %s: %s", target, ip_status_to_string(reply.Status))
            return None

        responder = ipaddress.IPv4Address(reply.Address.to_bytes(4, 'little'))
        if responder != target:
            return None

        return float(reply.RoundTripTime)

    def _echo_ipv6(self, target: ipaddress.IPv6Address, timeout: float) -> Optional[float]:
        source = SOCKADDR_IN6()
        source.sin6_family = AF_INET6

        dest = SOCKADDR_IN6()
        dest.sin6_family = AF_INET6
        ctypes.memmove(dest.sin6_addr, target.packed, 16)

        request = ctypes.create_string_buffer(ECHO_PAYLOAD, len(ECHO_PAYLOAD))
        reply_size = ctypes.sizeof(ICMPV6_ECHO_REPLY) + len(ECHO_PAYLOAD) + 8
        reply_buffer = ctypes.create_string_buffer(reply_size)

        ret = self._dll.Icmp6SendEcho2(
            self._handle,
            None,
            None,
            None,
            ctypes.byref(source),
            ctypes.byref(dest),
            request,
            len(ECHO_PAYLOAD),
            None,
            reply_buffer,
            reply_size,
            max(1, int(timeout * 1000)),
        )

        reply = ICMPV6_ECHO_REPLY.from_buffer(reply_buffer)
        if ret == 0 or reply.Status != IP_SUCCESS:
            logger.debug("Icmp6SendEcho2 to %s: %s", target, ip_status_to_string(reply.Status))
            return None

        responder = ipaddress.IPv6Address(bytes(reply.Address.sin6_addr))
        if responder != target:
            return None

        return float(reply.RoundTripTime)

    def close(self):
        """Wait for in-flight echoes, then close the ICMP handle"""
        with self._cond:
            if self._closed:
                return
            self._closed = True
            while self._in_flight:
                self._cond.wait()

        if not self._dll.IcmpCloseHandle(self._handle):
            raise OSError(ctypes.get_last_error(), "IcmpCloseHandle failed")
