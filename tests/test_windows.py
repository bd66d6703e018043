import ctypes
import ipaddress
import threading
import time

import pytest

from relaycompass.errors import ListenerClosedError
from relaycompass.models import IPVersion
from relaycompass.probe.windows import (
    ICMP_ECHO_REPLY,
    ICMPV6_ECHO_REPLY,
    WindowsPinger,
    ip_status_to_string,
)


class FakeIphlpapi:
    """
    Stand-in for iphlpapi.dll.

    status: IP status written into every reply
    responder: address the reply claims to come from (default: the target)
    delay: seconds each echo call blocks
    """

    def __init__(self, status=0, rtt=12, responder=None, delay=0.0, handle=1234):
        self.status = status
        self.rtt = rtt
        self.responder = responder
        self.delay = delay
        self.handle = handle
        self.sent = []
        self.closed_handles = []
        self.timeouts = []

    def IcmpCreateFile(self):
        return self.handle

    def Icmp6CreateFile(self):
        return self.handle

    def IcmpCloseHandle(self, handle):
        self.closed_handles.append(handle)
        return 1

    def IcmpSendEcho(self, handle, dest_addr, request, request_size, options,
                     reply_buffer, reply_size, timeout_ms):
        target = ipaddress.IPv4Address(dest_addr.to_bytes(4, 'little'))
        self.sent.append(str(target))
        self.timeouts.append(timeout_ms)
        if self.delay:
            time.sleep(self.delay)

        responder = ipaddress.IPv4Address(self.responder) if self.responder else target
        reply = ICMP_ECHO_REPLY.from_buffer(reply_buffer)
        reply.Address = int.from_bytes(responder.packed, 'little')
        reply.Status = self.status
        reply.RoundTripTime = self.rtt
        return 1 if self.status == 0 else 0

    def Icmp6SendEcho2(self, handle, event, apc_routine, apc_context, source, dest,
                       request, request_size, options, reply_buffer, reply_size, timeout_ms):
        target = ipaddress.IPv6Address(bytes(dest._obj.sin6_addr))
        self.sent.append(str(target))
        self.timeouts.append(timeout_ms)
        if self.delay:
            time.sleep(self.delay)

        responder = ipaddress.IPv6Address(self.responder) if self.responder else target
        reply = ICMPV6_ECHO_REPLY.from_buffer(reply_buffer)
        ctypes.memmove(reply.Address.sin6_addr, responder.packed, 16)
        reply.Status = self.status
        reply.RoundTripTime = self.rtt
        return 1 if self.status == 0 else 0


def test_ipv4_echo_returns_round_trip_time():
    dll = FakeIphlpapi(rtt=12)
    with WindowsPinger(IPVersion.IPV4, dll=dll) as pinger:
        assert pinger.ping("192.0.2.10", 0.5) == 12.0

    assert dll.sent == ["192.0.2.10"]
    assert dll.timeouts == [500]
    assert dll.closed_handles == [1234]


def test_ipv6_echo_returns_round_trip_time():
    dll = FakeIphlpapi(rtt=30)
    with WindowsPinger(IPVersion.IPV6, dll=dll) as pinger:
        assert pinger.ping("2001:db8::5", 0.5) == 30.0

    assert dll.sent == ["2001:db8::5"]


def test_failed_status_returns_none():
    dll = FakeIphlpapi(status=11010)
    with WindowsPinger(IPVersion.IPV4, dll=dll) as pinger:
        assert pinger.ping("192.0.2.10", 0.5) is None


def test_reply_from_other_host_is_rejected():
    dll = FakeIphlpapi(responder="192.0.2.99")
    with WindowsPinger(IPVersion.IPV4, dll=dll) as pinger:
        assert pinger.ping("192.0.2.10", 0.5) is None


def test_invalid_or_wrong_family_address_is_not_sent():
    dll = FakeIphlpapi()
    with WindowsPinger(IPVersion.IPV4, dll=dll) as pinger:
        assert pinger.ping("relay.example", 0.5) is None
        assert pinger.ping("2001:db8::1", 0.5) is None

    assert dll.sent == []


def test_invalid_handle_raises():
    with pytest.raises(OSError):
        WindowsPinger(IPVersion.IPV4, dll=FakeIphlpapi(handle=0))


def test_preset_cancel_skips_native_call():
    dll = FakeIphlpapi()
    cancel = threading.Event()
    cancel.set()
    with WindowsPinger(IPVersion.IPV4, dll=dll) as pinger:
        assert pinger.ping("192.0.2.10", 0.5, cancel) is None

    assert dll.sent == []


def test_cancel_returns_before_native_call_finishes():
    dll = FakeIphlpapi(delay=0.5)
    cancel = threading.Event()
    threading.Timer(0.05, cancel.set).start()

    pinger = WindowsPinger(IPVersion.IPV4, dll=dll)
    start = time.perf_counter()
    assert pinger.ping("192.0.2.10", 2.0, cancel) is None
    assert time.perf_counter() - start < 0.4

    # close() waits for the native call before releasing the handle
    pinger.close()
    assert time.perf_counter() - start >= 0.5
    assert dll.closed_handles == [1234]


def test_close_is_idempotent_and_blocks_further_pings():
    dll = FakeIphlpapi()
    pinger = WindowsPinger(IPVersion.IPV4, dll=dll)
    pinger.close()
    pinger.close()

    assert dll.closed_handles == [1234]
    with pytest.raises(ListenerClosedError):
        pinger.ping("192.0.2.10", 0.5)


def test_ip_status_to_string():
    assert ip_status_to_string(11010) == "Request timed out"
    assert ip_status_to_string(1) == "Unknown status: 1"
