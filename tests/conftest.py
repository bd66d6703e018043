import json
import queue
import socket

import pytest

from relaycompass.models import IPVersion, Location
from relaycompass.probe.icmp import ECHO_HEADER, ICMP_ECHO_REPLY, ICMPV6_ECHO_REPLY


def make_reply(request: bytes, ip_version: IPVersion = IPVersion.IPV4) -> bytes:
    """Turn an echo request into the matching echo reply"""
    reply_type = ICMPV6_ECHO_REPLY if ip_version.is_ipv6 else ICMP_ECHO_REPLY
    _, code, cs, ident, seq = ECHO_HEADER.unpack_from(request)
    return ECHO_HEADER.pack(reply_type, code, cs, ident, seq) + request[ECHO_HEADER.size:]


def echo_reply(seq: int, ip_version: IPVersion = IPVersion.IPV4, ident: int = 1) -> bytes:
    reply_type = ICMPV6_ECHO_REPLY if ip_version.is_ipv6 else ICMP_ECHO_REPLY
    return ECHO_HEADER.pack(reply_type, 0, 0, ident, seq) + b'relaycompass'


class FakeSocket:
    """
    In-memory stand-in for an ICMP datagram socket.

    auto_reply: answer every request (from `reply_from`, or from the
    destination itself when not set)
    """

    def __init__(self, ip_version: IPVersion = IPVersion.IPV4, auto_reply: bool = False,
                 reply_from: str = None, send_error: Exception = None):
        self.ip_version = ip_version
        self.auto_reply = auto_reply
        self.reply_from = reply_from
        self.send_error = send_error
        self.sent = []
        self.inbox = queue.Queue()
        self.closed = False
        self.close_calls = 0
        self.timeout = None

    def settimeout(self, timeout):
        if self.closed:
            raise OSError(9, "Bad file descriptor")
        self.timeout = timeout

    def recvfrom(self, bufsize):
        if self.closed:
            raise OSError(9, "Bad file descriptor")
        try:
            item = self.inbox.get(timeout=self.timeout)
        except queue.Empty:
            raise socket.timeout("timed out")
        if isinstance(item, Exception):
            raise item
        return item

    def sendto(self, data, addr):
        if self.closed:
            raise OSError(9, "Bad file descriptor")
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((data, addr))
        if self.auto_reply:
            sender = self.reply_from or addr[0]
            self.inject(make_reply(data, self.ip_version), sender)
        return len(data)

    def inject(self, data: bytes, sender: str):
        if self.ip_version.is_ipv6:
            self.inbox.put((data, (sender, 0, 0, 0)))
        else:
            self.inbox.put((data, (sender, 0)))

    def close(self):
        self.close_calls += 1
        self.closed = True


@pytest.fixture
def relays_data():
    """A small relays.json document"""
    wg = {"wireguard": {"public_key": "key", "daita": False, "lwo": False,
                        "quic": None, "shadowsocks_extra_addr_in": []}}

    def relay(hostname, ipv4, ipv6="", active=True, include=True, endpoint=None, **wg_flags):
        endpoint_data = endpoint
        if endpoint_data is None:
            endpoint_data = json.loads(json.dumps(wg))
            endpoint_data["wireguard"].update(wg_flags)
        return {
            "hostname": hostname,
            "ipv4_addr_in": ipv4,
            "ipv6_addr_in": ipv6,
            "active": active,
            "owned": True,
            "provider": "M247",
            "include_in_country": include,
            "endpoint_data": endpoint_data,
            "location": {"country": "Germany", "city": "Berlin",
                         "latitude": 52.52, "longitude": 13.405},
        }

    return {
        "countries": [
            {
                "name": "Germany",
                "code": "de",
                "cities": [
                    {
                        "name": "Berlin",
                        "code": "ber",
                        "latitude": 52.52,
                        "longitude": 13.405,
                        "relays": [
                            relay("de-ber-wg-001", "10.0.0.1", "2001:db8::1"),
                            relay("de-ber-wg-002", "10.0.0.2", daita=True),
                            relay("de-ber-wg-003", "10.0.0.3", lwo=True, quic={}),
                            relay("de-ber-wg-004", "10.0.0.4",
                                  shadowsocks_extra_addr_in=["10.0.1.4"]),
                            relay("de-ber-wg-005", "10.0.0.5", active=False),
                            relay("de-ber-wg-006", "10.0.0.6", include=False),
                            relay("de-ber-br-001", "10.0.0.7", endpoint="bridge"),
                            relay("de-ber-xx-001", "10.0.0.8", endpoint={"unknown": True}),
                        ],
                    }
                ],
            }
        ]
    }


@pytest.fixture
def relays_file(tmp_path, relays_data):
    path = tmp_path / "relays.json"
    path.write_text(json.dumps(relays_data), encoding="utf-8")
    return path


@pytest.fixture
def locations():
    return [
        Location(hostname="server1", ipv4_address="1.1.1.1", ipv6_address="2001:db8::11"),
        Location(hostname="server2", ipv4_address="2.2.2.2", ipv6_address="2001:db8::22"),
        Location(hostname="server3", ipv4_address="3.3.3.3", ipv6_address="2001:db8::33"),
    ]
