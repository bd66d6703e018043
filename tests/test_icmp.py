import struct

from relaycompass.models import IPVersion
from relaycompass.probe.icmp import (
    ECHO_PAYLOAD,
    ICMP_ECHO_REPLY,
    ICMP_ECHO_REQUEST,
    ICMPV6_ECHO_REPLY,
    ICMPV6_ECHO_REQUEST,
    build_echo_request,
    checksum,
    destination,
    parse_echo_reply,
)

from conftest import echo_reply


def test_ipv4_request_has_valid_checksum():
    packet = build_echo_request(IPVersion.IPV4, ident=0x1234, seq=7)

    assert packet[0] == ICMP_ECHO_REQUEST
    assert packet[1] == 0
    assert struct.unpack('!HH', packet[4:8]) == (0x1234, 7)
    assert packet[8:] == ECHO_PAYLOAD
    # Checksumming a packet that carries its own checksum yields zero
    assert checksum(packet) == 0


def test_ipv6_request_leaves_checksum_to_kernel():
    packet = build_echo_request(IPVersion.IPV6, ident=1, seq=300)

    assert packet[0] == ICMPV6_ECHO_REQUEST
    assert packet[2:4] == b'\x00\x00'
    assert struct.unpack('!H', packet[6:8]) == (300,)


def test_sequence_is_truncated_to_16_bits():
    packet = build_echo_request(IPVersion.IPV4, ident=1, seq=0x10005)
    assert struct.unpack('!H', packet[6:8]) == (5,)


def test_checksum_of_odd_length_data():
    assert checksum(b'\x01') == 0xFEFF


def test_parse_echo_reply_ipv4():
    reply = parse_echo_reply(IPVersion.IPV4, echo_reply(42))

    assert reply is not None
    assert reply.type == ICMP_ECHO_REPLY
    assert reply.seq == 42
    assert reply.payload == b'relaycompass'


def test_parse_echo_reply_strips_ipv4_header():
    ip_header = bytes([0x45]) + bytes(19)
    reply = parse_echo_reply(IPVersion.IPV4, ip_header + echo_reply(9))

    assert reply is not None
    assert reply.seq == 9


def test_parse_echo_reply_ipv6():
    reply = parse_echo_reply(IPVersion.IPV6, echo_reply(11, IPVersion.IPV6))

    assert reply is not None
    assert reply.type == ICMPV6_ECHO_REPLY
    assert reply.seq == 11


def test_parse_rejects_requests_and_other_types():
    request = build_echo_request(IPVersion.IPV4, ident=1, seq=1)
    unreachable = bytes([3, 1]) + bytes(6)

    assert parse_echo_reply(IPVersion.IPV4, request) is None
    assert parse_echo_reply(IPVersion.IPV4, unreachable) is None


def test_parse_rejects_reply_of_other_family():
    assert parse_echo_reply(IPVersion.IPV6, echo_reply(1, IPVersion.IPV4)) is None
    assert parse_echo_reply(IPVersion.IPV4, echo_reply(1, IPVersion.IPV6)) is None


def test_parse_rejects_truncated_datagrams():
    assert parse_echo_reply(IPVersion.IPV4, b'') is None
    assert parse_echo_reply(IPVersion.IPV4, echo_reply(1)[:7]) is None


def test_destination_address_shape():
    assert destination(IPVersion.IPV4, '10.0.0.1') == ('10.0.0.1', 0)
    assert destination(IPVersion.IPV6, '2001:db8::1') == ('2001:db8::1', 0, 0, 0)
