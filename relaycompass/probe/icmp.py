"""
ICMP echo codec and unprivileged socket factory

- Echo request/reply encoding for ICMPv4 and ICMPv6
- Opening ICMP datagram sockets ("ping sockets") that need no root on
  Linux and macOS
"""

import logging
import os
import socket
import struct
from dataclasses import dataclass
from typing import Optional

from ..models import IPVersion


logger = logging.getLogger(__name__)


PROTOCOL_ICMP = 1
PROTOCOL_ICMPV6 = 58

ICMP_ECHO_REQUEST = 8
ICMP_ECHO_REPLY = 0
ICMPV6_ECHO_REQUEST = 128
ICMPV6_ECHO_REPLY = 129

ECHO_HEADER = struct.Struct('!BBHHH')
ECHO_PAYLOAD = b'relaycompass'

# Wildcard bind addresses
ADDR_IPV4_ALL = '0.0.0.0'
ADDR_IPV6_ALL = '::'


@dataclass
class EchoReply:
    """Decoded ICMP echo reply"""
    type: int
    code: int
    ident: int
    seq: int
    payload: bytes = b''


def default_identifier() -> int:
    """Echo identifier for this process (Linux ping sockets overwrite it)"""
    return os.getpid() & 0xFFFF


def checksum(data: bytes) -> int:
    """Calculate ICMP checksum (RFC 1071)"""
    if len(data) % 2:
        data += b'\x00'

    s = 0
    for i in range(0, len(data), 2):
        w = (data[i] << 8) + data[i + 1]
        s += w

    s = (s >> 16) + (s & 0xFFFF)
    s += s >> 16
    return ~s & 0xFFFF


def build_echo_request(ip_version: IPVersion, ident: int, seq: int,
                       payload: bytes = ECHO_PAYLOAD) -> bytes:
    """
    Build an ICMP echo request.

    ICMPv6 checksums cover a pseudo-header only the kernel knows, so the
    field is left zero and filled in on send.
    """
    ident &= 0xFFFF
    seq &= 0xFFFF

    if ip_version.is_ipv6:
        return ECHO_HEADER.pack(ICMPV6_ECHO_REQUEST, 0, 0, ident, seq) + payload

    header = ECHO_HEADER.pack(ICMP_ECHO_REQUEST, 0, 0, ident, seq)
    cs = checksum(header + payload)
    header = ECHO_HEADER.pack(ICMP_ECHO_REQUEST, 0, cs, ident, seq)
    return header + payload


def _strip_ip_header(data: bytes) -> bytes:
    """Drop a leading IPv4 header (macOS delivers one on ping sockets)"""
    if len(data) >= 20 and data[0] >> 4 == 4:
        ip_header_len = (data[0] & 0x0F) * 4
        if ip_header_len >= 20 and len(data) >= ip_header_len:
            return data[ip_header_len:]
    return data


def parse_echo_reply(ip_version: IPVersion, data: bytes) -> Optional[EchoReply]:
    """
    Parse a received datagram as an echo reply.

    Returns None for anything that is not an echo reply of the given family.
    """
    if not ip_version.is_ipv6:
        data = _strip_ip_header(data)

    if len(data) < ECHO_HEADER.size:
        return None

    icmp_type, code, _, ident, seq = ECHO_HEADER.unpack_from(data)

    expected = ICMPV6_ECHO_REPLY if ip_version.is_ipv6 else ICMP_ECHO_REPLY
    if icmp_type != expected:
        return None

    return EchoReply(
        type=icmp_type,
        code=code,
        ident=ident,
        seq=seq,
        payload=bytes(data[ECHO_HEADER.size:]),
    )


def destination(ip_version: IPVersion, ip: str) -> tuple:
    """Socket address for sending to `ip` over a ping socket"""
    if ip_version.is_ipv6:
        return (ip, 0, 0, 0)
    return (ip, 0)


def open_icmp_socket(ip_version: IPVersion) -> socket.socket:
    """
    Open an unprivileged ICMP datagram socket.

    Raises:
        PermissionError: ping sockets are disabled for this user
            (see net.ipv4.ping_group_range on Linux)
        OSError: the socket could not be created or bound
    """
    if ip_version.is_ipv6:
        family, proto, bind_addr = socket.AF_INET6, socket.IPPROTO_ICMPV6, (ADDR_IPV6_ALL, 0)
    else:
        family, proto, bind_addr = socket.AF_INET, socket.IPPROTO_ICMP, (ADDR_IPV4_ALL, 0)

    logger.debug("Attempting to create ICMP datagram socket (%s on %s)", ip_version, bind_addr[0])

    try:
        sock = socket.socket(family, socket.SOCK_DGRAM, proto)
    except OSError as e:
        logger.error("Failed to create ICMP socket: %s", e)
        raise

    try:
        sock.bind(bind_addr)
    except OSError as e:
        sock.close()
        logger.error("Failed to bind ICMP socket: %s", e)
        raise

    logger.debug("Successfully created ICMP datagram socket")
    return sock
