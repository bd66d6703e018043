"""
Data models for RelayCompass
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class IPVersion(Enum):
    """IP protocol version used for pinging"""
    IPV4 = 'ipv4'
    IPV6 = 'ipv6'

    def __str__(self) -> str:
        return self.value

    @property
    def is_ipv6(self) -> bool:
        return self is IPVersion.IPV6


class ServerType(Enum):
    """Relay server type as encoded in endpoint_data"""
    NONE = ''
    WIREGUARD = 'wireguard'
    BRIDGE = 'bridge'

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, value: str) -> 'ServerType':
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"unknown server type: {value}")


class AntiCensorship(Enum):
    """Anti-censorship protocol for WireGuard connections"""
    NONE = ''
    LWO = 'lwo'
    QUIC = 'quic'
    SHADOWSOCKS = 'shadowsocks'

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, value: str) -> 'AntiCensorship':
        try:
            return cls(value)
        except ValueError:
            raise ValueError(
                f"invalid anti-censorship protocol: {value} "
                "(must be 'lwo', 'quic', or 'shadowsocks')"
            )


@dataclass
class Location:
    """A relay server with its properties and measured metrics"""
    hostname: str
    ipv4_address: str = ''
    ipv6_address: str = ''
    country: str = ''
    city: str = ''
    latitude: float = 0.0
    longitude: float = 0.0
    type: str = ''
    provider: str = ''
    is_active: bool = True
    is_mullvad_owned: bool = False
    latency_ms: Optional[float] = None  # None means timeout or error
    distance_km: Optional[float] = None

    def address_for(self, ip_version: IPVersion) -> str:
        """Address of the requested family (no fallback to the other one)"""
        if ip_version.is_ipv6:
            return self.ipv6_address
        return self.ipv4_address


@dataclass
class PingResult:
    """Result of pinging a single location"""
    location: Location
    latency_ms: Optional[float] = None


@dataclass
class UserLocation:
    """Caller location as reported by the Mullvad location API"""
    ip: str = ''
    latitude: float = 0.0
    longitude: float = 0.0
    country: str = ''
    city: str = ''
    mullvad_exit_ip: bool = False
