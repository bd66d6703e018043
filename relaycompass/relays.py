"""
Mullvad relay list loading and filtering

Reads the relays.json cache kept by the Mullvad VPN app and turns it into
pingable Location records.
"""

import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Optional

from .errors import RelayFileError
from .models import AntiCensorship, IPVersion, Location, ServerType


logger = logging.getLogger(__name__)


def get_relays_file_path(platform: Optional[str] = None) -> Path:
    """
    Locate relays.json for the current platform.

    Raises:
        RelayFileError: unsupported platform or file not found
    """
    platform = platform or sys.platform

    if platform.startswith('linux'):
        path = Path('/var/cache/mullvad-vpn') / 'relays.json'
    elif platform == 'darwin':
        path = Path('/Library/Caches/mullvad-vpn') / 'relays.json'
    elif platform == 'win32':
        program_data = os.environ.get('ProgramData') or 'C:\\ProgramData'
        path = Path(program_data) / 'Mullvad VPN' / 'cache' / 'relays.json'
    else:
        logger.error("Unsupported platform: %s", platform)
        raise RelayFileError(f"unsupported platform: {platform}")

    logger.debug("Looking for relays.json at: %s", path)

    if not path.exists():
        logger.error("relays.json not found at %s", path)
        raise RelayFileError(f"relays.json not found at {path}")

    return path


def parse_relays_file(path: Path) -> dict:
    """Read and parse relays.json"""
    logger.debug("Reading relays file from: %s", path)

    try:
        content = Path(path).read_text(encoding='utf-8')
    except OSError as e:
        logger.error("Failed to read relays file at %s: %s", path, e)
        raise RelayFileError(f"failed to read relays file: {e}")

    logger.info("Read %d bytes from relays file", len(content))

    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        logger.error("Failed to parse JSON from relays file: %s", e)
        raise RelayFileError(f"failed to parse relays file: {e}")

    if not isinstance(data, dict):
        raise RelayFileError("failed to parse relays file: top level is not an object")

    countries = _children(data, 'countries')
    cities = [city for country in countries for city in _children(country, 'cities')]
    relay_count = sum(len(_children(city, 'relays')) for city in cities)
    logger.info(
        "Parsed relays file: %d countries, %d cities, %d relays",
        len(countries), len(cities), relay_count
    )

    return data


def _children(parent: dict, key: str) -> list[dict]:
    """Objects listed under `key`; anything but a list of objects is malformed"""
    children = parent.get(key) or []
    if not isinstance(children, list) or not all(isinstance(c, dict) for c in children):
        raise RelayFileError(f"malformed relays file: '{key}' must be a list of objects")
    return children


def _coordinate(*candidates: Any) -> float:
    """First coordinate that is set; missing or null everywhere means 0"""
    for value in candidates:
        if value is None:
            continue
        try:
            return float(value)
        except (TypeError, ValueError):
            raise RelayFileError(f"malformed relays file: invalid coordinate {value!r}")
    return 0.0


def determine_relay_type(endpoint_data: Any) -> ServerType:
    """
    Classify a relay by its endpoint_data.

    A plain string names the type ("wireguard", "bridge"); an object with
    a wireguard public key is a WireGuard relay.

    Raises:
        ValueError: unknown endpoint_data format
    """
    if isinstance(endpoint_data, str):
        return ServerType.parse(endpoint_data)

    if isinstance(endpoint_data, dict):
        wireguard = endpoint_data.get('wireguard')
        if isinstance(wireguard, dict) and wireguard.get('public_key'):
            return ServerType.WIREGUARD

    raise ValueError("unknown endpoint_data format")


def _wireguard_data(endpoint_data: Any) -> dict:
    if isinstance(endpoint_data, dict):
        wireguard = endpoint_data.get('wireguard')
        if isinstance(wireguard, dict):
            return wireguard
    return {}


def has_daita(endpoint_data: Any) -> bool:
    """Check if a wireguard endpoint has DAITA enabled"""
    return bool(_wireguard_data(endpoint_data).get('daita'))


def matches_anti_censorship(endpoint_data: Any, protocol: AntiCensorship) -> bool:
    """Check if a wireguard endpoint supports the anti-censorship protocol"""
    wireguard = _wireguard_data(endpoint_data)

    if protocol is AntiCensorship.LWO:
        return bool(wireguard.get('lwo'))
    if protocol is AntiCensorship.QUIC:
        return wireguard.get('quic') is not None
    if protocol is AntiCensorship.SHADOWSOCKS:
        return bool(wireguard.get('shadowsocks_extra_addr_in'))
    return False


def get_locations(
    data: dict,
    anti_censorship: AntiCensorship = AntiCensorship.NONE,
    daita: bool = False,
    ip_version: IPVersion = IPVersion.IPV4
) -> tuple[list[Location], int]:
    """
    Extract pingable locations from parsed relays.json.

    Returns:
        (locations, number of relays skipped for unknown endpoint_data)

    Raises:
        RelayFileError: the document does not have the relays.json shape
    """
    locations: list[Location] = []
    skipped = 0

    for country in _children(data, 'countries'):
        for city in _children(country, 'cities'):
            for relay in _children(city, 'relays'):
                endpoint_data = relay.get('endpoint_data')
                try:
                    relay_type = determine_relay_type(endpoint_data)
                except ValueError:
                    skipped += 1
                    continue

                if not relay.get('active'):
                    continue
                if not relay.get('include_in_country'):
                    continue
                if relay_type is ServerType.BRIDGE:
                    continue

                # DAITA and anti-censorship only exist on WireGuard relays
                if daita:
                    if relay_type is not ServerType.WIREGUARD or not has_daita(endpoint_data):
                        continue

                if anti_censorship is not AntiCensorship.NONE:
                    if relay_type is not ServerType.WIREGUARD:
                        continue
                    if not matches_anti_censorship(endpoint_data, anti_censorship):
                        continue

                ipv4 = relay.get('ipv4_addr_in') or ''
                ipv6 = relay.get('ipv6_addr_in') or ''
                if ip_version.is_ipv6 and not ipv6:
                    continue
                if not ip_version.is_ipv6 and not ipv4:
                    continue

                loc = relay.get('location') or {}
                if not isinstance(loc, dict):
                    raise RelayFileError(
                        f"malformed relays file: location of {relay.get('hostname')} is not an object"
                    )
                locations.append(Location(
                    hostname=relay.get('hostname', ''),
                    ipv4_address=ipv4,
                    ipv6_address=ipv6,
                    country=loc.get('country') or country.get('name', ''),
                    city=loc.get('city') or city.get('name', ''),
                    latitude=_coordinate(loc.get('latitude'), city.get('latitude')),
                    longitude=_coordinate(loc.get('longitude'), city.get('longitude')),
                    type=str(relay_type),
                    provider=relay.get('provider', ''),
                    is_active=bool(relay.get('active')),
                    is_mullvad_owned=bool(relay.get('owned')),
                ))

    if skipped:
        logger.warning("%d relay(s) skipped due to unknown endpoint_data format", skipped)

    return locations, skipped
