import sys

import pytest

from relaycompass.config import DEFAULT_MAX_DISTANCE, Config
from relaycompass.models import AntiCensorship, IPVersion, Location, ServerType
from relaycompass.probe import create_pinger

from conftest import FakeSocket


def test_address_for_has_no_fallback():
    loc = Location(hostname="x", ipv4_address="10.0.0.1")

    assert loc.address_for(IPVersion.IPV4) == "10.0.0.1"
    assert loc.address_for(IPVersion.IPV6) == ""


def test_server_type_parse():
    assert ServerType.parse("bridge") is ServerType.BRIDGE
    with pytest.raises(ValueError, match="unknown server type"):
        ServerType.parse("openvpn")


def test_anti_censorship_parse():
    assert AntiCensorship.parse("") is AntiCensorship.NONE
    assert AntiCensorship.parse("shadowsocks") is AntiCensorship.SHADOWSOCKS
    with pytest.raises(ValueError, match="invalid anti-censorship protocol"):
        AntiCensorship.parse("obfs4")


def test_best_server_mode_without_filters():
    config = Config()
    assert config.best_server_mode
    assert config.distance_limit == DEFAULT_MAX_DISTANCE


@pytest.mark.parametrize("options", [
    {"max_distance": 1000.0},
    {"anti_censorship": AntiCensorship.QUIC},
    {"daita": True},
    {"ip_version": IPVersion.IPV6},
])
def test_any_filter_switches_to_table_mode(options):
    assert not Config(**options).best_server_mode


def test_distance_limit_uses_max_distance():
    assert Config(max_distance=1234.0).distance_limit == 1234.0


@pytest.mark.skipif(sys.platform == "win32", reason="ping sockets are not used on Windows")
def test_create_pinger_opens_ping_socket(monkeypatch):
    import relaycompass.probe.manager as manager

    opened = []

    def fake_open(ip_version):
        opened.append(ip_version)
        return FakeSocket(ip_version)

    monkeypatch.setattr(manager, "open_icmp_socket", fake_open)

    with create_pinger(IPVersion.IPV6) as pinger:
        assert isinstance(pinger, manager.SocketManager)

    assert opened == [IPVersion.IPV6]
