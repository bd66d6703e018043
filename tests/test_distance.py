import pytest

from relaycompass.distance import calculate_distance, filter_by_distance
from relaycompass.models import Location


def test_same_point_is_zero():
    assert calculate_distance(52.52, 13.405, 52.52, 13.405) == 0.0


def test_known_distance():
    # Berlin to Paris is roughly 878 km
    distance = calculate_distance(52.52, 13.405, 48.8566, 2.3522)
    assert distance == pytest.approx(878, abs=5)


def test_distance_is_symmetric():
    a = calculate_distance(59.33, 18.06, -33.87, 151.21)
    b = calculate_distance(-33.87, 151.21, 59.33, 18.06)
    assert a == pytest.approx(b)


def test_filter_by_distance():
    berlin = Location(hostname="de-ber", latitude=52.52, longitude=13.405)
    paris = Location(hostname="fr-par", latitude=48.8566, longitude=2.3522)
    sydney = Location(hostname="au-syd", latitude=-33.87, longitude=151.21)

    nearby = filter_by_distance([berlin, paris, sydney], 52.52, 13.405, 1000)

    assert [loc.hostname for loc in nearby] == ["de-ber", "fr-par"]
    assert nearby[0].distance_km == 0.0
    assert nearby[1].distance_km == pytest.approx(878, abs=5)
    assert paris.distance_km is None


def test_filter_boundary_is_inclusive():
    here = Location(hostname="here", latitude=10.0, longitude=10.0)
    assert filter_by_distance([here], 10.0, 10.0, 0.0) != []
