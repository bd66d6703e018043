"""
Great-circle distance filtering
"""

import dataclasses
import logging
import math

from .models import Location


logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0


def calculate_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Haversine distance between two points in kilometers"""
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lat = math.radians(lat2 - lat1)
    delta_lon = math.radians(lon2 - lon1)

    a = (math.sin(delta_lat / 2) ** 2 +
         math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(delta_lon / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def filter_by_distance(locations: list[Location], lat: float, lon: float,
                       max_distance: float) -> list[Location]:
    """Locations within max_distance km, with distance_km set"""
    logger.debug(
        "Filtering %d locations within %.1f km of (%.4f, %.4f)",
        len(locations), max_distance, lat, lon
    )

    filtered = []
    for loc in locations:
        distance = calculate_distance(lat, lon, loc.latitude, loc.longitude)
        if distance <= max_distance:
            filtered.append(dataclasses.replace(loc, distance_km=distance))

    logger.info(
        "Filtered to %d locations within %.1f km (filtered out %d)",
        len(filtered), max_distance, len(locations) - len(filtered)
    )
    return filtered
