"""Random source/target coordinate generation around a reference point."""

import math
import random
from typing import Optional

from .models import Coordinate

KM_PER_DEGREE = 111.0
EARTH_RADIUS_KM = 6371.0
VALIDATION_OFFSET_DEG = 0.01  # ~1 km

_random = random.Random()


def _project(origin: Coordinate, distance_km: float, angle: float) -> Coordinate:
    distance_deg = distance_km / KM_PER_DEGREE
    lat = origin.latitude + distance_deg * math.cos(angle)
    # Meridians converge away from the equator, so stretch the longitude offset
    lng = origin.longitude + distance_deg * math.sin(angle) / math.cos(
        math.radians(origin.latitude)
    )
    return Coordinate(lat, lng)


def sample_within_radius(
    center: Coordinate, radius_km: float, rng: Optional[random.Random] = None
) -> Coordinate:
    """Pick a point uniformly by area inside the disk of ``radius_km`` around ``center``."""
    rng = rng or _random
    angle = rng.random() * 2 * math.pi
    distance_km = math.sqrt(rng.random()) * radius_km
    return _project(center, distance_km, angle)


def sample_in_annulus(
    target: Coordinate,
    min_radius_km: float,
    max_radius_km: float,
    rng: Optional[random.Random] = None,
) -> Coordinate:
    """Pick a point whose distance from ``target`` lies in [min, max).

    The radius is drawn linearly, not by area; the band is narrow enough that
    the resulting bias toward the inner edge is small.
    """
    rng = rng or _random
    distance_km = rng.random() * (max_radius_km - min_radius_km) + min_radius_km
    angle = rng.random() * 2 * math.pi
    return _project(target, distance_km, angle)


def haversine_km(a: Coordinate, b: Coordinate) -> float:
    phi1, phi2 = math.radians(a.latitude), math.radians(b.latitude)
    d_phi = math.radians(b.latitude - a.latitude)
    d_lambda = math.radians(b.longitude - a.longitude)

    h = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(h), math.sqrt(max(0.0, 1 - h)))


def validation_targets(center: Coordinate) -> tuple[Coordinate, Coordinate]:
    """Two nearby targets used to check that the center has routable data."""
    return (
        Coordinate(center.latitude + VALIDATION_OFFSET_DEG, center.longitude + VALIDATION_OFFSET_DEG),
        Coordinate(center.latitude - VALIDATION_OFFSET_DEG, center.longitude - VALIDATION_OFFSET_DEG),
    )
