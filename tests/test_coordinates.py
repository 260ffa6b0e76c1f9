import math
import random
import statistics

import pytest

from hopperload.coordinates import (
    haversine_km,
    sample_in_annulus,
    sample_within_radius,
    validation_targets,
)
from hopperload.models import Coordinate


def test_within_radius_stays_inside_disk(london):
    rng = random.Random(7)
    for _ in range(2000):
        point = sample_within_radius(london, 5.0, rng)
        assert haversine_km(london, point) <= 5.0 * 1.02


def test_within_radius_is_area_uniform(london):
    rng = random.Random(11)
    distances = [haversine_km(london, sample_within_radius(london, 10.0, rng)) for _ in range(4000)]
    # Area-uniform sampling puts half the points inside radius / sqrt(2)
    assert statistics.median(distances) / 10.0 == pytest.approx(1 / math.sqrt(2), abs=0.03)


def test_annulus_distance_within_band(london):
    rng = random.Random(3)
    for _ in range(2000):
        point = sample_in_annulus(london, 40.0, 50.0, rng)
        d = haversine_km(london, point)
        assert 40.0 * 0.97 <= d <= 50.0 * 1.03


def test_annulus_radius_is_linear_uniform(london):
    rng = random.Random(5)
    distances = [haversine_km(london, sample_in_annulus(london, 10.0, 20.0, rng)) for _ in range(4000)]
    # Linear in radius: median sits at the middle of the band
    assert statistics.median(distances) == pytest.approx(15.0, abs=0.5)


@pytest.mark.parametrize(
    "center",
    [
        Coordinate(89.99, 0.0),
        Coordinate(-89.99, 10.0),
        Coordinate(0.0, 179.99),
        Coordinate(-45.0, -179.99),
        Coordinate(90.0, 180.0),
    ],
)
def test_samples_stay_within_bounds(center):
    rng = random.Random(1)
    for _ in range(500):
        for point in (
            sample_within_radius(center, 100.0, rng),
            sample_in_annulus(center, 40.0, 50.0, rng),
        ):
            assert -90.0 <= point.latitude <= 90.0
            assert -180.0 <= point.longitude <= 180.0


def test_same_seed_same_point(london):
    a = sample_within_radius(london, 5.0, random.Random(42))
    b = sample_within_radius(london, 5.0, random.Random(42))
    assert a == b


def test_zero_radius_returns_center(london):
    assert sample_within_radius(london, 0.0, random.Random(1)) == london


def test_haversine_known_distance():
    london = Coordinate(51.5074, -0.1278)
    paris = Coordinate(48.8566, 2.3522)
    assert haversine_km(london, paris) == pytest.approx(343.5, abs=1.0)


def test_validation_targets_are_about_one_km_away(london):
    first, second = validation_targets(london)
    assert first.latitude > london.latitude and second.latitude < london.latitude
    for target in (first, second):
        assert 1.0 < haversine_km(london, target) < 2.0
