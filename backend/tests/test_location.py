"""
Tests for location scoring.
"""
import pytest

from marketplace.location import (
    haversine_km,
    distance_between,
    score_location,
    area_match,
    in_area,
)
from fakes import make_location

BASE = (5.556, -0.182)


def north_of_base(degrees):
    """A point due north of BASE; one degree of latitude is ~111.2 km."""
    return make_location(locality='Elsewhere', city='Elsewhere', region='Elsewhere',
                         gps=(BASE[0] + degrees, BASE[1]))


class TestHaversine:
    """Tests for great-circle distance."""

    def test_zero_distance(self):
        """Same point is 0 km away."""
        assert haversine_km(BASE, BASE) == 0

    def test_one_degree_latitude(self):
        """One degree of latitude is about 111 km on a 6371 km sphere."""
        distance = haversine_km((0.0, 0.0), (1.0, 0.0))
        assert distance == pytest.approx(111.19, abs=0.05)

    def test_missing_coordinates_gives_none(self):
        """Distance is only defined when both sides carry GPS."""
        with_gps = make_location(gps=BASE)
        without_gps = make_location()
        assert distance_between(with_gps, without_gps) is None
        assert distance_between(None, with_gps) is None


class TestGpsBands:
    """Tests for distance band mapping."""

    @pytest.mark.parametrize('degrees,expected', [
        (0.03, 25.0),   # ~3.3 km
        (0.08, 20.0),   # ~8.9 km
        (0.15, 15.0),   # ~16.7 km
        (0.40, 7.5),    # ~44.5 km
        (1.00, 0.0),    # ~111 km
    ])
    def test_band_scores(self, degrees, expected):
        """Closer providers land in higher bands."""
        task_location = make_location(gps=BASE)
        score, distance = score_location(task_location, north_of_base(degrees), 25)
        assert score == pytest.approx(expected)
        assert distance is not None

    def test_max_travel_distance_forces_zero(self):
        """Exceeding the task's travel limit zeroes the slot even inside a good band."""
        task_location = make_location(gps=BASE)
        score, distance = score_location(task_location, north_of_base(0.08), 25, max_distance_km=5)
        assert score == 0.0
        assert distance > 5

    def test_within_max_travel_distance(self):
        """Inside the travel limit the band applies as usual."""
        task_location = make_location(gps=BASE)
        score, _ = score_location(task_location, north_of_base(0.03), 25, max_distance_km=5)
        assert score == 25.0


class TestCategoricalFallback:
    """Tests for locality/city/region matching when GPS is missing."""

    def test_locality_match(self):
        score, distance = score_location(make_location(), make_location(), 25)
        assert score == 25.0
        assert distance is None

    def test_city_match(self):
        """Different locality, same city gets 70% of the slot."""
        provider = make_location(locality='Labone')
        score, _ = score_location(make_location(), provider, 100)
        assert score == pytest.approx(70.0)

    def test_region_match(self):
        """Same region only gets half the slot."""
        provider = make_location(locality='Madina', city='Adenta')
        score, _ = score_location(make_location(), provider, 100)
        assert score == pytest.approx(50.0)

    def test_no_match(self):
        provider = make_location(locality='Adum', city='Kumasi', region='Ashanti')
        score, _ = score_location(make_location(), provider, 100)
        assert score == 0.0

    def test_comparison_ignores_case(self):
        """Place names are compared case-insensitively."""
        provider = make_location(locality='OSU')
        assert area_match(make_location(), provider) == 'locality'

    def test_missing_names_never_match(self):
        """Two locations that both lack a locality do not match on it."""
        task_location = make_location(locality=None)
        provider = make_location(locality=None, city='Tema')
        assert area_match(task_location, provider) == 'region'
        assert in_area(make_location(locality=None, city=None, region=None), provider) is False

    def test_gps_takes_precedence(self):
        """With GPS on both sides the categorical match is ignored."""
        task_location = make_location(gps=BASE)
        provider = make_location(gps=(BASE[0] + 1.0, BASE[1]))
        score, _ = score_location(task_location, provider, 25)
        assert score == 0.0


class TestRemote:
    """Tests for remote-capable tasks."""

    def test_remote_scores_maximum(self):
        """Location is irrelevant for remote tasks."""
        provider = make_location(locality='Adum', city='Kumasi', region='Ashanti')
        score, _ = score_location(make_location(), provider, 25, remote=True)
        assert score == 25.0

    def test_deterministic(self):
        """Same inputs give the same output."""
        task_location = make_location(gps=BASE)
        provider = north_of_base(0.08)
        assert score_location(task_location, provider, 25) == score_location(task_location, provider, 25)


class TestInArea:
    """Tests for the reachability check used by interest and location-only matching."""

    def test_gps_only_task_reaches_nearby_provider(self):
        """A task with only coordinates still has providers in reach."""
        task_location = {'gpsCoordinates': {'latitude': 5.560, 'longitude': -0.185}}
        provider = make_location(gps=BASE)
        assert in_area(task_location, provider) is True

    def test_gps_beyond_every_band(self):
        """Shared names do not help once both sides have coordinates."""
        task_location = make_location(gps=BASE)
        provider = make_location(gps=(BASE[0] + 1.0, BASE[1]))
        assert in_area(task_location, provider) is False

    def test_travel_limit(self):
        """maxTravelDistanceKm narrows reach inside the bands."""
        provider = north_of_base(0.03)
        assert in_area(make_location(gps=BASE), provider) is True
        assert in_area(make_location(gps=BASE), provider, max_distance_km=2) is False

    def test_names_used_when_either_side_lacks_gps(self):
        task_location = {'gpsCoordinates': {'latitude': 5.560, 'longitude': -0.185}}
        assert in_area(task_location, make_location()) is False
        assert in_area(make_location(gps=BASE), make_location(locality='Osu')) is True
