"""
GroupUp Backend - Geodesy Helper Tests
======================================

Haversine properties (symmetry, zero distance, known distances), rounding,
and the footprint bbox/centroid helper used while loading buildings.
"""

import math

import pytest

from groupup.services.geo import (
    EARTH_RADIUS_M,
    buffer_degrees,
    haversine_distance,
    meters_per_degree_lon,
    ring_bbox_and_centroid,
    round_meters,
    share_code,
)

NASHVILLE = (36.1627, -86.7816)
METERS_PER_DEGREE_LAT = EARTH_RADIUS_M * math.pi / 180


class TestHaversine:

    def test_same_point_is_zero(self):
        assert haversine_distance(*NASHVILLE, *NASHVILLE) == 0.0

    @pytest.mark.parametrize(
        "a,b",
        [
            (NASHVILLE, (36.1700, -86.7900)),
            ((0.0, 0.0), (0.0, 1.0)),
            ((51.5074, -0.1278), (48.8566, 2.3522)),
        ],
    )
    def test_symmetric(self, a, b):
        assert haversine_distance(*a, *b) == pytest.approx(haversine_distance(*b, *a), abs=1e-9)

    def test_one_degree_of_latitude(self):
        d = haversine_distance(0.0, 0.0, 1.0, 0.0)
        assert d == pytest.approx(METERS_PER_DEGREE_LAT, rel=1e-9)

    def test_london_paris(self):
        d = haversine_distance(51.5074, -0.1278, 48.8566, 2.3522)
        assert 343_000 < d < 344_500

    def test_hundred_meters_north_rounds_to_hundred(self):
        lat, lon = NASHVILLE
        d = haversine_distance(lat, lon, lat + 100 / METERS_PER_DEGREE_LAT, lon)
        assert round_meters(d) == 100


class TestRounding:

    def test_half_rounds_up(self):
        assert round_meters(100.5) == 101
        assert round_meters(0.5) == 1

    def test_below_half_rounds_down(self):
        assert round_meters(100.49) == 100


class TestDegreeConversions:

    def test_buffer_degrees(self):
        assert buffer_degrees(111_320) == pytest.approx(1.0)
        assert buffer_degrees(40) == pytest.approx(40 / 111_320)

    def test_longitude_degree_shrinks_with_latitude(self):
        assert meters_per_degree_lon(0) == pytest.approx(111_320)
        assert meters_per_degree_lon(60) == pytest.approx(55_660, rel=1e-3)

    def test_longitude_degree_never_zero_at_pole(self):
        assert meters_per_degree_lon(90) > 0


class TestRingBBox:

    def test_square(self):
        ring = [[0, 0], [0, 2], [2, 2], [2, 0], [0, 0]]
        min_x, min_y, max_x, max_y, cx, cy = ring_bbox_and_centroid(ring)
        assert (min_x, min_y, max_x, max_y) == (0, 0, 2, 2)
        # Vertex mean includes the closing vertex
        assert cx == pytest.approx(0.8)
        assert cy == pytest.approx(0.8)

    def test_empty_ring_rejected(self):
        with pytest.raises(ValueError):
            ring_bbox_and_centroid([])


def test_share_code_is_first_six_uppercased():
    assert share_code("3f2a9c1e-0000-4000-8000-000000000000") == "3F2A9C"
