"""
GroupUp Backend - Geodesy Helpers
=================================

Pure functions shared by the group and building services:

    haversine_distance()   great-circle distance in meters (R = 6,371,000 m)
    round_meters()         half-up rounding of a distance to whole meters
    buffer_degrees()       meters -> degrees at 111,320 m per degree
    meters_per_degree_lon  shrinks with latitude (cos φ)
    ring_bbox_and_centroid footprint bbox and vertex-mean centroid
    share_code()           six-character join code derived from a group id
"""

import math
from typing import Sequence, Tuple

EARTH_RADIUS_M = 6_371_000.0
METERS_PER_DEGREE = 111_320.0

# Longitude degrees collapse toward the poles; clamp so the bbox prefilter
# never divides by zero
_MIN_COS_LAT = 0.01


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two WGS84 points, in meters."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_M * c


def round_meters(distance: float) -> int:
    # Half-up, not banker's rounding: 100.5 m reads as 101 m
    return int(math.floor(distance + 0.5))


def buffer_degrees(meters: float) -> float:
    return meters / METERS_PER_DEGREE


def meters_per_degree_lon(latitude: float) -> float:
    return METERS_PER_DEGREE * max(math.cos(math.radians(latitude)), _MIN_COS_LAT)


def ring_bbox_and_centroid(
    ring: Sequence[Sequence[float]],
) -> Tuple[float, float, float, float, float, float]:
    """
    Bounding box and centroid of a polygon's outer ring.

    The centroid is the plain mean of the ring's vertices. It is only used
    for display and sampling, so the area-weighted centroid is not worth
    computing here.

    Returns:
        (min_x, min_y, max_x, max_y, centroid_x, centroid_y) in lon/lat degrees

    Raises:
        ValueError: the ring has no vertices
    """
    if not ring:
        raise ValueError("polygon ring has no coordinates")

    xs = [float(point[0]) for point in ring]
    ys = [float(point[1]) for point in ring]
    return (
        min(xs),
        min(ys),
        max(xs),
        max(ys),
        sum(xs) / len(xs),
        sum(ys) / len(ys),
    )


def share_code(group_id: str) -> str:
    return group_id[:6].upper()
