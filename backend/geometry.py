"""Coordinate helpers for walk routes.

All points are ``(lat, lon)`` tuples in decimal degrees. Nothing in here
touches the network.
"""

import math
import re
from typing import Sequence

LatLon = tuple[float, float]

EARTH_RADIUS_M: float = 6_371_000

# Per-axis tolerance (degrees) below which two coordinates are the same place.
# Walk data carries floating noise from AI output and map clicks.
SAME_POINT_EPSILON: float = 0.002

# Nudge applied to the start when a circular walk has no destination to
# route through. Placeholder policy: it has no notion of walkable terrain.
DEFAULT_LOOP_OFFSET: float = 0.005

# Elevation profile shape.
PROFILE_MAX_POINTS: int = 200
PROFILE_DEFAULT_ASCENT_M: float = 100.0

_LEADING_NUMBER = re.compile(r"^\s*(-?\d+(?:\.\d+)?)")


def haversine_m(a: LatLon, b: LatLon) -> float:
    """Returns the great-circle distance in metres between two points."""
    lat1_r, lat2_r = math.radians(a[0]), math.radians(b[0])
    dlat = lat2_r - lat1_r
    dlon = math.radians(b[1] - a[1])
    h = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1_r) * math.cos(lat2_r) * math.sin(dlon / 2) ** 2
    )
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def path_length_m(points: Sequence[LatLon]) -> float:
    """Sums the haversine length of every leg along ``points``."""
    return sum(haversine_m(points[i - 1], points[i]) for i in range(1, len(points)))


def same_point(a: LatLon, b: LatLon, epsilon: float = SAME_POINT_EPSILON) -> bool:
    """True if both axes differ by less than ``epsilon`` degrees."""
    return abs(a[0] - b[0]) < epsilon and abs(a[1] - b[1]) < epsilon


def interpolate(start: LatLon, end: LatLon, segments: int = 20) -> list[LatLon]:
    """Returns ``segments + 1`` evenly spaced points from start to end inclusive.

    This is the straight-line preview drawn when no real trail is available.
    """
    if segments < 1:
        raise ValueError("segments must be at least 1.")
    points = [
        (
            start[0] + (end[0] - start[0]) * (i / segments),
            start[1] + (end[1] - start[1]) * (i / segments),
        )
        for i in range(segments)
    ]
    # Land exactly on the end point rather than on accumulated float error.
    points.append((end[0], end[1]))
    return points


def offset(point: LatLon, d_lat: float, d_lon: float) -> LatLon:
    return (point[0] + d_lat, point[1] + d_lon)


def farthest_from(origin: LatLon, points: Sequence[LatLon]) -> LatLon | None:
    """Returns the point with the greatest distance from ``origin``.

    On a circular walk this recovers the turning point (summit, tarn, etc.)
    from an already-rendered path. Returns None for an empty sequence.
    """
    best: LatLon | None = None
    best_dist = -1.0
    for p in points:
        d = haversine_m(origin, p)
        if d > best_dist:
            best_dist = d
            best = p
    return best


def parse_ascent_m(elevation: str | None) -> float:
    """Parses the leading number of an elevation string such as ``"238m"``.

    Falls back to a nominal ascent for ``"N/A"``, blanks and zero.
    """
    match = _LEADING_NUMBER.match(elevation or "")
    if not match:
        return PROFILE_DEFAULT_ASCENT_M
    value = float(match.group(1))
    return value or PROFILE_DEFAULT_ASCENT_M


def elevation_profile(
    waypoints: Sequence[LatLon],
    elevation: str | None,
    max_points: int = PROFILE_MAX_POINTS,
) -> list[tuple[float, float]]:
    """Builds a synthetic ``(distance_m, elevation_m)`` profile along a route.

    There is no elevation data for walks, only the total ascent string, so the
    curve is a sine arch peaking at the midpoint of the route (up to the
    feature and back down), scaled to the stated ascent.

    Returns an empty list if there are fewer than two waypoints.
    """
    if len(waypoints) < 2:
        return []

    ascent = parse_ascent_m(elevation)
    n = len(waypoints)
    step = max(1, n // min(n, max_points))

    profile: list[tuple[float, float]] = []
    total_dist = 0.0
    for i in range(0, n, step):
        if i > 0:
            total_dist += haversine_m(waypoints[max(0, i - step)], waypoints[i])
        x = i / n
        height = ascent * math.sin(x * math.pi) * 0.8 + ascent * 0.1
        profile.append((total_dist, height))
    return profile
