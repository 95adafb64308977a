"""Great-circle distance and distance-weighted interpolation along polylines."""

import math
from bisect import bisect_left
from dataclasses import dataclass

EARTH_RADIUS_M = 6_371_000.0


@dataclass(frozen=True)
class Coordinate:
    lat: float
    lon: float

    def as_lon_lat(self) -> tuple[float, float]:
        return (self.lon, self.lat)


def distance_meters(a: Coordinate, b: Coordinate) -> float:
    """Haversine distance in meters between two coordinates."""
    dlat = math.radians(b.lat - a.lat)
    dlon = math.radians(b.lon - a.lon)
    h = (math.sin(dlat / 2) ** 2 +
         math.cos(math.radians(a.lat)) * math.cos(math.radians(b.lat)) *
         math.sin(dlon / 2) ** 2)
    # Rounding can push h a hair past 1.0 for antipodal points
    h = min(1.0, max(0.0, h))
    return EARTH_RADIUS_M * 2 * math.asin(math.sqrt(h))


def cumulative_distances(polyline: list[Coordinate]) -> list[float]:
    """Distance from the first point to each point, walking the polyline."""
    table = [0.0]
    for prev, curr in zip(polyline, polyline[1:]):
        table.append(table[-1] + distance_meters(prev, curr))
    return table


def polyline_length(polyline: list[Coordinate]) -> float:
    if len(polyline) < 2:
        return 0.0
    return cumulative_distances(polyline)[-1]


def distance_weighted_point(polyline: list[Coordinate], fraction: float) -> Coordinate:
    """Point at ``fraction`` of the polyline's length, measured along its segments.

    Unlike the middle array index, this respects unequal segment lengths.
    Fractions outside [0, 1] are clamped. A polyline of one point returns it.
    """
    if not polyline:
        raise ValueError("polyline must contain at least one point")
    if len(polyline) == 1:
        return polyline[0]

    fraction = max(0.0, min(1.0, fraction))
    table = cumulative_distances(polyline)
    total = table[-1]
    if total <= 0.0:
        return polyline[0]

    target = fraction * total
    # First index whose cumulative distance reaches the target
    idx = bisect_left(table, target)
    if idx == 0:
        return polyline[0]
    if idx >= len(table):
        return polyline[-1]

    start, end = polyline[idx - 1], polyline[idx]
    seg_len = table[idx] - table[idx - 1]
    if seg_len <= 0.0:
        return end
    t = (target - table[idx - 1]) / seg_len
    return Coordinate(
        lat=start.lat + (end.lat - start.lat) * t,
        lon=start.lon + (end.lon - start.lon) * t,
    )
