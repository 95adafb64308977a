"""Rank transit stops by great-circle distance from the rider.

The transit authority's point query mixes physical bus stops with other
point types (fare-card kiosks). Only bus stops are ever offered to the rider.
"""

import logging
from dataclasses import dataclass

from paradero.core.geo_math import Coordinate, distance_meters

logger = logging.getLogger(__name__)

# Point kinds as reported by the transit authority
KIND_BUS_STOP = 0
KIND_FARE_POINT = 1


@dataclass(frozen=True)
class RawStop:
    id: int
    code: str
    name: str
    coordinate: Coordinate
    kind: int = KIND_BUS_STOP


@dataclass(frozen=True)
class StopCandidate:
    id: int
    code: str
    name: str
    coordinate: Coordinate
    distance_meters: float


def _candidate(stop: RawStop, distance: float) -> StopCandidate:
    return StopCandidate(
        id=stop.id,
        code=stop.code,
        name=stop.name,
        coordinate=stop.coordinate,
        distance_meters=distance,
    )


def nearby(origin: Coordinate, raw_stops: list[RawStop]) -> list[StopCandidate]:
    """Bus stops from ``raw_stops`` ordered nearest-first from ``origin``.

    Equal distances keep their input order.
    """
    candidates = [
        _candidate(s, distance_meters(origin, s.coordinate))
        for s in raw_stops
        if s.kind == KIND_BUS_STOP
    ]
    # list.sort is stable, so ties stay in input order
    candidates.sort(key=lambda c: c.distance_meters)
    logger.debug(
        "Resolved %d bus stops out of %d points near (%.5f, %.5f)",
        len(candidates), len(raw_stops), origin.lat, origin.lon,
    )
    return candidates


def by_code(raw_stops: list[RawStop], code: str) -> StopCandidate | None:
    """Exact, case-sensitive lookup of a stop by its code."""
    for s in raw_stops:
        if s.code == code:
            return _candidate(s, 0.0)
    return None


def search_codes(codes: list[str], prefix: str) -> list[str]:
    """Stop codes starting with ``prefix`` (case-insensitive), in input order."""
    needle = prefix.strip().lower()
    if not needle:
        return list(codes)
    return [c for c in codes if c.lower().startswith(needle)]
