"""Stop REST API endpoints."""

from fastapi import APIRouter, HTTPException, Query

from paradero.core.arrival_sync import ArrivalEntity, build_entities
from paradero.core.errors import UpstreamFetchFailure
from paradero.core.geo_math import Coordinate
from paradero.core.stop_resolver import StopCandidate, by_code, nearby
from paradero.schemas.arrival import ArrivalInfo, StopArrivals
from paradero.schemas.stop import StopCandidateInfo

router = APIRouter(prefix="/api/stops", tags=["stops"])

# Will be set by main.py
red = None
directory = None


def to_stop_info(c: StopCandidate) -> StopCandidateInfo:
    return StopCandidateInfo(
        id=c.id, code=c.code, name=c.name,
        lat=c.coordinate.lat, lon=c.coordinate.lon,
        distance_m=round(c.distance_meters, 1),
    )


def to_arrival_info(e: ArrivalEntity) -> ArrivalInfo:
    return ArrivalInfo(
        vehicle_id=e.vehicle_id,
        line_id=e.line_id,
        distance_m=e.distance_meters,
        min_eta=e.min_eta,
        max_eta=e.max_eta,
        valid=e.valid,
        arriving_now=e.arriving_now,
        previous_distance_m=e.previous_distance_meters,
        previous_min_eta=e.previous_min_eta,
        destination=e.destination,
        color=e.color,
    )


def _require_red():
    if red is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    return red


@router.get("/nearby", response_model=list[StopCandidateInfo])
async def list_nearby(lat: float = Query(ge=-90, le=90), lon: float = Query(ge=-180, le=180)):
    """Bus stops around a position, nearest first."""
    client = _require_red()
    origin = Coordinate(lat=lat, lon=lon)
    try:
        points = await client.fetch_points(origin)
    except UpstreamFetchFailure as e:
        raise HTTPException(status_code=502, detail=str(e))
    return [to_stop_info(c) for c in nearby(origin, points)]


@router.get("/codes", response_model=list[str])
async def search_stop_codes(prefix: str = "", limit: int = Query(50, ge=1, le=500)):
    """Stop codes starting with a prefix, for manual entry."""
    if directory is None:
        return []
    return directory.search(prefix, limit=limit)


@router.get("/{code}", response_model=StopCandidateInfo)
async def get_stop(code: str):
    """Locate a stop by its exact code."""
    client = _require_red()
    try:
        stop = await client.locate_stop(code)
    except UpstreamFetchFailure as e:
        if e.status_code == 404:
            raise HTTPException(status_code=404, detail="Stop not found")
        raise HTTPException(status_code=502, detail="Stop lookup failed")
    candidate = by_code([stop], code)
    if candidate is None:
        raise HTTPException(status_code=404, detail="Stop not found")
    return to_stop_info(candidate)


@router.get("/{code}/arrivals", response_model=StopArrivals)
async def get_arrivals(code: str):
    """One-shot ranked arrivals at a stop."""
    client = _require_red()
    try:
        reports = await client.fetch_arrivals(code)
    except UpstreamFetchFailure as e:
        raise HTTPException(status_code=502, detail=str(e))
    return StopArrivals(
        stop=code,
        arrivals=[to_arrival_info(e) for e in build_entities(reports)],
    )
