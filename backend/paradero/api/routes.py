"""Walking route REST API endpoint."""

from fastapi import APIRouter, HTTPException, Query

from paradero.core.geo_math import Coordinate
from paradero.core.route_geometry import RouteGeometry
from paradero.schemas.route import WalkingRoute
from paradero.schemas.stop import CoordinateInfo

router = APIRouter(prefix="/api/route", tags=["route"])

# Will be set by main.py
engine = None


def to_walking_route(g: RouteGeometry) -> WalkingRoute:
    return WalkingRoute(
        polyline=[CoordinateInfo(lat=p.lat, lon=p.lon) for p in g.polyline],
        total_distance_m=g.total_distance_meters,
        duration_s=g.duration_seconds,
        midpoint=CoordinateInfo(lat=g.midpoint.lat, lon=g.midpoint.lon),
    )


@router.get("/walking", response_model=WalkingRoute | None)
async def get_walking_route(
    from_lat: float = Query(ge=-90, le=90),
    from_lon: float = Query(ge=-180, le=180),
    to_lat: float = Query(ge=-90, le=90),
    to_lon: float = Query(ge=-180, le=180),
):
    """Walking path between two points, or null when no route can be drawn."""
    if engine is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    geometry = await engine.walking_route(
        Coordinate(lat=from_lat, lon=from_lon),
        Coordinate(lat=to_lat, lon=to_lon),
    )
    if geometry is None:
        return None
    return to_walking_route(geometry)
