"""Async client for the Mapbox Directions API (walking profile only)."""

import logging
from dataclasses import dataclass

import httpx

from paradero.config import settings
from paradero.core.errors import NoRouteAvailable, UpstreamFetchFailure
from paradero.core.geo_math import Coordinate

logger = logging.getLogger(__name__)

WALKING_PROFILE = "mapbox/walking"


@dataclass(frozen=True)
class DirectionsRoute:
    polyline: list[Coordinate]
    distance_meters: float
    duration_seconds: float


def _format_point(c: Coordinate) -> str:
    # Mapbox wants "lon,lat"
    return f"{c.lon:.6f},{c.lat:.6f}"


def parse_directions(data: dict) -> DirectionsRoute:
    routes = data.get("routes") or []
    if not routes:
        raise NoRouteAvailable(f"Directions returned no routes (code={data.get('code')})")

    route = routes[0] if isinstance(routes, list) else None
    geometry = route.get("geometry") if isinstance(route, dict) else None
    if not isinstance(geometry, dict):
        raise UpstreamFetchFailure("Directions route has no GeoJSON geometry")
    coords = geometry.get("coordinates") or []
    try:
        # GeoJSON [lon, lat] -> Coordinate(lat, lon)
        polyline = [Coordinate(lat=float(c[1]), lon=float(c[0])) for c in coords]
        distance = float(route.get("distance", 0.0))
        duration = float(route.get("duration", 0.0))
    except (ValueError, TypeError, IndexError) as e:
        raise UpstreamFetchFailure("Malformed directions geometry") from e

    if not polyline:
        raise NoRouteAvailable("Directions route has an empty geometry")
    return DirectionsRoute(polyline=polyline, distance_meters=distance, duration_seconds=duration)


class DirectionsClient:
    """Requests walking polylines between two coordinates."""

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._client = httpx.AsyncClient(
            base_url=settings.directions_base_url,
            timeout=settings.http_timeout_seconds,
            headers={"Accept": "application/json"},
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def fetch_walking_route(self, origin: Coordinate, destination: Coordinate) -> DirectionsRoute:
        path = f"/directions/v5/{WALKING_PROFILE}/{_format_point(origin)};{_format_point(destination)}"
        try:
            resp = await self._client.get(
                path,
                params={"geometries": "geojson", "access_token": settings.mapbox_token},
            )
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as e:
            raise UpstreamFetchFailure(f"Directions HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise UpstreamFetchFailure(f"Directions request failed: {type(e).__name__}") from e
        except ValueError as e:
            raise UpstreamFetchFailure("Directions returned a non-JSON body") from e

        if not isinstance(data, dict):
            raise UpstreamFetchFailure("Directions returned an unexpected payload")
        return parse_directions(data)
