"""Walking route between the rider and the chosen stop, with a label midpoint."""

import logging
from dataclasses import dataclass

from paradero.core.directions_client import DirectionsClient
from paradero.core.errors import NoRouteAvailable, UpstreamFetchFailure
from paradero.core.geo_math import Coordinate, distance_weighted_point, polyline_length

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RouteGeometry:
    polyline: list[Coordinate]
    total_distance_meters: float
    midpoint: Coordinate
    duration_seconds: float = 0.0


class RouteGeometryEngine:
    """Computes walking geometry and keeps it matched to the current endpoints.

    A route is a visual aid only: every failure degrades to "no route"
    (None) instead of raising.
    """

    def __init__(self, directions: DirectionsClient) -> None:
        self.directions = directions
        self.geometry: RouteGeometry | None = None
        self._endpoints: tuple[Coordinate, Coordinate] | None = None

    async def walking_route(self, origin: Coordinate, destination: Coordinate) -> RouteGeometry | None:
        try:
            route = await self.directions.fetch_walking_route(origin, destination)
        except NoRouteAvailable as e:
            logger.info("No walking route: %s", e)
            return None
        except UpstreamFetchFailure as e:
            logger.warning("Walking route unavailable: %s", e)
            return None

        derived = polyline_length(route.polyline)
        if route.distance_meters > 0 and abs(derived - route.distance_meters) > 0.5 * route.distance_meters:
            logger.debug(
                "Walking route geometry is %.0f m but service reports %.0f m", derived, route.distance_meters,
            )

        return RouteGeometry(
            polyline=route.polyline,
            # Keep the distance the routing service reports, not our own sum
            total_distance_meters=route.distance_meters,
            midpoint=distance_weighted_point(route.polyline, 0.5),
            duration_seconds=route.duration_seconds,
        )

    async def update_endpoints(self, origin: Coordinate, destination: Coordinate) -> RouteGeometry | None:
        """Recompute the route for new endpoints; the latest request wins.

        Returns the geometry for the current endpoints, which may be None
        while a newer request is still in flight.
        """
        requested = (origin, destination)
        if requested == self._endpoints:
            return self.geometry

        self._endpoints = requested
        self.geometry = None
        geometry = await self.walking_route(origin, destination)

        if self._endpoints != requested:
            logger.debug("Dropping stale walking route for %s -> %s", origin, destination)
            return self.geometry

        self.geometry = geometry
        return geometry

    def clear(self) -> None:
        """Forget the endpoints; any response still in flight is dropped."""
        self._endpoints = None
        self.geometry = None
