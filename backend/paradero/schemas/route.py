from pydantic import BaseModel

from paradero.schemas.stop import CoordinateInfo


class WalkingRoute(BaseModel):
    polyline: list[CoordinateInfo]
    total_distance_m: float
    duration_s: float
    midpoint: CoordinateInfo
