from pydantic import BaseModel


class ArrivalInfo(BaseModel):
    vehicle_id: str
    line_id: str
    distance_m: float | None = None
    min_eta: int | None = None
    max_eta: int | None = None
    valid: bool
    arriving_now: bool = False
    previous_distance_m: float | None = None
    previous_min_eta: int | None = None
    destination: str = ""
    color: str = ""


class StopArrivals(BaseModel):
    type: str = "arrivals"
    stop: str
    error: bool = False
    arrivals: list[ArrivalInfo]
