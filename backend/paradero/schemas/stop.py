from pydantic import BaseModel


class CoordinateInfo(BaseModel):
    lat: float
    lon: float


class StopCandidateInfo(BaseModel):
    id: int
    code: str
    name: str
    lat: float
    lon: float
    distance_m: float
