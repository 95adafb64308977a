"""Async client for the Red (Santiago transit authority) stop and prediction APIs."""

import logging
import re
from dataclasses import dataclass

import httpx

from paradero.config import settings
from paradero.core.errors import UpstreamFetchFailure
from paradero.core.geo_math import Coordinate
from paradero.core.stop_resolver import KIND_BUS_STOP, RawStop

logger = logging.getLogger(__name__)

# codigorespuesta values for a line that is in service and has predictions
IN_SERVICE_CODES = {"00", "01"}

_ARRIVING_RE = re.compile(r"llegando", re.IGNORECASE)
_BETWEEN_RE = re.compile(r"entre\s+(\d+)\s+y\s+(\d+)", re.IGNORECASE)
_LESS_THAN_RE = re.compile(r"menos\s+de\s+(\d+)", re.IGNORECASE)
_MORE_THAN_RE = re.compile(r"m[aá]s\s+de\s+(\d+)", re.IGNORECASE)


@dataclass(frozen=True)
class VehicleReport:
    line_id: str
    vehicle_id: str
    distance_meters: float | None
    min_eta: int | None  # minutes
    max_eta: int | None
    line_valid: bool
    destination: str = ""
    color: str = ""


@dataclass(frozen=True)
class StopPrediction:
    stop: RawStop
    reports: list[VehicleReport]


def parse_eta_minutes(raw: str | None) -> tuple[int, int] | None:
    """Parse prediction text like 'Entre 03 Y 07 min.' into (min, max) minutes."""
    if not raw:
        return None
    if _ARRIVING_RE.search(raw):
        return (0, 0)
    m = _BETWEEN_RE.search(raw)
    if m:
        low, high = int(m.group(1)), int(m.group(2))
        return (min(low, high), max(low, high))
    m = _LESS_THAN_RE.search(raw)
    if m:
        return (1, max(1, int(m.group(1))))
    m = _MORE_THAN_RE.search(raw)
    if m:
        n = int(m.group(1))
        return (n, n)
    return None


def _parse_distance(raw) -> float | None:
    if raw in (None, ""):
        return None
    try:
        return float(raw)
    except (ValueError, TypeError):
        return None


def parse_service_item(item: dict) -> list[VehicleReport]:
    """Turn one predictor 'servicio' item into per-vehicle reports."""
    line_id = str(item.get("servicio") or "").strip()
    if not line_id:
        return []
    destination = str(item.get("destino") or "")
    color = str(item.get("color") or "")
    line_valid = str(item.get("codigorespuesta", "")) in IN_SERVICE_CODES

    if not line_valid:
        # One placeholder so the rider still sees the line, marked out of service
        return [VehicleReport(
            line_id=line_id, vehicle_id="", distance_meters=None,
            min_eta=None, max_eta=None, line_valid=False,
            destination=destination, color=color,
        )]

    reports = []
    for slot in (1, 2):
        eta = parse_eta_minutes(item.get(f"horaprediccionbus{slot}"))
        if eta is None:
            continue
        plate = str(item.get(f"ppubus{slot}") or "").strip()
        reports.append(VehicleReport(
            line_id=line_id,
            vehicle_id=plate or f"{line_id}#{slot}",
            distance_meters=_parse_distance(item.get(f"distanciabus{slot}")),
            min_eta=eta[0],
            max_eta=eta[1],
            line_valid=True,
            destination=destination,
            color=color,
        ))
    return reports


def parse_prediction(code: str, data: dict) -> StopPrediction:
    """Parse a predictor response for stop ``code``."""
    try:
        coordinate = Coordinate(lat=float(data.get("x")), lon=float(data.get("y")))
    except (ValueError, TypeError) as e:
        # Unknown codes come back as a 200 without a position
        raise UpstreamFetchFailure(f"Prediction for {code} has no stop position", status_code=404) from e

    stop = RawStop(
        id=0,
        code=code,
        name=str(data.get("nomett") or f"Paradero {code}"),
        coordinate=coordinate,
        kind=KIND_BUS_STOP,
    )

    services = data.get("servicios")
    items = (services.get("item") if isinstance(services, dict) else None) or []
    if isinstance(items, dict):
        items = [items]

    reports = []
    for item in items:
        if not isinstance(item, dict):
            continue
        reports.extend(parse_service_item(item))
    return StopPrediction(stop=stop, reports=reports)


def parse_point(item: dict) -> RawStop | None:
    """Parse one record from the point query, or None if it is malformed."""
    try:
        pos = item.get("pos")
        if not pos or len(pos) < 2:
            return None
        return RawStop(
            id=int(item.get("id", 0)),
            code=str(item.get("cod") or ""),
            name=str(item.get("name") or "").strip(),
            coordinate=Coordinate(lat=float(pos[0]), lon=float(pos[1])),
            kind=int(item.get("type", -1)),
        )
    except (ValueError, TypeError):
        return None


class RedClient:
    """Fetches stops and live arrival predictions from red.cl."""

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._client = httpx.AsyncClient(
            base_url=settings.red_base_url,
            timeout=settings.http_timeout_seconds,
            headers={"Accept": "application/json"},
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _get_json(self, path: str, label: str, params: dict | None = None):
        try:
            resp = await self._client.get(path, params=params)
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as e:
            logger.warning("Red %s got HTTP %d", label, e.response.status_code)
            raise UpstreamFetchFailure(
                f"{label}: HTTP {e.response.status_code}", status_code=e.response.status_code
            ) from e
        except httpx.HTTPError as e:
            logger.warning("Red %s failed: %s", label, type(e).__name__)
            raise UpstreamFetchFailure(f"{label}: {type(e).__name__}") from e
        except ValueError as e:
            logger.warning("Red %s returned a non-JSON body", label)
            raise UpstreamFetchFailure(f"{label}: invalid JSON") from e

    async def fetch_points(self, origin: Coordinate) -> list[RawStop]:
        """All transit points (bus stops and fare points) around ``origin``."""
        data = await self._get_json(
            "/restservice/rest/getpuntoparada/",
            "points",
            params={"lat": origin.lat, "lon": origin.lon, "bip": 1},
        )
        if not isinstance(data, list):
            logger.warning("Unexpected points payload type %s", type(data).__name__)
            return []

        points = []
        for item in data:
            if not isinstance(item, dict):
                continue
            stop = parse_point(item)
            if stop is None:
                logger.debug("Skipping malformed point record: %s", item.get("id"))
                continue
            points.append(stop)

        logger.info("Fetched %d transit points near (%.5f, %.5f)", len(points), origin.lat, origin.lon)
        return points

    async def fetch_stop_codes(self) -> list[str]:
        """Every stop code in the network."""
        data = await self._get_json("/restservice_v2/rest/getparadas/all", "stop codes")
        if not isinstance(data, list):
            return []
        codes = [str(c) for c in data if c]
        logger.info("Fetched %d stop codes from Red", len(codes))
        return codes

    async def fetch_prediction(self, code: str) -> StopPrediction:
        """Live predictions for stop ``code``, one report per approaching vehicle."""
        data = await self._get_json(
            "/predictor/prediccion",
            f"prediction {code}",
            params={"t": settings.red_predictor_token, "codsimt": code, "codser": ""},
        )
        if not isinstance(data, dict):
            raise UpstreamFetchFailure(f"prediction {code}: unexpected payload")
        prediction = parse_prediction(code, data)
        logger.debug("Stop %s: %d vehicle reports", code, len(prediction.reports))
        return prediction

    async def fetch_arrivals(self, code: str) -> list[VehicleReport]:
        return (await self.fetch_prediction(code)).reports

    async def locate_stop(self, code: str) -> RawStop:
        return (await self.fetch_prediction(code)).stop
