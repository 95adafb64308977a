"""Tests for the REST and WebSocket surface, wired to stub collaborators."""

import time

import orjson
import pytest
from fastapi.testclient import TestClient

from paradero.api import routes, stops, ws
from paradero.config import settings
from paradero.core import arrival_sync
from paradero.core.directions_client import DirectionsRoute
from paradero.core.errors import NoRouteAvailable, UpstreamFetchFailure
from paradero.core.geo_math import Coordinate
from paradero.core.red_client import VehicleReport
from paradero.core.route_geometry import RouteGeometryEngine
from paradero.core.stop_resolver import KIND_BUS_STOP, KIND_FARE_POINT, RawStop
from paradero.main import app


class StubRed:
    def __init__(self) -> None:
        self.points = [
            RawStop(3, "PA3", "Lejos", Coordinate(-33.4581, -70.67), KIND_BUS_STOP),
            RawStop(9, "BIP9", "Carga Bip", Coordinate(-33.4501, -70.67), KIND_FARE_POINT),
            RawStop(1, "PA1", "Cerca", Coordinate(-33.4505, -70.67), KIND_BUS_STOP),
        ]
        self.fail = False
        self.lookup_status = 404

    async def fetch_points(self, origin):
        if self.fail:
            raise UpstreamFetchFailure("points: HTTP 503")
        return self.points

    async def locate_stop(self, code):
        for p in self.points:
            if p.code == code:
                return p
        raise UpstreamFetchFailure(f"prediction {code}: HTTP {self.lookup_status}", status_code=self.lookup_status)

    async def fetch_arrivals(self, code):
        return [
            VehicleReport("506", "AA-11", 1500.0, 8, 12, True, "Maipu", "#ED1C24"),
            VehicleReport("210", "", None, None, None, False),
            VehicleReport("D18", "CJ-20", 60.0, 0, 0, True),
        ]


class StubDirections:
    def __init__(self, route=None) -> None:
        self.route = route

    async def fetch_walking_route(self, origin, destination):
        if self.route is None:
            raise NoRouteAvailable("no path")
        return self.route


class StubDirectory:
    def search(self, prefix, limit=50):
        return [c for c in ["PA1", "PA12", "PB3"] if c.lower().startswith(prefix.lower())][:limit]


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(stops, "red", StubRed())
    monkeypatch.setattr(stops, "directory", StubDirectory())
    monkeypatch.setattr(routes, "engine", RouteGeometryEngine(StubDirections()))
    # No context manager: the lifespan (real upstream clients) is not started
    return TestClient(app)


def test_health(client):
    assert client.get("/api/health").json() == {"status": "ok"}


def test_nearby_ranks_bus_stops(client):
    resp = client.get("/api/stops/nearby", params={"lat": -33.45, "lon": -70.67})
    assert resp.status_code == 200
    body = resp.json()
    assert [s["code"] for s in body] == ["PA1", "PA3"]
    assert body[0]["distance_m"] < body[1]["distance_m"]


def test_nearby_upstream_failure(client):
    stops.red.fail = True
    resp = client.get("/api/stops/nearby", params={"lat": -33.45, "lon": -70.67})
    assert resp.status_code == 502


def test_nearby_rejects_bad_latitude(client):
    resp = client.get("/api/stops/nearby", params={"lat": 123, "lon": -70.67})
    assert resp.status_code == 422


def test_code_search(client):
    assert client.get("/api/stops/codes", params={"prefix": "pa1"}).json() == ["PA1", "PA12"]


def test_stop_by_code(client):
    resp = client.get("/api/stops/PA3")
    assert resp.status_code == 200
    assert resp.json()["name"] == "Lejos"
    assert client.get("/api/stops/NOPE").status_code == 404


def test_stop_lookup_upstream_outage_is_bad_gateway(client):
    stops.red.lookup_status = 503
    assert client.get("/api/stops/NOPE").status_code == 502
    # Known stops still resolve without touching the failing path
    assert client.get("/api/stops/PA1").status_code == 200


def test_arrivals_are_ranked(client):
    resp = client.get("/api/stops/PA1/arrivals")
    assert resp.status_code == 200
    body = resp.json()
    assert body["stop"] == "PA1"
    assert body["error"] is False
    assert [a["line_id"] for a in body["arrivals"]] == ["D18", "506", "210"]
    assert body["arrivals"][0]["arriving_now"] is True
    assert body["arrivals"][1]["destination"] == "Maipu"


def test_walking_route_absent_is_null(client):
    resp = client.get("/api/route/walking", params={
        "from_lat": -33.45, "from_lon": -70.67, "to_lat": -33.448, "to_lon": -70.665,
    })
    assert resp.status_code == 200
    assert resp.json() is None


def test_walking_route_present(client, monkeypatch):
    a, b, c = Coordinate(-33.45, -70.67), Coordinate(-33.45, -70.669), Coordinate(-33.45, -70.665)
    route = DirectionsRoute(polyline=[a, b, c], distance_meters=470.0, duration_seconds=330.0)
    monkeypatch.setattr(routes, "engine", RouteGeometryEngine(StubDirections(route)))
    resp = client.get("/api/route/walking", params={
        "from_lat": -33.45, "from_lon": -70.67, "to_lat": -33.45, "to_lon": -70.665,
    })
    body = resp.json()
    assert body["total_distance_m"] == 470.0
    assert len(body["polyline"]) == 3
    assert body["midpoint"]["lon"] == pytest.approx(-70.6675, abs=1e-7)


def test_stream_frame_payload():
    from paradero.api.ws import board_payload
    from paradero.core.arrival_sync import ArrivalBoard

    board = ArrivalBoard()
    board.apply([VehicleReport("506", "AA-11", 900.0, 6, 9, True)])
    board.apply([VehicleReport("506", "AA-11", 400.0, 3, 5, True)])
    board.apply(None)

    frame = orjson.loads(board_payload("PA1", board))
    assert frame["type"] == "arrivals"
    assert frame["error"] is True
    assert frame["arrivals"][0]["distance_m"] == 400.0
    assert frame["arrivals"][0]["previous_distance_m"] == 900.0


class ApproachingRed:
    """One bus that gets 10 m closer on every fetch."""

    def __init__(self) -> None:
        self.calls = 0

    async def fetch_arrivals(self, code):
        self.calls += 1
        return [VehicleReport("506", "AA-11", 1000.0 - 10 * self.calls, 4, 7, True)]


def next_frame_with_arrivals(socket, limit=20) -> dict:
    for _ in range(limit):
        frame = orjson.loads(socket.receive_bytes())
        if frame["arrivals"] and not frame["error"]:
            return frame
    raise AssertionError("no fresh arrivals frame received")


def test_stream_pause_resume_and_close(monkeypatch):
    red = ApproachingRed()
    closed = []
    original_close = arrival_sync.LiveArrivalSync.close

    async def recording_close(self):
        await original_close(self)
        closed.append(self)

    monkeypatch.setattr(ws, "red", red)
    monkeypatch.setattr(settings, "sync_interval_ms", 100)
    monkeypatch.setattr(settings, "sync_frame_ms", 5)
    monkeypatch.setattr(arrival_sync.LiveArrivalSync, "close", recording_close)

    with TestClient(app).websocket_connect("/ws/stops/PA1/arrivals") as socket:
        first = next_frame_with_arrivals(socket)
        second = next_frame_with_arrivals(socket)
        assert first["stop"] == "PA1"
        assert second["arrivals"][0]["distance_m"] < first["arrivals"][0]["distance_m"]
        assert second["arrivals"][0]["previous_distance_m"] == first["arrivals"][0]["distance_m"]

        socket.send_json({"action": "pause"})
        time.sleep(0.2)
        paused_at = red.calls
        time.sleep(0.4)
        assert red.calls == paused_at

        socket.send_json({"action": "resume"})
        # Frames queued before the pause may still be buffered; wait for a fresh fetch
        for _ in range(20):
            frame = next_frame_with_arrivals(socket)
            if frame["arrivals"][0]["distance_m"] <= 1000.0 - 10 * (paused_at + 1):
                break
        else:
            raise AssertionError("no frame after resume")
        assert red.calls > paused_at

    for _ in range(200):
        if closed:
            break
        time.sleep(0.01)
    assert len(closed) == 1
    assert closed[0].cycles_completed > 0
