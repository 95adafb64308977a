"""Tests for the Red stop/prediction client and its payload parsing."""

import asyncio

import httpx
import pytest

from paradero.core.errors import UpstreamFetchFailure
from paradero.core.geo_math import Coordinate
from paradero.core.red_client import (
    RedClient,
    parse_eta_minutes,
    parse_prediction,
    parse_service_item,
)
from paradero.core.stop_resolver import KIND_BUS_STOP, KIND_FARE_POINT


def make_prediction_payload(items) -> dict:
    return {
        "nomett": "Parada 3 / Alameda",
        "x": "-33.4448",
        "y": "-70.6551",
        "servicios": {"item": items},
    }


def test_parse_eta_minutes():
    assert parse_eta_minutes("Llegando.") == (0, 0)
    assert parse_eta_minutes("Entre 03 Y 07 min. ") == (3, 7)
    assert parse_eta_minutes("Menos de 5 min.") == (1, 5)
    assert parse_eta_minutes("Mas de 20 min.") == (20, 20)
    assert parse_eta_minutes("Más de 20 min.") == (20, 20)
    assert parse_eta_minutes("Sin información") is None
    assert parse_eta_minutes(None) is None


def test_service_item_yields_both_vehicles():
    reports = parse_service_item({
        "servicio": "506",
        "destino": "Maipu",
        "color": "#ED1C24",
        "codigorespuesta": "00",
        "ppubus1": "FLXV-52",
        "distanciabus1": "640",
        "horaprediccionbus1": "Entre 02 Y 04 min.",
        "ppubus2": "FLXT-11",
        "distanciabus2": "3500",
        "horaprediccionbus2": "Entre 10 Y 14 min.",
    })
    assert [(r.vehicle_id, r.distance_meters, r.min_eta, r.max_eta) for r in reports] == [
        ("FLXV-52", 640.0, 2, 4),
        ("FLXT-11", 3500.0, 10, 14),
    ]
    assert all(r.line_valid and r.line_id == "506" for r in reports)


def test_out_of_service_line_yields_placeholder():
    reports = parse_service_item({
        "servicio": "210",
        "codigorespuesta": "9",
        "respuestaServicio": "Fuera de horario de operacion",
    })
    assert len(reports) == 1
    assert reports[0].line_valid is False
    assert reports[0].min_eta is None


def test_parse_prediction_accepts_single_item_object():
    prediction = parse_prediction("PA433", make_prediction_payload({
        "servicio": "D18",
        "codigorespuesta": "01",
        "horaprediccionbus1": "Llegando.",
        "ppubus1": "CJRT-20",
        "distanciabus1": "90",
    }))
    assert prediction.stop.code == "PA433"
    assert prediction.stop.name == "Parada 3 / Alameda"
    assert prediction.stop.coordinate == Coordinate(-33.4448, -70.6551)
    assert len(prediction.reports) == 1
    assert prediction.reports[0].min_eta == 0


def test_parse_prediction_without_position_fails():
    with pytest.raises(UpstreamFetchFailure) as exc_info:
        parse_prediction("PA433", {"servicios": {"item": []}})
    assert exc_info.value.status_code == 404


def test_parse_prediction_tolerates_malformed_services():
    payload = make_prediction_payload([])
    for services in ("x", ["oops"], None, {"item": "oops"}):
        payload["servicios"] = services
        assert parse_prediction("PA433", payload).reports == []


def make_client(handler) -> RedClient:
    return RedClient(transport=httpx.MockTransport(handler))


def test_fetch_points_keeps_kind_and_skips_malformed():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/restservice/rest/getpuntoparada/"
        assert request.url.params["lat"] == "-33.45"
        return httpx.Response(200, json=[
            {"id": 1, "cod": "PA1", "name": "Uno", "type": 0, "pos": [-33.451, -70.671]},
            {"id": 2, "cod": "BIP", "name": "Carga", "type": 1, "pos": [-33.452, -70.672]},
            {"id": 3, "cod": "PA3", "name": "Sin posicion", "type": 0},
        ])

    async def scenario():
        client = make_client(handler)
        try:
            return await client.fetch_points(Coordinate(-33.45, -70.67))
        finally:
            await client.close()

    points = asyncio.run(scenario())
    assert [(p.code, p.kind) for p in points] == [("PA1", KIND_BUS_STOP), ("BIP", KIND_FARE_POINT)]


def test_fetch_arrivals_parses_services():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["codsimt"] == "PA433"
        return httpx.Response(200, json=make_prediction_payload([
            {"servicio": "506", "codigorespuesta": "00", "ppubus1": "AA-11",
             "distanciabus1": "1200", "horaprediccionbus1": "Entre 05 Y 09 min."},
            {"servicio": "210", "codigorespuesta": "10"},
        ]))

    async def scenario():
        client = make_client(handler)
        try:
            return await client.fetch_arrivals("PA433")
        finally:
            await client.close()

    reports = asyncio.run(scenario())
    assert [(r.line_id, r.line_valid) for r in reports] == [("506", True), ("210", False)]


def test_server_error_raises_upstream_failure():
    async def scenario():
        client = make_client(lambda request: httpx.Response(503))
        try:
            await client.fetch_arrivals("PA433")
        finally:
            await client.close()

    with pytest.raises(UpstreamFetchFailure) as exc_info:
        asyncio.run(scenario())
    assert exc_info.value.status_code == 503


def test_transport_error_raises_upstream_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("unreachable", request=request)

    async def scenario():
        client = make_client(handler)
        try:
            await client.fetch_stop_codes()
        finally:
            await client.close()

    with pytest.raises(UpstreamFetchFailure) as exc_info:
        asyncio.run(scenario())
    assert exc_info.value.status_code is None


def test_fetch_stop_codes():
    async def scenario():
        client = make_client(lambda request: httpx.Response(200, json=["PA1", "PA2", ""]))
        try:
            return await client.fetch_stop_codes()
        finally:
            await client.close()

    assert asyncio.run(scenario()) == ["PA1", "PA2"]
