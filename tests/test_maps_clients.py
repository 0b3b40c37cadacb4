import asyncio

import httpx
import pytest

from beauty_dispatch.errors import DistanceMatrixFailed, GeocodingFailed
from beauty_dispatch.models.domain import Coordinate, Store, TravelEstimate
from beauty_dispatch.services.maps.distance import DistancePath
from beauty_dispatch.services.maps.google_client import GoogleMapsClient, parse_distance_text
from beauty_dispatch.services.maps.osrm_client import OSRMClient
from beauty_dispatch.services.proximity import rank


def _google(handler) -> GoogleMapsClient:
    return GoogleMapsClient(
        api_key="test-key",
        base_url="https://maps.example.test/maps/api",
        max_retries=1,
        backoff_seconds=0,
        transport=httpx.MockTransport(handler),
    )


def test_geocode_returns_first_result():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["params"] = dict(request.url.params)
        return httpx.Response(
            200,
            json={"status": "OK", "results": [{"geometry": {"location": {"lat": 40.7128, "lng": -74.006}}}]},
        )

    coordinate = asyncio.run(_google(handler).geocode(" 350 5th Ave, New York "))

    assert coordinate == Coordinate(40.7128, -74.006)
    assert seen["path"].endswith("/geocode/json")
    assert seen["params"]["address"] == "350 5th Ave, New York"
    assert seen["params"]["key"] == "test-key"


@pytest.mark.parametrize("status", ["ZERO_RESULTS", "REQUEST_DENIED", "OVER_QUERY_LIMIT"])
def test_geocode_non_ok_status_raises(status: str):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"status": status, "results": []})

    with pytest.raises(GeocodingFailed) as excinfo:
        asyncio.run(_google(handler).geocode("nowhere"))
    assert excinfo.value.status == status


def test_distance_matrix_parses_elements_in_order():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["origins"] == "0.0,0.0"
        assert request.url.params["destinations"] == "0.0,0.0288|0.0,0.5"
        return httpx.Response(
            200,
            json={
                "status": "OK",
                "rows": [
                    {
                        "elements": [
                            {"status": "OK", "distance": {"text": "2.4 mi", "value": 3862}, "duration": {"value": 420}},
                            {"status": "ZERO_RESULTS"},
                        ]
                    }
                ],
            },
        )

    estimates = asyncio.run(
        _google(handler).distance_matrix(Coordinate(0.0, 0.0), [Coordinate(0.0, 0.0288), Coordinate(0.0, 0.5)])
    )

    assert estimates == [TravelEstimate(2.4, 7.0), None]


def test_distance_matrix_top_level_failure_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"status": "OVER_QUERY_LIMIT", "rows": []})

    with pytest.raises(DistanceMatrixFailed):
        asyncio.run(_google(handler).distance_matrix(Coordinate(0.0, 0.0), [Coordinate(0.0, 0.1)]))


def test_server_errors_are_retried():
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        if calls["count"] == 1:
            return httpx.Response(503)
        return httpx.Response(
            200,
            json={"status": "OK", "results": [{"geometry": {"location": {"lat": 1.0, "lng": 2.0}}}]},
        )

    coordinate = asyncio.run(_google(handler).geocode("retry me"))

    assert coordinate == Coordinate(1.0, 2.0)
    assert calls["count"] == 2


def test_missing_api_key_is_a_configuration_error(monkeypatch):
    from beauty_dispatch.config import settings

    monkeypatch.setattr(settings, "google_maps_api_key", None)
    with pytest.raises(ValueError):
        GoogleMapsClient()


@pytest.mark.parametrize(
    "text, miles",
    [("1.2 mi", 1.2), ("1,204 mi", 1204.0), ("850 ft", 0.2), ("3.2 km", 2.0), ("800 m", 0.5)],
)
def test_parse_distance_text(text: str, miles: float):
    assert parse_distance_text(text) == miles


def test_osrm_table_converts_units_and_marks_unreachable():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["params"] = dict(request.url.params)
        return httpx.Response(
            200,
            json={"code": "Ok", "durations": [[600.0, None]], "distances": [[3218.688, None]]},
        )

    client = OSRMClient(
        base_url="http://osrm.example.test",
        profile="driving",
        max_retries=0,
        backoff_seconds=0,
        transport=httpx.MockTransport(handler),
    )
    estimates = asyncio.run(
        client.distance_matrix(Coordinate(0.0, 0.0), [Coordinate(0.0, 0.0288), Coordinate(10.0, 10.0)])
    )

    assert estimates == [TravelEstimate(2.0, 10.0), None]
    assert seen["path"] == "/table/v1/driving/0.0,0.0;0.0288,0.0;10.0,10.0"
    assert seen["params"]["sources"] == "0"
    assert seen["params"]["destinations"] == "1;2"


@pytest.mark.parametrize(
    "body",
    [
        {"status": "OK", "rows": [{"elements": [{"status": "OK"}]}]},
        {"status": "OK", "rows": [{"elements": [{"status": "OK", "distance": {"text": "1.0 mi"}, "duration": None}]}]},
        {"status": "OK", "rows": ["not-a-row"]},
    ],
)
def test_distance_matrix_malformed_response_raises(body):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=body)

    with pytest.raises(DistanceMatrixFailed) as excinfo:
        asyncio.run(_google(handler).distance_matrix(Coordinate(0.0, 0.0), [Coordinate(0.0, 0.0144)]))
    assert excinfo.value.status == "MALFORMED_RESPONSE"


def test_malformed_google_response_falls_back_to_haversine():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"status": "OK", "rows": [{"elements": [{"status": "OK"}]}]})

    store = Store(store_id="S", name="Store", latitude=0.0, longitude=0.0288)
    ranked = asyncio.run(rank(Coordinate(0.0, 0.0), [store], radius_miles=25, provider=_google(handler)))

    assert ranked.path is DistancePath.HAVERSINE
    assert [entry.distance_miles for entry in ranked] == [2.0]


def test_osrm_malformed_table_raises_value_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"code": "Ok", "durations": [], "distances": []})

    client = OSRMClient(
        base_url="http://osrm.example.test",
        max_retries=0,
        backoff_seconds=0,
        transport=httpx.MockTransport(handler),
    )

    with pytest.raises(ValueError):
        asyncio.run(client.distance_matrix(Coordinate(0.0, 0.0), [Coordinate(0.0, 0.0144)]))
