"""Tests for the Golemio API client."""

import httpx
import pytest

from pid_board.data.config import BoardConfig
from pid_board.data.golemio_client import GolemioClient, resolve_vehicle_display_name
from pid_board.errors import ConfigurationError, ParseError, UpstreamError, ValidationError
from pid_board.models.vehicles import VehicleTrip

DEPARTURES_BODY = {
    "departures": [
        {
            "route": {"short_name": "9", "type": 0},
            "trip": {"id": "9_1", "headsign": "Spojovací", "is_wheelchair_accessible": True},
            "stop": {"id": "U1Z1P", "name": "Anděl", "platform_code": "A"},
            "departure_timestamp": {
                "scheduled": "2024-05-06T10:05:00+02:00",
                "predicted": "2024-05-06T10:07:00+02:00",
            },
            "delay": {"is_available": True, "minutes": 2, "seconds": 120},
            "unexpected_field": "ignored",
        }
    ]
}

VEHICLES_BODY = {
    "type": "FeatureCollection",
    "features": [
        {
            "properties": {
                "trip": {
                    "gtfs": {"trip_id": "9_1"},
                    "vehicle_descriptor": {"manufacturer": "Škoda", "model": "15T"},
                    "wheelchair_accessible": True,
                }
            }
        },
        {"properties": {"trip": {"gtfs": {"trip_id": "other"}, "wheelchair_accessible": False}}},
        {"properties": {}},
    ],
}


def make_client(config: BoardConfig, handler, api_key: str | None = None) -> GolemioClient:
    return GolemioClient(config, api_key=api_key, transport=httpx.MockTransport(handler))


class TestGetDepartures:
    async def test_parses_departures(self, config: BoardConfig) -> None:
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json=DEPARTURES_BODY)

        async with make_client(config, handler) as client:
            departures = await client.get_departures(["U1Z1P", "U1Z2P"], minutes_after=30, limit=40)

        assert len(departures) == 1
        assert departures[0].line == "9"
        assert departures[0].trip.headsign == "Spojovací"
        assert departures[0].effective_time.isoformat() == "2024-05-06T10:07:00+02:00"

        request = requests[0]
        assert request.url.path == "/v2/pid/departureboards"
        assert request.headers["X-Access-Token"] == "test_token"
        assert request.url.params.get_list("ids[]") == ["U1Z1P", "U1Z2P"]
        assert request.url.params["minutesAfter"] == "30"
        assert request.url.params["limit"] == "40"
        assert request.url.params["preferredTimezone"] == "Europe/Prague"

    async def test_falls_through_candidates_on_404(self, config: BoardConfig) -> None:
        seen: list[tuple[str, bool]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            uses_brackets = "ids[]" in request.url.params
            seen.append((request.url.path, uses_brackets))
            if request.url.path == "/v2/departureboards" and not uses_brackets:
                return httpx.Response(200, json=DEPARTURES_BODY)
            return httpx.Response(404, text="not found")

        async with make_client(config, handler) as client:
            departures = await client.get_departures(["U1Z1P"])

        assert len(departures) == 1
        assert seen == [
            ("/v2/pid/departureboards", True),
            ("/v2/pid/departureboards", False),
            ("/v2/departureboards", True),
            ("/v2/departureboards", False),
        ]

    async def test_all_candidates_missing(self, config: BoardConfig) -> None:
        async with make_client(config, lambda r: httpx.Response(404, text="nope")) as client:
            with pytest.raises(UpstreamError) as exc_info:
                await client.get_departures(["U1Z1P"])
        assert exc_info.value.status_code == 404
        assert "nope" in exc_info.value.body

    async def test_other_errors_abort(self, config: BoardConfig) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(401, text="invalid token")

        async with make_client(config, handler) as client:
            with pytest.raises(UpstreamError) as exc_info:
                await client.get_departures(["U1Z1P"])

        assert calls == 1
        assert exc_info.value.status_code == 401
        assert exc_info.value.body == "invalid token"
        assert "401" in str(exc_info.value)

    async def test_empty_stop_ids(self, config: BoardConfig) -> None:
        async with make_client(config, lambda r: httpx.Response(200, json={})) as client:
            with pytest.raises(ValidationError):
                await client.get_departures(["", "  "])

    async def test_missing_token(self, config: BoardConfig) -> None:
        config = config.model_copy(update={"api_key": None})
        async with make_client(config, lambda r: httpx.Response(200, json={})) as client:
            with pytest.raises(ConfigurationError):
                await client.get_departures(["U1Z1P"])

    async def test_per_call_token_overrides_config(self, config: BoardConfig) -> None:
        tokens: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            tokens.append(request.headers["X-Access-Token"])
            return httpx.Response(200, json={"departures": []})

        async with make_client(config, handler) as client:
            await client.get_departures(["U1Z1P"], api_key="override")

        assert tokens == ["override"]

    async def test_invalid_json(self, config: BoardConfig) -> None:
        async with make_client(config, lambda r: httpx.Response(200, text="<html>")) as client:
            with pytest.raises(ParseError):
                await client.get_departures(["U1Z1P"])

    async def test_network_error(self, config: BoardConfig) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        async with make_client(config, handler) as client:
            with pytest.raises(UpstreamError) as exc_info:
                await client.get_departures(["U1Z1P"])
        assert exc_info.value.status_code == 0

    async def test_requires_async_context(self, config: BoardConfig) -> None:
        client = GolemioClient(config)
        with pytest.raises(RuntimeError, match="Client not initialized"):
            await client.get_departures(["U1Z1P"])


class TestGetVehicleInfo:
    async def test_indexes_requested_trips(self, config: BoardConfig) -> None:
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json=VEHICLES_BODY)

        async with make_client(config, handler) as client:
            info = await client.get_vehicle_info(["9_1", "9_1", "missing"])

        assert list(info) == ["9_1"]
        assert info["9_1"].display_name == "Škoda 15T"
        assert info["9_1"].wheelchair_accessible is True

        params = requests[0].url.params
        assert requests[0].url.path == "/v2/vehiclepositions"
        assert params["limit"] == "10000"
        assert params["includeNotTracking"] == "true"
        assert params.get_list("gtfsTripId") == ["9_1", "missing"]

    async def test_empty_input_skips_network(self, config: BoardConfig) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        async with make_client(config, handler) as client:
            info = await client.get_vehicle_info([])
        assert len(info) == 0

    @pytest.mark.parametrize("status", [400, 422])
    async def test_retries_reduced_query_once(self, config: BoardConfig, status: int) -> None:
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            if "gtfsTripId" in request.url.params:
                return httpx.Response(status, text="unknown parameter")
            return httpx.Response(200, json=VEHICLES_BODY)

        async with make_client(config, handler) as client:
            info = await client.get_vehicle_info(["9_1"])

        assert len(requests) == 2
        assert dict(requests[1].url.params) == {"limit": "10000"}
        assert "9_1" in info

    async def test_reduced_query_failure_raises(self, config: BoardConfig) -> None:
        async with make_client(config, lambda r: httpx.Response(400, text="bad")) as client:
            with pytest.raises(UpstreamError):
                await client.get_vehicle_info(["9_1"])

    async def test_trip_lookup_is_case_insensitive(self, config: BoardConfig) -> None:
        body = {"features": [{"properties": {"trip": {"gtfs": {"trip_id": "trip_a"}}}}]}
        async with make_client(config, lambda r: httpx.Response(200, json=body)) as client:
            info = await client.get_vehicle_info(["TRIP_A"])

        assert "TRIP_A" in info
        assert "trip_a" in info


class TestResolveVehicleDisplayName:
    @pytest.mark.parametrize(
        "trip, expected",
        [
            ({"vehicle_descriptor": {"manufacturer": "Škoda", "model": "15T"}}, "Škoda 15T"),
            ({"vehicle_descriptor": {"model": "Citaro"}}, "Citaro"),
            ({"vehicle_descriptor": {"label": " 9302 "}}, "9302"),
            ({"vehicle_descriptor": {"description_en": "Low-floor tram"}}, "Low-floor tram"),
            ({"vehicle_type": {"description_cs": "tramvaj", "description_en": "tram"}}, "tramvaj"),
            ({"vehicle_type": {"description_en": "bus"}}, "bus"),
            ({}, None),
        ],
    )
    def test_preference_order(self, trip: dict, expected: str | None) -> None:
        assert resolve_vehicle_display_name(VehicleTrip.model_validate(trip)) == expected
