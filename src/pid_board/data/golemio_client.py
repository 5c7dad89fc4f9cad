import logging
from collections.abc import Iterable

import httpx
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from pid_board.data.config import BoardConfig
from pid_board.errors import ConfigurationError, ParseError, UpstreamError, ValidationError
from pid_board.models.golemio import DepartureBoardResponse, RawDeparture
from pid_board.models.vehicles import (
    TripInfoIndex,
    VehicleInfo,
    VehiclePositionsResponse,
    VehicleTrip,
)

logger = logging.getLogger(__name__)

# Endpoint paths and id encodings differ across deployments; tried in this order.
DEPARTURE_BOARD_PATHS = ("/v2/pid/departureboards", "/v2/departureboards")
STOP_ID_PARAMS = ("ids[]", "ids")
DEPARTURE_CANDIDATES = [(path, param) for path in DEPARTURE_BOARD_PATHS for param in STOP_ID_PARAMS]

VEHICLE_POSITIONS_PATH = "/v2/vehiclepositions"

# Status codes meaning the server did not accept our query shape
SCHEMA_MISMATCH_STATUSES = frozenset({400, 422})

ACCESS_TOKEN_HEADER = "X-Access-Token"


def _dedupe(values: Iterable[str] | None) -> list[str]:
    """Strip, drop blanks and deduplicate case-insensitively, keeping order."""
    seen: set[str] = set()
    result: list[str] = []
    for value in values or []:
        if value is None:
            continue
        cleaned = value.strip()
        if cleaned and cleaned.casefold() not in seen:
            seen.add(cleaned.casefold())
            result.append(cleaned)
    return result


def resolve_vehicle_display_name(trip: VehicleTrip) -> str | None:
    """Pick a human-readable vehicle name.

    Manufacturer + model, else label, else localized description.
    """
    descriptor = trip.vehicle_descriptor
    if descriptor is not None:
        make_model = " ".join(
            part.strip() for part in (descriptor.manufacturer, descriptor.model) if part and part.strip()
        )
        if make_model:
            return make_model
        for candidate in (descriptor.label, descriptor.description_cs, descriptor.description_en):
            if candidate and candidate.strip():
                return candidate.strip()

    vehicle_type = trip.vehicle_type
    if vehicle_type is not None:
        for candidate in (vehicle_type.description_cs, vehicle_type.description_en):
            if candidate and candidate.strip():
                return candidate.strip()
    return None


def build_vehicle_info(response: VehiclePositionsResponse, trip_ids: Iterable[str]) -> TripInfoIndex:
    """Index vehicle info by trip id, keeping only the requested trips."""
    wanted = {trip_id.casefold() for trip_id in trip_ids}
    index = TripInfoIndex()
    for feature in response.features:
        trip = feature.properties.trip if feature.properties else None
        if trip is None or trip.gtfs is None or not trip.gtfs.trip_id:
            continue
        trip_id = trip.gtfs.trip_id
        if trip_id.casefold() not in wanted:
            continue
        index.add(
            trip_id,
            VehicleInfo(
                display_name=resolve_vehicle_display_name(trip),
                wheelchair_accessible=trip.wheelchair_accessible,
            ),
        )
    return index


class GolemioClient:
    """Async HTTP client for the Golemio departure board and vehicle positions API.

    Usage:
        async with GolemioClient(config) as client:
            departures = await client.get_departures(["U693Z2P"])
    """

    def __init__(
        self,
        config: BoardConfig,
        api_key: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the client.

        Args:
            config: Configuration with API key, base URL and timeout.
            api_key: Optional key overriding the configured one.
            transport: Optional httpx transport override.
        """
        self._config = config
        self.api_key = api_key if api_key is not None else config.api_key
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "GolemioClient":
        """Enter async context - create HTTP client."""
        self._client = httpx.AsyncClient(
            base_url=self._config.golemio_base_url,
            headers={"Accept": "application/json"},
            timeout=self._config.http_timeout_seconds,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit async context - close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def get_departures(
        self,
        stop_ids: Iterable[str],
        api_key: str | None = None,
        minutes_after: int = 20,
        limit: int = 60,
    ) -> list[RawDeparture]:
        """Fetch upcoming departures for a set of stop ids.

        Endpoint candidates are tried in priority order; a 404 moves on to the
        next candidate, any other failure aborts.

        Raises:
            ValidationError: If no stop ids were given.
            ConfigurationError: If no API key is available.
            UpstreamError: If every candidate failed or a request failed outright.
            ParseError: If the response body is not a valid departure board.
        """
        ids = _dedupe(stop_ids)
        if not ids:
            raise ValidationError("Select at least one stop (e.g. U693Z2P).")
        token = self._resolve_token(api_key)

        common_params = [
            ("minutesAfter", str(minutes_after)),
            ("limit", str(limit)),
            ("preferredTimezone", self._config.preferred_timezone),
        ]

        last_error = UpstreamError(404, "No departure board endpoint found")
        for path, id_param in DEPARTURE_CANDIDATES:
            params = [(id_param, stop_id) for stop_id in ids] + common_params
            response = await self._get(path, params, token)
            if response.status_code == 404:
                logger.debug(f"Departure board not found at {path} with {id_param}, trying next")
                last_error = UpstreamError(404, response.text, str(response.url))
                continue
            if response.is_error:
                raise UpstreamError(response.status_code, response.text, str(response.url))

            payload = self._parse(response, DepartureBoardResponse)
            logger.debug(f"Fetched {len(payload.departures)} departures for {len(ids)} stops")
            return payload.departures

        raise last_error

    async def get_vehicle_info(
        self,
        trip_ids: Iterable[str],
        api_key: str | None = None,
    ) -> TripInfoIndex:
        """Fetch vehicle names and accessibility for the given trips.

        Returns an empty index for empty input without touching the network. If
        the server rejects the scoped query, retries once with only a result cap.

        Raises:
            ConfigurationError: If no API key is available.
            UpstreamError: If the request fails.
            ParseError: If the response body is not a valid feature collection.
        """
        wanted = _dedupe(trip_ids)
        if not wanted:
            return TripInfoIndex()
        token = self._resolve_token(api_key)

        reduced_params = [("limit", str(self._config.vehicle_positions_limit))]
        full_params = (
            reduced_params
            + [("includeNotTracking", "true")]
            + [("gtfsTripId", trip_id) for trip_id in wanted]
        )

        response = await self._get(VEHICLE_POSITIONS_PATH, full_params, token)
        if response.status_code in SCHEMA_MISMATCH_STATUSES:
            logger.info(
                f"Vehicle positions rejected scoped query ({response.status_code}), "
                "retrying with reduced request"
            )
            response = await self._get(VEHICLE_POSITIONS_PATH, reduced_params, token)
        if response.is_error:
            raise UpstreamError(response.status_code, response.text, str(response.url))

        payload = self._parse(response, VehiclePositionsResponse)
        index = build_vehicle_info(payload, wanted)
        logger.debug(f"Resolved vehicle info for {len(index)}/{len(wanted)} trips")
        return index

    def _resolve_token(self, api_key: str | None) -> str:
        token = api_key if api_key and api_key.strip() else self.api_key
        if not token or not token.strip():
            raise ConfigurationError(
                "Missing API key. Set GOLEMIO_API_KEY or enter it in the application."
            )
        return token.strip()

    async def _get(self, path: str, params: list[tuple[str, str]], token: str) -> httpx.Response:
        if not self._client:
            raise RuntimeError("Client not initialized - use 'async with'")
        try:
            return await self._client.get(path, params=params, headers={ACCESS_TOKEN_HEADER: token})
        except httpx.HTTPError as e:
            raise UpstreamError(0, str(e), path) from e

    @staticmethod
    def _parse(response: httpx.Response, model: type[BaseModel]):
        try:
            return model.model_validate(response.json())
        except (ValueError, PydanticValidationError) as e:
            raise ParseError(f"Unexpected response from {response.url}: {e}") from e
