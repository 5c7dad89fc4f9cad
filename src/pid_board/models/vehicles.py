"""Pydantic models for the Golemio vehicle positions feed."""

from collections.abc import Iterator, Mapping

from pydantic import BaseModel, ConfigDict


class VehicleTripGtfs(BaseModel):
    model_config = ConfigDict(extra="ignore")

    trip_id: str | None = None


class VehicleType(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int | None = None
    description_cs: str | None = None
    description_en: str | None = None


class VehicleDescriptor(BaseModel):
    model_config = ConfigDict(extra="ignore")

    model: str | None = None
    manufacturer: str | None = None
    label: str | None = None
    description_cs: str | None = None
    description_en: str | None = None


class VehicleTrip(BaseModel):
    model_config = ConfigDict(extra="ignore")

    gtfs: VehicleTripGtfs | None = None
    vehicle_type: VehicleType | None = None
    vehicle_descriptor: VehicleDescriptor | None = None
    wheelchair_accessible: bool | None = None


class VehiclePositionProperties(BaseModel):
    model_config = ConfigDict(extra="ignore")

    trip: VehicleTrip | None = None


class VehiclePositionFeature(BaseModel):
    model_config = ConfigDict(extra="ignore")

    properties: VehiclePositionProperties | None = None


class VehiclePositionsResponse(BaseModel):
    """Top-level GeoJSON response from the vehiclepositions endpoint."""

    model_config = ConfigDict(extra="ignore")

    features: list[VehiclePositionFeature] = []


class VehicleInfo(BaseModel):
    """Enrichment for one trip derived from the live vehicle positions feed."""

    display_name: str | None = None
    wheelchair_accessible: bool | None = None


class TripInfoIndex(Mapping[str, VehicleInfo]):
    """Vehicle info keyed by trip id, looked up case-insensitively."""

    def __init__(self, items: Mapping[str, VehicleInfo] | None = None):
        self._data: dict[str, tuple[str, VehicleInfo]] = {}
        for trip_id, info in (items or {}).items():
            self.add(trip_id, info)

    def add(self, trip_id: str, info: VehicleInfo) -> None:
        self._data[trip_id.casefold()] = (trip_id, info)

    def __getitem__(self, trip_id: str) -> VehicleInfo:
        return self._data[trip_id.casefold()][1]

    def __contains__(self, trip_id: object) -> bool:
        return isinstance(trip_id, str) and trip_id.casefold() in self._data

    def __iter__(self) -> Iterator[str]:
        return (trip_id for trip_id, _ in self._data.values())

    def __len__(self) -> int:
        return len(self._data)
