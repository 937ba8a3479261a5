"""Domain types shared by the data services."""
from __future__ import annotations

import math
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

# Tokens are treated as expired this many seconds before the upstream says so
TOKEN_RENEWAL_BUFFER = 60.0


class Token(BaseModel):
    access_token: str
    expires_at: float

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at - TOKEN_RENEWAL_BUFFER


class DiseaseType(str, Enum):
    ILA = "ILA"
    PD = "PD"
    BKD = "BKD"
    FRANCISELLOSE = "FRANCISELLOSE"
    OTHER = "OTHER"


class ZoneType(str, Enum):
    SURVEILLANCE = "surveillance"
    PROTECTION = "protection"


def _obj(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


class Locality(BaseModel):
    """A registered aquaculture site as reported by BarentsWatch."""

    locality_no: int | None = None
    name: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    municipality: str | None = None
    diseases: list[str] = Field(default_factory=list)

    # Weekly lice report
    avg_adult_female_lice: float | None = None
    avg_mobile_lice: float | None = None
    avg_stationary_lice: float | None = None
    sea_temperature: float | None = None
    has_reported: bool | None = None
    is_fallow: bool | None = None
    owner: str | None = None
    status: str = "UNKNOWN"

    def has_position(self) -> bool:
        if self.latitude is None or self.longitude is None:
            return False
        if not (math.isfinite(self.latitude) and math.isfinite(self.longitude)):
            return False
        return -90 <= self.latitude <= 90 and -180 <= self.longitude <= 180

    @classmethod
    def from_barentswatch(cls, raw: dict[str, Any]) -> "Locality":
        """Map one item of the fish-health-by-week payload.

        Position comes from ``locality.latitude/longitude`` when present,
        otherwise from the GeoJSON point geometry (``[lng, lat]``).
        """
        if not isinstance(raw, dict):
            raise TypeError(f"locality item is {type(raw).__name__}, not an object")
        loc = _obj(raw.get("locality"))
        coords = _obj(raw.get("geometry")).get("coordinates") or []
        lat = loc.get("latitude")
        lng = loc.get("longitude")
        if lat is None and len(coords) >= 2:
            lat = coords[1]
        if lng is None and len(coords) >= 2:
            lng = coords[0]

        report = _obj(raw.get("liceReport"))
        return cls(
            locality_no=loc.get("no"),
            name=loc.get("name"),
            latitude=lat,
            longitude=lng,
            municipality=_obj(raw.get("municipality")).get("name"),
            diseases=list(raw.get("diseases") or []),
            avg_adult_female_lice=_obj(report.get("adultFemaleLice")).get("average"),
            avg_mobile_lice=_obj(report.get("mobileLice")).get("average"),
            avg_stationary_lice=_obj(report.get("stationaryLice")).get("average"),
            sea_temperature=report.get("seaTemperature"),
            has_reported=report.get("hasReported"),
            is_fallow=report.get("isFallow"),
            owner=loc.get("owner") or raw.get("innehaver"),
        )

    def to_api(self) -> dict[str, Any]:
        return {
            "localityNo": self.locality_no,
            "name": self.name,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "municipality": self.municipality,
            "diseases": self.diseases,
            "avgAdultFemaleLice": self.avg_adult_female_lice,
            "avgMobileLice": self.avg_mobile_lice,
            "avgStationaryLice": self.avg_stationary_lice,
            "seaTemperature": self.sea_temperature,
            "hasReported": self.has_reported,
            "isFallow": self.is_fallow,
            "owner": self.owner,
            "status": self.status,
        }


class DiseaseZone(BaseModel):
    id: str
    name: str
    disease_type: DiseaseType
    disease_name: str
    zone_type: ZoneType
    radius_km: float
    lat: float
    lng: float
    locality_no: int
    locality_name: str | None = None
    municipality: str | None = None

    def to_geojson(self) -> dict[str, Any]:
        return {
            "type": "Feature",
            "geometry": {"type": "Point", "coordinates": [self.lng, self.lat]},
            "properties": {
                "id": self.id,
                "name": self.name,
                "diseaseType": self.disease_type.value,
                "diseaseName": self.disease_name,
                "zoneType": self.zone_type.value,
                "localityNo": self.locality_no,
                "localityName": self.locality_name,
                "municipality": self.municipality,
                "radiusKm": self.radius_km,
                "center": {"lat": self.lat, "lng": self.lng},
            },
        }


class PolygonFeature(BaseModel):
    """A single exterior ring extracted from a GML document."""

    id: str | None = None
    coordinates: list[tuple[float, float]]
    properties: dict[str, Any] = Field(default_factory=dict)

    def to_geojson(self) -> dict[str, Any]:
        return {
            "type": "Feature",
            "geometry": {
                "type": "Polygon",
                "coordinates": [[list(pair) for pair in self.coordinates]],
            },
            "properties": {"id": self.id, **self.properties},
        }
