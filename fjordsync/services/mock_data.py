"""Deterministic fallback datasets served when no live or cached data exists."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from fjordsync.models import Locality


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _zone(
    zone_id: str,
    name: str,
    disease: str,
    zone_type: str,
    lat: float,
    lng: float,
    radius_km: float,
    valid_from: str,
    municipality: str,
    county: str,
) -> dict[str, Any]:
    return {
        "type": "Feature",
        "geometry": {"type": "Point", "coordinates": [lng, lat]},
        "properties": {
            "id": zone_id,
            "name": name,
            "diseaseType": disease,
            "zoneType": zone_type,
            "validFrom": valid_from,
            "validTo": None,
            "regulation": "FOR-" + valid_from[:7] + valid_from[8:],
            "municipality": municipality,
            "county": county,
            "radiusKm": radius_km,
            "center": {"lat": lat, "lng": lng},
        },
    }


def mock_disease_zones() -> dict[str, Any]:
    features = [
        _zone("mock-ila-1", "ILA-sone Bodø", "ILA", "surveillance",
              67.8, 14.5, 10, "2024-06-15", "Bodø", "Nordland"),
        _zone("mock-ila-2", "ILA-sone Bodø (indre)", "ILA", "protection",
              67.8, 14.5, 3, "2024-06-15", "Bodø", "Nordland"),
        _zone("mock-pd-1", "PD-sone Hardangerfjorden", "PD", "surveillance",
              60.4, 5.3, 10, "2024-03-01", "Ullensvang", "Vestland"),
        _zone("mock-ila-3", "ILA-sone Senja", "ILA", "surveillance",
              69.4, 18.5, 10, "2024-09-10", "Senja", "Troms"),
        _zone("mock-pd-2", "PD-sone Ålesund", "PD", "surveillance",
              62.5, 6.3, 10, "2024-05-20", "Ålesund", "Møre og Romsdal"),
    ]
    return {
        "type": "FeatureCollection",
        "features": features,
        "fetchedAt": _now_iso(),
        "source": "Mock",
    }


def _box(min_lng: float, min_lat: float, max_lng: float, max_lat: float) -> list:
    return [[
        [min_lng, min_lat],
        [max_lng, min_lat],
        [max_lng, max_lat],
        [min_lng, max_lat],
        [min_lng, min_lat],
    ]]


def mock_protected_areas() -> dict[str, Any]:
    areas = [
        ("mock-nr-1", "Røstlandet naturreservat", "naturreservat", 2002, 12.5,
         "Forskrift om Røstlandet naturreservat", "Røst", "Nordland",
         (13.5, 68.2, 13.8, 68.35)),
        ("mock-df-1", "Vestfjorden dyrelivsfredningsområde", "dyrelivsfredning",
         1995, 45.2, "Forskrift om dyrelivsfredning Vestfjorden", "Vågan",
         "Nordland", (14.0, 67.5, 14.4, 67.7)),
        ("mock-nr-2", "Sognefjorden naturreservat", "naturreservat", 2010, 28.3,
         "Forskrift om Sognefjorden naturreservat", "Sogndal", "Vestland",
         (6.8, 61.0, 7.2, 61.15)),
        ("mock-mv-1", "Tromsøflaket marine verneområde", "marint_verneomrade",
         2018, 85.7, "Forskrift om marine verneområder Troms", "Tromsø", "Troms",
         (18.2, 69.5, 18.8, 69.7)),
    ]
    features = [
        {
            "type": "Feature",
            "geometry": {"type": "Polygon", "coordinates": _box(*bbox)},
            "properties": {
                "id": area_id,
                "name": name,
                "areaType": area_type,
                "establishedYear": year,
                "areaKm2": km2,
                "regulation": regulation,
                "municipality": municipality,
                "county": county,
            },
        }
        for area_id, name, area_type, year, km2, regulation, municipality, county, bbox
        in areas
    ]
    return {
        "type": "FeatureCollection",
        "features": features,
        "fetchedAt": _now_iso(),
        "source": "Mock",
    }


# name, lat, lng, municipality, adult female lice (None = fallow), diseases
_MOCK_SITES: list[tuple[str, float, float, str, float | None, list[str]]] = [
    ("Klongsholmen", 60.5833, 5.4167, "Bergen", 0.65, []),
    ("Øygarden Nord", 60.5900, 5.4300, "Øygarden", 1.82, ["PANKREASSYKDOM"]),
    ("Sotra Sør", 60.3500, 5.1000, "Øygarden", 0.72, []),
    ("Austevoll", 60.0800, 5.2500, "Austevoll", 0.55, []),
    ("Hardangerfjorden Nord", 60.3000, 6.3000, "Ullensvang", 0.62, ["PANKREASSYKDOM"]),
    ("Florø Nord", 61.6000, 5.0300, "Kinn", None, []),
    ("Ålesund Sør", 62.4700, 6.1500, "Ålesund", 1.12, []),
    ("Hitra Nord", 63.6000, 8.6500, "Hitra", 0.85, []),
    ("Frøya Sør", 63.6700, 8.7500, "Frøya", 0.28, []),
    ("Bodø Vest", 67.2800, 14.4000, "Bodø", 0.35, ["INFEKSIOES_LAKSEANEMI"]),
    ("Lofoten Sør", 68.0800, 13.5700, "Vågan", 0.42, []),
    ("Senja Nord", 69.3500, 17.9700, "Senja", 0.35, []),
    ("Tromsø Sør", 69.6500, 18.9600, "Tromsø", 0.18, []),
    ("Alta Vest", 69.9700, 23.2700, "Alta", 0.22, []),
    ("Hammerfest Nord", 70.6600, 23.6800, "Hammerfest", None, []),
]


def mock_localities() -> list[Locality]:
    """Fixed sample of sea sites along the coast, numbered from 10000."""
    out: list[Locality] = []
    for i, (name, lat, lng, muni, lice, diseases) in enumerate(_MOCK_SITES):
        fallow = lice is None
        out.append(
            Locality(
                locality_no=10000 + i,
                name=name,
                latitude=lat,
                longitude=lng,
                municipality=muni,
                diseases=list(diseases),
                avg_adult_female_lice=lice,
                avg_mobile_lice=None if fallow else round(lice * 1.5, 2),
                avg_stationary_lice=None if fallow else round(lice * 0.8, 2),
                sea_temperature=None if fallow else 8.0,
                has_reported=not fallow,
                is_fallow=fallow,
                owner=f"{name} Oppdrett AS",
            )
        )
    return out
