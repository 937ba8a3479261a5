"""Disease zones, protected areas and locality polygons.

Disease zones are derived from the BarentsWatch week report: every
locality that reports a disease gets a 10 km surveillance circle, ILA
sites an extra 3 km protection circle. Protected areas come from the
Miljødirektoratet ArcGIS service and locality polygons from the GeoNorge
WFS (GML). All three cache for 24 hours and never raise: live data, then
the last good copy, then a fixed fallback.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

import httpx

from fjordsync.cache import CacheStore
from fjordsync.config import settings
from fjordsync.models import DiseaseType, DiseaseZone, Locality, ZoneType
from fjordsync.services import mock_data
from fjordsync.services.barentswatch import (
    UpstreamUnavailable,
    current_week,
    fetch_week_report,
    parse_localities,
)
from fjordsync.services.gml import parse_features
from fjordsync.services.token import TokenBroker

log = logging.getLogger(__name__)

SURVEILLANCE_RADIUS_KM = 10
PROTECTION_RADIUS_KM = 3

_DISEASES: dict[str, tuple[DiseaseType, str]] = {
    "INFEKSIOES_LAKSEANEMI": (DiseaseType.ILA, "Infeksiøs lakseanemi (ILA)"),
    "PANKREASSYKDOM": (DiseaseType.PD, "Pankreassykdom (PD)"),
    "BAKTERIELL_NYRESYKE": (DiseaseType.BKD, "Bakteriell nyresyke (BKD)"),
    "FRANCISELLOSE": (DiseaseType.FRANCISELLOSE, "Francisellose"),
}

PROTECTED_AREA_FIELDS = (
    "naturvernId,navn,verneform,vernedato,kommune,forvaltningsmyndighet,iucn"
)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def classify_disease(code: str) -> tuple[DiseaseType, str]:
    """Map a BarentsWatch disease code to (type, display name)."""
    if code in _DISEASES:
        return _DISEASES[code]
    if "LAKSEANEMI" in code:
        return _DISEASES["INFEKSIOES_LAKSEANEMI"]
    return DiseaseType.OTHER, code


def generate_zones(localities: Iterable[Locality]) -> dict[str, Any]:
    """Build the disease-zone FeatureCollection for a set of localities."""
    zones: list[DiseaseZone] = []
    seen: set[int] = set()

    for loc in localities:
        if not loc.diseases or loc.locality_no is None or not loc.has_position():
            continue
        if loc.locality_no in seen:
            continue
        seen.add(loc.locality_no)

        label = loc.name or str(loc.locality_no)
        for code in dict.fromkeys(loc.diseases):
            disease_type, display = classify_disease(code)
            tag = code if disease_type is DiseaseType.OTHER else disease_type.value
            common = dict(
                disease_type=disease_type,
                disease_name=display,
                lat=loc.latitude,
                lng=loc.longitude,
                locality_no=loc.locality_no,
                locality_name=loc.name,
                municipality=loc.municipality,
            )
            zones.append(
                DiseaseZone(
                    id=f"{tag}-{loc.locality_no}-surveillance",
                    name=f"{disease_type.value}-sone {label}",
                    zone_type=ZoneType.SURVEILLANCE,
                    radius_km=SURVEILLANCE_RADIUS_KM,
                    **common,
                )
            )
            if disease_type is DiseaseType.ILA:
                zones.append(
                    DiseaseZone(
                        id=f"ILA-{loc.locality_no}-protection",
                        name=f"ILA beskyttelsessone {label}",
                        zone_type=ZoneType.PROTECTION,
                        radius_km=PROTECTION_RADIUS_KM,
                        **common,
                    )
                )

    ila = sum(1 for z in zones if z.disease_type is DiseaseType.ILA)
    pd = sum(1 for z in zones if z.disease_type is DiseaseType.PD)
    return {
        "type": "FeatureCollection",
        "features": [z.to_geojson() for z in zones],
        "fetchedAt": _now_iso(),
        "source": "BarentsWatch",
        "stats": {
            "total": len(zones),
            "ilaZones": ila,
            "pdZones": pd,
            "otherZones": len(zones) - ila - pd,
        },
    }


async def get_disease_zones(
    client: httpx.AsyncClient, store: CacheStore, broker: TokenBroker
) -> dict[str, Any]:
    cache = store.disease_zones
    cached = cache.read()
    if cached is not None:
        log.debug("Returning cached disease zones")
        return cached

    async with cache.refresh_lock:
        cached = cache.read()
        if cached is not None:
            return cached
        try:
            year, week = current_week()
            raw, _ = await fetch_week_report(client, broker, year, week)
            result = generate_zones(parse_localities(raw))
            cache.write(result)
            log.info(
                "Cached %d disease zones (ILA: %d, PD: %d)",
                result["stats"]["total"],
                result["stats"]["ilaZones"],
                result["stats"]["pdZones"],
            )
            return result
        except (httpx.HTTPError, ValueError, UpstreamUnavailable) as e:
            log.warning("Disease zone refresh failed: %s", e)
            cache.set_error(str(e))

    stale = cache.last_known()
    if stale is not None:
        log.info("Serving stale disease zones")
        return stale
    log.info("Using mock disease zones")
    return mock_data.mock_disease_zones()


def parse_bbox(bbox: str) -> tuple[float, float, float, float]:
    """Parse ``minX,minY,maxX,maxY``; raises ValueError on anything else."""
    parts = [p.strip() for p in bbox.split(",")]
    if len(parts) != 4:
        raise ValueError(f"bbox needs 4 comma-separated numbers, got {bbox!r}")
    min_x, min_y, max_x, max_y = (float(p) for p in parts)
    if min_x > max_x or min_y > max_y:
        raise ValueError(f"bbox min exceeds max: {bbox!r}")
    return min_x, min_y, max_x, max_y


def _established_year(vernedato: Any) -> int | None:
    if vernedato is None:
        return None
    try:
        # Epoch milliseconds
        return datetime.fromtimestamp(float(vernedato) / 1000, tz=timezone.utc).year
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def _protected_area_feature(feature: dict[str, Any]) -> dict[str, Any]:
    props = feature.get("properties") or {}
    return {
        "type": "Feature",
        "geometry": feature.get("geometry"),
        "properties": {
            "id": props.get("naturvernId") or props.get("OBJECTID"),
            "name": props.get("navn") or "Ukjent verneområde",
            "areaType": props.get("verneform") or "naturreservat",
            "establishedYear": _established_year(props.get("vernedato")),
            "regulation": props.get("forvaltningsmyndighet"),
            "iucnCategory": props.get("iucn"),
            "municipality": props.get("kommune"),
        },
    }


async def get_protected_areas(
    client: httpx.AsyncClient,
    store: CacheStore,
    bbox: tuple[float, float, float, float] | None = None,
) -> dict[str, Any]:
    """Protected areas, optionally filtered to a bounding box.

    Filtered queries are never cached and never served from cache.
    """
    cache = store.protected_areas
    if bbox is None:
        cached = cache.read()
        if cached is not None:
            log.debug("Returning cached protected areas")
            return cached

    params = {
        "where": "1=1",
        "outFields": PROTECTED_AREA_FIELDS,
        "f": "geojson",
        "outSR": "4326",
        "resultRecordCount": "500",
    }
    if bbox is not None:
        params.update(
            geometry=",".join(str(v) for v in bbox),
            geometryType="esriGeometryEnvelope",
            inSR="4326",
            spatialRel="esriSpatialRelIntersects",
        )

    try:
        resp = await client.get(
            settings.PROTECTED_AREAS_URL,
            params=params,
            headers={"Accept": "application/json"},
        )
        resp.raise_for_status()
        data = resp.json()
        features = [_protected_area_feature(f) for f in data.get("features") or []]
        result = {
            "type": "FeatureCollection",
            "features": features,
            "fetchedAt": _now_iso(),
            "source": "Miljødirektoratet",
        }
        if bbox is None:
            cache.write(result)
            log.info("Cached %d protected areas", len(features))
        return result
    except (httpx.HTTPError, ValueError, AttributeError) as e:
        log.warning("Protected areas fetch failed: %s", e)
        if bbox is None:
            cache.set_error(str(e))

    if bbox is None:
        stale = cache.last_known()
        if stale is not None:
            return stale
    return mock_data.mock_protected_areas()


async def get_locality_polygons(
    client: httpx.AsyncClient, store: CacheStore
) -> dict[str, Any]:
    cache = store.locality_polygons
    cached = cache.read()
    if cached is not None:
        log.debug("Returning cached locality polygons")
        return cached

    error = "unknown error"
    async with cache.refresh_lock:
        cached = cache.read()
        if cached is not None:
            return cached
        try:
            resp = await client.get(
                settings.LOCALITY_WFS_URL,
                params={
                    "service": "WFS",
                    "version": "2.0.0",
                    "request": "GetFeature",
                    "typeName": "app:AkvakulturFlate",
                    "srsName": "EPSG:4326",
                    "count": "10000",
                },
                headers={"Accept": "application/xml"},
            )
            resp.raise_for_status()
            gml_text = resp.text
            log.info("Received GML response (%d bytes)", len(gml_text))
            features = parse_features(gml_text)
            result = {
                "type": "FeatureCollection",
                "features": [f.to_geojson() for f in features],
                "fetchedAt": _now_iso(),
                "source": "GeoNorge",
            }
            cache.write(result)
            log.info("Cached %d locality polygons", len(features))
            return result
        except httpx.HTTPError as e:
            error = str(e)
            log.warning("Locality polygon fetch failed: %s", e)
            cache.set_error(error)

    stale = cache.last_known()
    if stale is not None:
        return stale
    return {
        "type": "FeatureCollection",
        "features": [],
        "fetchedAt": _now_iso(),
        "source": "Error",
        "error": error,
    }


def clear_zones_cache(store: CacheStore) -> None:
    store.invalidate_zones()
    log.info("Zones cache cleared")
