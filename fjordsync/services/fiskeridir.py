"""Fiskeridirektoratet aquaculture register: localities, owners and sites.

The register is an ArcGIS MapServer layer paged with ``resultOffset`` /
``resultRecordCount``. The whole list is cached for an hour; companies and
per-company sites are derived from it.
"""
from __future__ import annotations

import logging
from typing import Any

import httpx

from fjordsync.cache import CacheStore
from fjordsync.config import settings

log = logging.getLogger(__name__)

ACTIVE_WHERE = "status_lokalitet='KLARERT' OR status_lokalitet='AKTIV'"
OUT_FIELDS = (
    "loknr,navn,innehaver,formaal_kode,plassering,vannmiljo,kommune,fylke,"
    "kapasitet_lok,status_lokalitet,lat,lon"
)

# Norwegian alphabet puts æ, ø, å after z
_NB_ORDER = str.maketrans({"æ": "{", "ø": "|", "å": "}"})


def facility_type(formaal: str | None, plassering: str | None, vannmiljo: str | None) -> str:
    """Classify a site from its purpose code, placement and water type."""
    code = (formaal or "").upper()
    if "SETTEFISK" in code:
        return "SETTEFISK"
    if "SLAKT" in code or "VENTE" in code:
        return "VENTEMERD"
    if "STAMFISK" in code or "STAMDYR" in code:
        return "STAMFISK"
    if plassering == "LAND":
        return "SETTEFISK" if vannmiljo == "FERSKVANN" else "LANDANLEGG"
    return "MATFISK"


def _feature(attrs: dict[str, Any]) -> dict[str, Any]:
    lat, lon = attrs.get("lat"), attrs.get("lon")
    geometry = None
    if lat and lon:
        geometry = {"type": "Point", "coordinates": [lon, lat]}
    return {
        "type": "Feature",
        "geometry": geometry,
        "properties": {
            "loknr": attrs.get("loknr"),
            "lokalitetnavn": attrs.get("navn"),
            "navn": attrs.get("navn"),
            "innehaver": attrs.get("innehaver"),
            "anleggstype": facility_type(
                attrs.get("formaal_kode"), attrs.get("plassering"), attrs.get("vannmiljo")
            ),
            "formaal_kode": attrs.get("formaal_kode"),
            "kapasitet": attrs.get("kapasitet_lok"),
            "plassering": attrs.get("plassering"),
            "vannmiljo": attrs.get("vannmiljo"),
            "kommune": attrs.get("kommune"),
            "fylke": attrs.get("fylke"),
            "status": attrs.get("status_lokalitet"),
        },
    }


async def _fetch_pages(client: httpx.AsyncClient, page_size: int) -> list[dict[str, Any]]:
    features: list[dict[str, Any]] = []
    offset = 0
    while True:
        resp = await client.get(
            settings.FISKERIDIR_LOCALITIES_URL,
            params={
                "where": ACTIVE_WHERE,
                "outFields": OUT_FIELDS,
                "returnGeometry": "false",
                "f": "json",
                "resultOffset": str(offset),
                "resultRecordCount": str(page_size),
            },
        )
        resp.raise_for_status()
        data = resp.json()
        page = data.get("features") or []
        for item in page:
            attrs = item.get("attributes") if isinstance(item, dict) else None
            if isinstance(attrs, dict):
                features.append(_feature(attrs))
        log.debug("Register page %d: %d features", offset // page_size + 1, len(page))
        if len(page) < page_size or not data.get("exceededTransferLimit"):
            return features
        offset += page_size


async def fetch_localities_with_owners(
    client: httpx.AsyncClient,
    store: CacheStore,
    *,
    page_size: int = settings.REGISTRY_PAGE_SIZE,
) -> list[dict[str, Any]]:
    """Every active locality in the register, as GeoJSON point features.

    A failed fetch serves the last complete list, or an empty one; a
    partial page run is never cached.
    """
    cache = store.registry_localities
    cached = cache.read()
    if cached is not None:
        log.debug("Returning cached register localities")
        return cached

    async with cache.refresh_lock:
        cached = cache.read()
        if cached is not None:
            return cached
        try:
            features = await _fetch_pages(client, page_size)
            cache.write(features)
            log.info("Cached %d register localities", len(features))
            return features
        except (httpx.HTTPError, ValueError, AttributeError) as e:
            log.warning("Register fetch failed: %s", e)
            cache.set_error(str(e))

    return cache.last_known() or []


def _owners(feature: dict[str, Any]) -> list[str]:
    innehaver = (feature.get("properties") or {}).get("innehaver") or ""
    return [o.strip() for o in innehaver.split(",") if o.strip()]


async def get_companies(client: httpx.AsyncClient, store: CacheStore) -> list[dict[str, str]]:
    """Unique owner names, split on commas, in Norwegian alphabetical order."""
    localities = await fetch_localities_with_owners(client, store)
    names = {owner for f in localities for owner in _owners(f)}
    ordered = sorted(names, key=lambda n: n.lower().translate(_NB_ORDER))
    return [{"name": n} for n in ordered]


async def get_company_sites(
    client: httpx.AsyncClient, store: CacheStore, company: str
) -> list[dict[str, Any]]:
    localities = await fetch_localities_with_owners(client, store)
    sites = []
    for f in localities:
        props = f.get("properties") or {}
        if props.get("loknr") is None or company not in (props.get("innehaver") or ""):
            continue
        name = props.get("lokalitetnavn") or props.get("navn") or f"Lokalitet {props['loknr']}"
        sites.append({"loknr": props["loknr"], "name": name})
    return sites
