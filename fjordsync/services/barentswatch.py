"""BarentsWatch fish-health client.

Covers the week-level locality report (with fallback to earlier weeks),
the per-locality lice fan-out through the batch orchestrator, lice status
classification and nearby-farm lookup.
"""
from __future__ import annotations

import logging
import math
from collections.abc import Callable
from datetime import date, datetime, timezone
from typing import Any

import httpx

from fjordsync.cache import CacheStore
from fjordsync.config import settings
from fjordsync.models import Locality
from fjordsync.services import mock_data
from fjordsync.services.batch import ProgressCallback, fetch_all
from fjordsync.services.token import TokenBroker

log = logging.getLogger(__name__)

# Mattilsynet adult female lice limits
NORMAL_LIMIT = 0.5
SPRING_LIMIT = 0.2
WARNING_FRACTION = 0.6
SPRING_WEEKS = range(16, 22)

EARTH_RADIUS_KM = 6371.0

RetryPredicate = Callable[[httpx.Response], bool]


def retry_any_failure(resp: httpx.Response) -> bool:
    """Step back a week on every non-2xx response."""
    return True


def retry_missing_week(resp: httpx.Response) -> bool:
    """Step back a week only when the week simply has no data yet."""
    return resp.status_code in (204, 404)


class UpstreamUnavailable(Exception):
    """No usable response from BarentsWatch (no token, or all weeks failed)."""


def current_week(today: date | None = None) -> tuple[int, int]:
    """Return (ISO year, ISO week) for *today*."""
    iso = (today or date.today()).isocalendar()
    return iso[0], iso[1]


def lice_limit(week: int) -> float:
    return SPRING_LIMIT if week in SPRING_WEEKS else NORMAL_LIMIT


def lice_status(avg_lice: float | None, limit: float) -> str:
    if avg_lice is None:
        return "UNKNOWN"
    if avg_lice >= limit:
        return "DANGER"
    if avg_lice >= limit * WARNING_FRACTION:
        return "WARNING"
    return "OK"


def distance_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance (haversine)."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2))
        * math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def find_nearby(
    lat: float, lng: float, radius_km: float, localities: list[Locality]
) -> list[dict[str, Any]]:
    """Localities within *radius_km*, nearest first, with a ``distance`` field."""
    nearby: list[dict[str, Any]] = []
    for loc in localities:
        if not loc.has_position():
            continue
        dist = distance_km(lat, lng, loc.latitude, loc.longitude)
        if dist <= radius_km:
            nearby.append({**loc.to_api(), "distance": round(dist, 3)})
    nearby.sort(key=lambda item: item["distance"])
    return nearby


def parse_localities(raw: list[Any]) -> list[Locality]:
    """Convert a week report item by item; unreadable items are skipped."""
    localities: list[Locality] = []
    for index, item in enumerate(raw):
        try:
            localities.append(Locality.from_barentswatch(item))
        except (ValueError, TypeError, AttributeError) as e:
            log.warning("Skipping unreadable locality item %d: %s", index, e)
    return localities


def extract_diseases(data: dict[str, Any]) -> list[str]:
    diseases: list[str] = []
    ila_pd = data.get("ilaPd") or {}
    case = data.get("ilaPdCase") or {}
    if ila_pd.get("ila") or case.get("ilaStatus"):
        diseases.append("INFEKSIOES_LAKSEANEMI")
    if ila_pd.get("pd") or case.get("pdStatus"):
        diseases.append("PANKREASSYKDOM")
    return diseases


# ---- Week report -------------------------------------------------------


async def fetch_week_report(
    client: httpx.AsyncClient,
    broker: TokenBroker,
    year: int,
    week: int,
    *,
    retry_depth: int = settings.WEEK_RETRY_DEPTH,
    retry_if: RetryPredicate = retry_any_failure,
) -> tuple[list[dict[str, Any]], int]:
    """POST the week-level fish-health query, stepping back up to *retry_depth* weeks.

    Returns (raw localities, week that answered). A 401 drops the cached
    token and retries the same week once with a fresh one.
    """
    token = await broker.get_token()
    if not token:
        raise UpstreamUnavailable("no BarentsWatch token")

    reauthed = False
    w = week
    lowest = max(1, week - retry_depth)
    while w >= lowest:
        resp = await client.post(
            f"{settings.BARENTSWATCH_API_URL}/v2/geodata/fishhealth/locality/{year}/{w}",
            json={},
            headers={"Authorization": f"Bearer {token}"},
        )
        if resp.status_code == 401 and not reauthed:
            log.warning("BarentsWatch token rejected, re-authenticating")
            broker.invalidate()
            reauthed = True
            token = await broker.get_token()
            if not token:
                raise UpstreamUnavailable("re-authentication failed")
            continue
        if resp.is_success:
            data = resp.json()
            if not isinstance(data, list):
                raise ValueError("unexpected week report payload")
            log.info("Got fish health for week %d/%d (%d localities)",
                     w, year, len(data))
            return data, w
        log.debug("Week %d/%d unavailable: HTTP %s", w, year, resp.status_code)
        if not retry_if(resp):
            break
        w -= 1

    raise UpstreamUnavailable(f"no fish health data for {year} weeks {lowest}-{week}")


async def get_lice_data(
    client: httpx.AsyncClient,
    store: CacheStore,
    broker: TokenBroker,
    year: int,
    week: int,
    *,
    force_refresh: bool = False,
) -> dict[str, Any]:
    """Localities with lice status for one week: cache, live, stale, mock."""
    key = (year, week)
    cache = store.lice_data
    if not force_refresh:
        cached = cache.read(key)
        if cached is not None:
            log.debug("Returning cached lice data for %d/%d", year, week)
            return cached

    async with cache.refresh_lock:
        if not force_refresh:
            cached = cache.read(key)
            if cached is not None:
                return cached
        limit = lice_limit(week)
        try:
            raw, answered = await fetch_week_report(client, broker, year, week)
            localities = parse_localities(raw)
            for loc in localities:
                loc.status = lice_status(loc.avg_adult_female_lice, limit)
            result = {
                "year": year,
                "week": answered,
                "limit": limit,
                "source": "BarentsWatch",
                "localities": [loc.to_api() for loc in localities],
            }
            cache.write(result, key)
            log.info("Cached lice data for %d/%d (%d localities)",
                     year, week, len(localities))
            return result
        except (httpx.HTTPError, ValueError, UpstreamUnavailable) as e:
            log.warning("Lice data fetch failed: %s", e)
            cache.set_error(str(e))

    stale = cache.last_known(key)
    if stale is not None:
        log.info("Serving stale lice data for %d/%d", year, week)
        return stale

    localities = mock_data.mock_localities()
    for loc in localities:
        loc.status = lice_status(loc.avg_adult_female_lice, limit)
    return {
        "year": year,
        "week": week,
        "limit": limit,
        "source": "Mock",
        "localities": [loc.to_api() for loc in localities],
    }


async def get_nearby_farms(
    client: httpx.AsyncClient,
    store: CacheStore,
    broker: TokenBroker,
    lat: float,
    lng: float,
    radius_km: float = 10.0,
) -> list[dict[str, Any]]:
    year, week = current_week()
    data = await get_lice_data(client, store, broker, year, week)
    localities = [
        Locality(
            locality_no=item.get("localityNo"),
            name=item.get("name"),
            latitude=item.get("latitude"),
            longitude=item.get("longitude"),
            municipality=item.get("municipality"),
            diseases=item.get("diseases") or [],
            avg_adult_female_lice=item.get("avgAdultFemaleLice"),
            avg_mobile_lice=item.get("avgMobileLice"),
            avg_stationary_lice=item.get("avgStationaryLice"),
            sea_temperature=item.get("seaTemperature"),
            has_reported=item.get("hasReported"),
            is_fallow=item.get("isFallow"),
            owner=item.get("owner"),
            status=item.get("status") or "UNKNOWN",
        )
        for item in data["localities"]
    ]
    return find_nearby(lat, lng, radius_km, localities)


# ---- Per-locality fan-out ------------------------------------------------


def _mock_fish_health() -> list[dict[str, Any]]:
    return [
        {
            "localityNo": loc.locality_no,
            "avgAdultFemaleLice": loc.avg_adult_female_lice,
            "avgMobileLice": loc.avg_mobile_lice,
            "isFallow": loc.is_fallow,
            "hasReported": loc.has_reported,
            "hasSalmonoids": not loc.is_fallow,
            "seaTemperature": loc.sea_temperature,
            "diseases": loc.diseases,
        }
        for loc in mock_data.mock_localities()
    ]


async def fetch_fish_health(
    client: httpx.AsyncClient,
    store: CacheStore,
    broker: TokenBroker,
    year: int,
    week: int,
    *,
    on_progress: ProgressCallback | None = None,
    batch_size: int = settings.BATCH_SIZE,
    delay: float = settings.BATCH_DELAY,
) -> dict[str, Any]:
    """Lice figures for every locality, one request each, batched."""
    key = (year, week)
    cache = store.fish_health
    cached = cache.read(key)
    if cached is not None:
        log.debug("Returning cached fish health for %d/%d", year, week)
        return cached

    async with cache.refresh_lock:
        cached = cache.read(key)
        if cached is not None:
            return cached
        try:
            token = await broker.get_token()
            if not token:
                raise UpstreamUnavailable("no BarentsWatch token")
            headers = {"Authorization": f"Bearer {token}", "Accept": "application/json"}

            resp = await client.get(
                f"{settings.BARENTSWATCH_API_URL}/v1/geodata/fishhealth/localities",
                headers=headers,
            )
            resp.raise_for_status()
            localities = resp.json()
            log.info("Fetching lice data for %d localities", len(localities))

            async def fetch_one(loc: dict[str, Any]) -> dict[str, Any] | None:
                no = loc["localityNo"]
                r = await client.get(
                    f"{settings.BARENTSWATCH_API_URL}/v1/geodata/fishhealth/"
                    f"locality/{no}/{year}/{week}",
                    headers=headers,
                )
                if not r.is_success:
                    return None
                data = r.json()
                lw = data.get("localityWeek") or {}
                return {
                    "localityNo": no,
                    "avgAdultFemaleLice": lw.get("avgAdultFemaleLice"),
                    "avgMobileLice": lw.get("avgMobileLice"),
                    "isFallow": lw.get("isFallow", False),
                    "hasReported": lw.get("hasReportedLice", False),
                    "hasSalmonoids": lw.get("hasSalmonoids", False),
                    "seaTemperature": lw.get("seaTemperature"),
                    "diseases": extract_diseases(data),
                }

            records = await fetch_all(
                localities,
                fetch_one,
                batch_size=batch_size,
                on_progress=on_progress,
                delay=delay,
            )
            result = {
                "year": year,
                "week": week,
                "source": "BarentsWatch",
                "localities": records,
            }
            cache.write(result, key)
            log.info("Completed fish health fetch: %d/%d localities",
                     len(records), len(localities))
            return result
        except (httpx.HTTPError, ValueError, KeyError, TypeError,
                UpstreamUnavailable) as e:
            log.warning("Fish health fetch failed: %s", e)
            cache.set_error(str(e))

    stale = cache.last_known(key)
    if stale is not None:
        return stale
    return {"year": year, "week": week, "source": "Mock", "localities": _mock_fish_health()}


# ---- Detailed locality polygons ------------------------------------------


def _polygon_feature(locality_no: int, data: Any) -> dict[str, Any] | None:
    if not isinstance(data, dict) or not data.get("geometry"):
        return None
    extra = data.get("properties")
    return {
        "type": "Feature",
        "geometry": data["geometry"],
        "properties": {
            "loknr": locality_no,
            "name": data.get("name") or data.get("lokalitetsnavn"),
            "owner": data.get("owner") or data.get("innehaver"),
            "facilityType": data.get("facilityType") or data.get("anleggstype"),
            "municipality": data.get("municipality") or data.get("kommune"),
            **(extra if isinstance(extra, dict) else {}),
        },
    }


async def get_detailed_polygons(
    client: httpx.AsyncClient,
    store: CacheStore,
    broker: TokenBroker,
    locality_numbers: list[int],
    *,
    on_progress: ProgressCallback | None = None,
    batch_size: int = settings.POLYGON_BATCH_SIZE,
    delay: float = settings.BATCH_DELAY,
) -> dict[str, Any]:
    """Boundary polygons for the given localities, one request each.

    Cached per set of locality numbers. Without a token, or with nothing
    cached, a failed run yields an empty collection with ``source: "Error"``.
    """
    numbers = list(dict.fromkeys(locality_numbers))
    key = tuple(sorted(numbers))
    cache = store.detailed_polygons
    cached = cache.read(key)
    if cached is not None:
        return cached

    error = "unknown error"
    async with cache.refresh_lock:
        cached = cache.read(key)
        if cached is not None:
            return cached
        try:
            token = await broker.get_token()
            if not token:
                raise UpstreamUnavailable("no BarentsWatch token")
            headers = {"Authorization": f"Bearer {token}", "Accept": "application/json"}

            async def fetch_one(no: int) -> dict[str, Any] | None:
                r = await client.get(
                    f"{settings.BARENTSWATCH_API_URL}/v2/geodata/locality/{no}",
                    headers=headers,
                )
                if not r.is_success:
                    return None
                return _polygon_feature(no, r.json())

            features = await fetch_all(
                numbers,
                fetch_one,
                batch_size=batch_size,
                on_progress=on_progress,
                delay=delay,
            )
            result = {
                "type": "FeatureCollection",
                "features": features,
                "fetchedAt": datetime.now(timezone.utc).isoformat(),
                "source": "BarentsWatch",
            }
            cache.write(result, key)
            log.info("Fetched %d of %d locality polygons", len(features), len(numbers))
            return result
        except (httpx.HTTPError, UpstreamUnavailable) as e:
            error = str(e)
            log.warning("Detailed polygon fetch failed: %s", e)
            cache.set_error(error)

    stale = cache.last_known(key)
    if stale is not None:
        return stale
    return {
        "type": "FeatureCollection",
        "features": [],
        "fetchedAt": datetime.now(timezone.utc).isoformat(),
        "source": "Error",
        "error": error,
    }
