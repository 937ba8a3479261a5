"""Tests for the HTTP routes, with upstreams replaced by a mock transport."""

import asyncio

import httpx
import pytest
from fastapi.testclient import TestClient

from fjordsync.cache import CacheStore
from fjordsync.config import settings
from fjordsync.main import _refresh_loop, app
from fjordsync.services.token import TokenBroker

PROTECTED = {
    "features": [
        {
            "type": "Feature",
            "geometry": None,
            "properties": {"naturvernId": "VV1", "navn": "Holmane", "vernedato": None},
        }
    ]
}

REGISTER = {
    "features": [
        {"attributes": {"loknr": 11, "navn": "Holmen", "innehaver": "Mowi ASA, Lerøy"}},
        {"attributes": {"loknr": 12, "navn": "Skjæret", "innehaver": "Lerøy"}},
    ]
}


def upstream(request: httpx.Request) -> httpx.Response:
    if request.url.host == httpx.URL(settings.PROTECTED_AREAS_URL).host:
        return httpx.Response(200, json=PROTECTED)
    if request.url.host == httpx.URL(settings.FISKERIDIR_LOCALITIES_URL).host:
        return httpx.Response(200, json=REGISTER)
    return httpx.Response(503)


@pytest.fixture
def store() -> CacheStore:
    return CacheStore()


@pytest.fixture
def client(store: CacheStore):
    http = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
    app.state.http = http
    app.state.store = store
    app.state.broker = TokenBroker(http, store, client_id="", client_secret="")
    yield TestClient(app)


class TestHealth:
    def test_healthz(self, client: TestClient) -> None:
        r = client.get("/healthz")
        assert r.status_code == 200
        body = r.json()
        assert body["status"] == "ok"
        assert set(body["caches"]) == {
            "disease_zones", "protected_areas", "locality_polygons",
            "fish_health", "lice_data", "detailed_polygons", "registry_localities",
        }
        assert body["token"]["has_credentials"] is False


class TestZones:
    def test_disease_zones_mock(self, client: TestClient) -> None:
        r = client.get("/api/zones/disease-zones")
        assert r.status_code == 200
        assert r.json()["source"] == "Mock"

    def test_protected_areas(self, client: TestClient) -> None:
        r = client.get("/api/zones/protected-areas")
        body = r.json()
        assert body["source"] == "Miljødirektoratet"
        assert body["features"][0]["properties"]["name"] == "Holmane"

    def test_bad_bbox_is_400(self, client: TestClient) -> None:
        r = client.get("/api/zones/protected-areas", params={"bbox": "1,2,three,4"})
        assert r.status_code == 400

    def test_locality_polygons_error(self, client: TestClient) -> None:
        body = client.get("/api/zones/locality-polygons").json()
        assert body["source"] == "Error"
        assert body["features"] == []

    def test_clear_cache(self, client: TestClient, store: CacheStore) -> None:
        client.get("/api/zones/protected-areas")
        assert store.protected_areas.read() is not None

        r = client.post("/api/zones/clear-cache")

        assert r.json()["success"] is True
        assert store.protected_areas.read() is None


class TestFishHealth:
    def test_week(self, client: TestClient) -> None:
        body = client.get("/api/fishhealth/week", params={"year": 2025, "week": 18}).json()
        assert body["source"] == "Mock"
        assert body["limit"] == 0.2

    def test_week_out_of_range(self, client: TestClient) -> None:
        r = client.get("/api/fishhealth/week", params={"week": 54})
        assert r.status_code == 422

    def test_localities(self, client: TestClient) -> None:
        body = client.get(
            "/api/fishhealth/localities", params={"year": 2025, "week": 10}
        ).json()
        assert len(body["localities"]) == 15

    def test_nearby(self, client: TestClient) -> None:
        body = client.get(
            "/api/fishhealth/nearby", params={"lat": 67.28, "lng": 14.40, "radius_km": 5}
        ).json()
        assert body["count"] == 1
        assert body["farms"][0]["name"] == "Bodø Vest"

    def test_nearby_requires_position(self, client: TestClient) -> None:
        assert client.get("/api/fishhealth/nearby").status_code == 422

    def test_locality_polygons_need_numbers(self, client: TestClient) -> None:
        r = client.get("/api/fishhealth/locality-polygons", params={"loknr": "1,x"})
        assert r.status_code == 400

    def test_locality_polygons_without_token(self, client: TestClient) -> None:
        body = client.get("/api/fishhealth/locality-polygons", params={"loknr": "1,2"}).json()
        assert body["source"] == "Error"


class TestRegistry:
    def test_localities(self, client: TestClient) -> None:
        body = client.get("/api/registry/localities").json()
        assert [f["properties"]["loknr"] for f in body["features"]] == [11, 12]

    def test_companies(self, client: TestClient) -> None:
        body = client.get("/api/registry/companies").json()
        assert body == {"count": 2, "companies": [{"name": "Lerøy"}, {"name": "Mowi ASA"}]}

    def test_company_sites(self, client: TestClient) -> None:
        body = client.get("/api/registry/companies/Lerøy/sites").json()
        assert body["count"] == 2
        assert [s["name"] for s in body["sites"]] == ["Holmen", "Skjæret"]


class TestApiKey:
    @pytest.fixture(autouse=True)
    def _key(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(settings, "API_KEY", "hunter2")

    def test_missing_key_rejected(self, client: TestClient) -> None:
        assert client.get("/api/zones/disease-zones").status_code == 401

    def test_wrong_key_rejected(self, client: TestClient) -> None:
        r = client.get("/api/registry/companies", headers={"X-API-KEY": "hunter3"})
        assert r.status_code == 401
        assert r.json()["detail"] == "Missing or wrong X-API-KEY header"

    def test_valid_key_accepted(self, client: TestClient) -> None:
        r = client.get("/api/zones/disease-zones", headers={"X-API-KEY": "hunter2"})
        assert r.status_code == 200

    def test_healthz_stays_open(self, client: TestClient) -> None:
        assert client.get("/healthz").status_code == 200


class TestRefreshLoop:
    async def test_keeps_running_after_failures(self) -> None:
        calls = 0
        third_call = asyncio.Event()

        async def refresh() -> None:
            nonlocal calls
            calls += 1
            if calls == 3:
                third_call.set()
            if calls == 1:
                raise RuntimeError("upstream down")

        task = asyncio.create_task(_refresh_loop("test", refresh, interval=0.2))
        await asyncio.wait_for(third_call.wait(), 1)
        # Cancel while the loop sleeps between refreshes
        await asyncio.sleep(0.01)
        task.cancel()
        await asyncio.wait_for(asyncio.gather(task, return_exceptions=True), 1)

        assert calls == 3
        assert task.done()
