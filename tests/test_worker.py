"""Tests for the offline worker lifecycle and event handlers."""

import json

import httpx
import pytest

from fjordsync.offline.storage import CacheStorage
from fjordsync.offline.worker import (
    SYNC_TAG,
    Client,
    Clients,
    ServiceWorker,
)

ORIGIN = "https://app.test"


class Network:
    def __init__(self) -> None:
        self.online = True
        self.requests: list[httpx.Request] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self.online:
            raise httpx.ConnectError("offline", request=request)
        if request.url.path == "/manifest.json":
            return httpx.Response(404)
        if request.method == "POST":
            return httpx.Response(201, json={"id": 1})
        return httpx.Response(200, json={"path": request.url.path})


@pytest.fixture
def network() -> Network:
    return Network()


@pytest.fixture
def clients() -> Clients:
    c = Clients()
    c.add(Client(url=f"{ORIGIN}/"))
    c.add(Client(url=f"{ORIGIN}/alerts"))
    return c


@pytest.fixture
def worker(network: Network, clients: Clients) -> ServiceWorker:
    return ServiceWorker(
        network,
        origin=ORIGIN,
        version=2,
        is_online=lambda: network.online,
        clients=clients,
        tile_hosts=["tile.test"],
        geodata_hosts=["geo.test"],
        max_tiles=10,
        timeout=None,
    )


class TestLifecycle:
    async def test_install_precaches_what_it_can(self, worker: ServiceWorker) -> None:
        assert worker.state == "parsed"
        await worker.install()

        static = worker.storage.open("fjordsync-static-v2")
        assert static.keys() == [f"{ORIGIN}/", f"{ORIGIN}/index.html"]
        assert worker.state == "installed"

    async def test_install_survives_network_failure(
        self, worker: ServiceWorker, network: Network
    ) -> None:
        network.online = False
        await worker.install()
        assert len(worker.storage.open("fjordsync-static-v2")) == 0
        assert worker.state == "installed"

    async def test_activate_drops_old_caches(
        self, network: Network, clients: Clients
    ) -> None:
        storage = CacheStorage()
        storage.open("fjordsync-static-v1")
        storage.open("fjordsync-tiles-v1")
        worker = ServiceWorker(network, origin=ORIGIN, version=2, storage=storage,
                               clients=clients)

        removed = await worker.activate()

        assert removed == ["fjordsync-static-v1", "fjordsync-tiles-v1"]
        assert sorted(storage.keys()) == ["fjordsync-static-v2", "fjordsync-tiles-v2"]
        assert all(c.controlled for c in clients.match_all())
        assert worker.state == "activated"

    def test_supersede(self, worker: ServiceWorker) -> None:
        worker.supersede()
        assert worker.state == "redundant"


class TestFetch:
    async def test_precached_shell_served_offline(
        self, worker: ServiceWorker, network: Network
    ) -> None:
        await worker.install()
        network.online = False

        resp = await worker.respond(httpx.Request("GET", f"{ORIGIN}/index.html"))

        assert resp.status_code == 200
        assert resp.json() == {"path": "/index.html"}

    async def test_allow_listed_api_cached_for_offline(
        self, worker: ServiceWorker, network: Network
    ) -> None:
        handled = await worker.fetch(httpx.Request("GET", f"{ORIGIN}/api/samples?merd=3"))
        await handled.write
        network.online = False

        cached = await worker.respond(httpx.Request("GET", f"{ORIGIN}/api/samples?merd=3"))
        missing = await worker.respond(httpx.Request("GET", f"{ORIGIN}/api/users"))

        assert cached.status_code == 200
        assert missing.status_code == 503

    async def test_api_not_on_allow_list_is_not_stored(self, worker: ServiceWorker) -> None:
        handled = await worker.fetch(httpx.Request("GET", f"{ORIGIN}/api/users"))
        assert handled.write is None

    async def test_tiles_go_to_tile_cache(self, worker: ServiceWorker) -> None:
        await worker.respond(httpx.Request("GET", "https://tile.test/3/4/2.png"))
        tiles = worker.storage.open("fjordsync-tiles-v2")
        assert tiles.keys() == ["https://tile.test/3/4/2.png"]

    async def test_geodata_falls_back_to_cache(
        self, worker: ServiceWorker, network: Network
    ) -> None:
        url = "https://geo.test/wfs?request=GetFeature"
        handled = await worker.fetch(httpx.Request("GET", url))
        await handled.write
        network.online = False

        resp = await worker.respond(httpx.Request("GET", url))
        assert resp.status_code == 200


class TestOfflineWrites:
    async def test_offline_post_is_queued_once(
        self, worker: ServiceWorker, network: Network, clients: Clients
    ) -> None:
        network.online = False
        request = httpx.Request("POST", f"{ORIGIN}/api/samples", json={"lice": 0.4})

        resp = await worker.respond(request)

        body = resp.json()
        assert resp.status_code == 200
        assert body["success"] is True and body["offline"] is True
        assert network.requests == []
        for client in clients.match_all():
            [message] = client.messages
            assert message["type"] == "OFFLINE_SAVE"
            assert message["data"]["method"] == "POST"
            assert message["data"]["url"] == f"{ORIGIN}/api/samples"
            assert message["data"]["body"] == {"lice": 0.4}
            assert isinstance(message["data"]["timestamp"], int)

    async def test_online_post_passes_through(
        self, worker: ServiceWorker, clients: Clients
    ) -> None:
        resp = await worker.respond(
            httpx.Request("POST", f"{ORIGIN}/api/samples", json={"lice": 0.4})
        )
        assert resp.status_code == 201
        assert all(c.messages == [] for c in clients.match_all())

    async def test_write_that_fails_on_the_wire_is_queued(
        self, network: Network, clients: Clients
    ) -> None:
        network.online = False
        # Reports online, but the request still fails
        worker = ServiceWorker(network, origin=ORIGIN, is_online=lambda: True,
                               clients=clients, timeout=None)

        resp = await worker.respond(
            httpx.Request("PUT", f"{ORIGIN}/api/merds/7", content=b"raw text")
        )

        assert resp.json()["offline"] is True
        assert len(network.requests) == 1
        message = clients.match_all()[0].messages[0]
        assert message["data"]["method"] == "PUT"
        assert message["data"]["body"] == "raw text"


class TestEvents:
    async def test_sync_broadcasts_start(self, worker: ServiceWorker, clients: Clients) -> None:
        assert await worker.sync(SYNC_TAG)
        assert [c.messages for c in clients.match_all()] == [
            [{"type": "SYNC_START"}], [{"type": "SYNC_START"}]
        ]

    async def test_sync_ignores_other_tags(self, worker: ServiceWorker, clients: Clients) -> None:
        assert not await worker.sync("something-else")
        assert all(c.messages == [] for c in clients.match_all())

    async def test_push_payload(self, worker: ServiceWorker) -> None:
        payload = json.dumps({"title": "Lusevarsel", "body": "Merd 3 over grensen",
                              "url": "/alerts"}).encode()
        notification = await worker.push(payload)

        assert notification.title == "Lusevarsel"
        assert notification.body == "Merd 3 over grensen"
        assert notification.tag == "lusevokteren"
        assert notification.data == {"url": "/alerts"}
        assert worker.notifications == [notification]

    @pytest.mark.parametrize("payload", [None, b"", b"not json"])
    async def test_push_defaults(self, worker: ServiceWorker, payload) -> None:
        notification = await worker.push(payload)
        assert notification.title == "FjordVind Lusevokteren"
        assert notification.data == {"url": "/"}

    async def test_click_focuses_matching_window(
        self, worker: ServiceWorker, clients: Clients
    ) -> None:
        notification = await worker.push({"url": "/alerts"})

        client = await worker.notification_click(notification)

        assert notification.closed
        assert client.url == f"{ORIGIN}/alerts"
        assert client.focused
        assert len(clients.match_all()) == 2

    async def test_click_opens_window_when_none_matches(
        self, worker: ServiceWorker, clients: Clients
    ) -> None:
        notification = await worker.push({"url": "/reports"})

        client = await worker.notification_click(notification)

        assert client.url == "/reports"
        assert len(clients.match_all()) == 3
