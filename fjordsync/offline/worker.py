"""Offline worker: lifecycle, fetch routing, offline writes, sync and push.

Mirrors the browser service-worker events (install, activate, fetch,
sync, push, notificationclick) as plain async methods so the behaviour can
run and be tested without a browser.
"""
from __future__ import annotations

import json
import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import httpx

from fjordsync.config import settings
from fjordsync.offline.interceptor import (
    NETWORK_ERRORS,
    CacheFirst,
    Fetcher,
    Handled,
    NetworkFirst,
    NetworkInterceptor,
    TileCacheFirst,
    any_request,
    host_in,
    path_prefix,
    request_json,
)
from fjordsync.offline.storage import CacheStorage

log = logging.getLogger(__name__)

STATIC_ASSETS = ["/", "/index.html", "/manifest.json"]

CACHEABLE_APIS = [
    "/api/locations",
    "/api/merds",
    "/api/samples",
    "/api/alerts",
    "/api/zones",
]

SYNC_TAG = "sync-offline-data"

DEFAULT_NOTIFICATION = {
    "title": "FjordVind Lusevokteren",
    "body": "Du har en ny varsling",
    "tag": "lusevokteren",
    "url": "/",
}


@dataclass
class Client:
    """A foreground page controlled by the worker."""

    url: str
    type: str = "window"
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    messages: list[dict[str, Any]] = field(default_factory=list)
    focused: bool = False
    controlled: bool = False

    def post_message(self, message: dict[str, Any]) -> None:
        self.messages.append(message)

    def focus(self) -> "Client":
        self.focused = True
        return self


class Clients:
    def __init__(self) -> None:
        self._clients: list[Client] = []

    def add(self, client: Client) -> Client:
        self._clients.append(client)
        return client

    def remove(self, client: Client) -> None:
        self._clients.remove(client)

    def match_all(self, type: str | None = None) -> list[Client]:
        return [c for c in self._clients if type is None or c.type == type]

    def open_window(self, url: str) -> Client:
        return self.add(Client(url=url, focused=True))

    def claim(self) -> None:
        for c in self._clients:
            c.controlled = True


@dataclass
class Notification:
    title: str
    body: str
    tag: str
    data: dict[str, Any]
    icon: str = "/icons/icon-192x192.png"
    badge: str = "/icons/badge-72x72.png"
    vibrate: tuple[int, ...] = (200, 100, 200)
    closed: bool = False

    def close(self) -> None:
        self.closed = True


class ServiceWorker:
    """One version of the offline worker.

    States: parsed -> installing -> installed -> activating -> activated,
    and redundant once a newer version takes over.
    """

    def __init__(
        self,
        fetch: Fetcher,
        *,
        origin: str = settings.OFFLINE_ORIGIN,
        version: int = settings.OFFLINE_CACHE_VERSION,
        is_online: Callable[[], bool] = lambda: True,
        storage: CacheStorage | None = None,
        clients: Clients | None = None,
        tile_hosts: list[str] = settings.TILE_HOSTS,
        geodata_hosts: list[str] = settings.GEODATA_HOSTS,
        max_tiles: int = settings.TILE_CACHE_MAX_ENTRIES,
        timeout: float | None = settings.OFFLINE_FETCH_TIMEOUT,
    ) -> None:
        self.origin = httpx.URL(origin)
        self.static_cache_name = f"fjordsync-static-v{version}"
        self.tile_cache_name = f"fjordsync-tiles-v{version}"
        self.is_online = is_online
        self.storage = storage if storage is not None else CacheStorage()
        self.clients = clients if clients is not None else Clients()
        self.notifications: list[Notification] = []
        self.state = "parsed"

        static = self.storage.open(self.static_cache_name)
        tiles = self.storage.open(self.tile_cache_name)

        def _cacheable_api(request: httpx.Request) -> bool:
            return any(api in request.url.path for api in CACHEABLE_APIS)

        self.interceptor = NetworkInterceptor(fetch, timeout=timeout)
        self.interceptor.route(host_in(tile_hosts), TileCacheFirst(tiles, max_tiles))
        self.interceptor.route(host_in(geodata_hosts), NetworkFirst(static))
        self.interceptor.route(
            path_prefix("/api/"), NetworkFirst(static, cacheable=_cacheable_api)
        )
        self.interceptor.route(any_request, CacheFirst(static, lookup=self.storage.match))

    @property
    def known_caches(self) -> set[str]:
        return {self.static_cache_name, self.tile_cache_name}

    async def install(self) -> None:
        self.state = "installing"
        cache = self.storage.open(self.static_cache_name)
        for path in STATIC_ASSETS:
            request = httpx.Request("GET", self.origin.join(path))
            try:
                resp = await self.interceptor.network(request)
            except NETWORK_ERRORS as e:
                log.warning("Could not precache %s: %s", path, e)
                continue
            if resp.is_success:
                await cache.put(request, resp)
            else:
                log.warning("Could not precache %s: HTTP %s", path, resp.status_code)
        log.info("Precached %d static assets", len(cache))
        self.state = "installed"

    async def activate(self) -> list[str]:
        """Drop every cache namespace this version does not own."""
        self.state = "activating"
        removed = [n for n in self.storage.keys() if n not in self.known_caches]
        for name in removed:
            self.storage.delete(name)
            log.info("Deleted old cache %s", name)
        self.clients.claim()
        self.state = "activated"
        return removed

    def supersede(self) -> None:
        self.state = "redundant"

    async def fetch(self, request: httpx.Request) -> Handled:
        if request.method != "GET":
            if not self.is_online():
                return Handled(await self._save_offline(request))
            try:
                return Handled(await self.interceptor.network(request))
            except NETWORK_ERRORS as e:
                log.info("Write failed on the network, queueing offline: %s", e)
                return Handled(await self._save_offline(request))
        return await self.interceptor.dispatch(request)

    async def respond(self, request: httpx.Request) -> httpx.Response:
        return (await self.fetch(request)).response

    def broadcast(self, message: dict[str, Any]) -> int:
        targets = self.clients.match_all()
        for client in targets:
            client.post_message(message)
        return len(targets)

    async def _save_offline(self, request: httpx.Request) -> httpx.Response:
        await request.aread()
        self.broadcast(
            {
                "type": "OFFLINE_SAVE",
                "data": {
                    "url": str(request.url),
                    "method": request.method,
                    "body": request_json(request),
                    "timestamp": int(time.time() * 1000),
                },
            }
        )
        return httpx.Response(
            200,
            json={
                "success": True,
                "offline": True,
                "message": "Data lagret lokalt. Synkroniseres når du er online.",
            },
        )

    async def sync(self, tag: str) -> bool:
        """Background-sync trigger; replay itself happens in the foreground."""
        if tag != SYNC_TAG:
            return False
        self.broadcast({"type": "SYNC_START"})
        return True

    async def push(self, payload: bytes | str | dict[str, Any] | None) -> Notification:
        data = dict(DEFAULT_NOTIFICATION)
        if payload:
            try:
                parsed = payload if isinstance(payload, dict) else json.loads(payload)
                if isinstance(parsed, dict):
                    data.update({k: v for k, v in parsed.items() if v})
            except ValueError as e:
                log.warning("Unreadable push payload: %s", e)
        notification = Notification(
            title=data["title"],
            body=data["body"],
            tag=data["tag"],
            data={"url": data["url"]},
        )
        self.notifications.append(notification)
        return notification

    async def notification_click(self, notification: Notification) -> Client:
        """Focus a window already showing the target URL, or open one."""
        notification.close()
        url = notification.data.get("url") or "/"
        for client in self.clients.match_all(type="window"):
            if url in client.url:
                return client.focus()
        return self.clients.open_window(url)
