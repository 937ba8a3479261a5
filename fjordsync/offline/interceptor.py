"""Request routing and caching strategies for the offline layer.

A ``NetworkInterceptor`` holds an ordered list of ``(predicate, strategy)``
routes; the first predicate that matches a GET request picks the strategy.
Strategies never let a network exception reach the caller: they answer
from cache or with a synthetic response instead.
"""
from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass

import httpx

from fjordsync.offline.storage import ResponseCache

log = logging.getLogger(__name__)

Fetcher = Callable[[httpx.Request], Awaitable[httpx.Response]]
Predicate = Callable[[httpx.Request], bool]

NETWORK_ERRORS = (httpx.TransportError, asyncio.TimeoutError)

STATIC_EXTENSIONS = (".js", ".css", ".png", ".jpg", ".jpeg", ".svg", ".ico", ".woff2")


@dataclass
class Handled:
    """A response plus the cache write started alongside it, if any."""

    response: httpx.Response
    write: asyncio.Task | None = None


class Strategy:
    async def __call__(self, request: httpx.Request, fetch: Fetcher) -> Handled:
        raise NotImplementedError


def offline_response(message: str = "Ingen nettverkstilkobling") -> httpx.Response:
    return httpx.Response(
        503,
        json={"error": "Offline", "offline": True, "message": message},
    )


def empty_not_found() -> httpx.Response:
    return httpx.Response(404, content=b"")


# ---- Predicates ----------------------------------------------------------


def host_in(hosts: Iterable[str]) -> Predicate:
    allowed = frozenset(h.lower() for h in hosts)
    return lambda request: request.url.host.lower() in allowed


def path_prefix(prefix: str) -> Predicate:
    return lambda request: request.url.path.startswith(prefix)


def any_request(request: httpx.Request) -> bool:
    return True


def is_static_asset(request: httpx.Request) -> bool:
    return request.url.path.lower().endswith(STATIC_EXTENSIONS)


# ---- Strategies ----------------------------------------------------------


class TileCacheFirst(Strategy):
    """Serve tiles from cache, fetch and store on a miss, trim after writes."""

    def __init__(self, cache: ResponseCache, max_entries: int = 2000) -> None:
        self.cache = cache
        self.max_entries = max_entries

    async def __call__(self, request: httpx.Request, fetch: Fetcher) -> Handled:
        cached = await self.cache.match(request)
        if cached is not None:
            return Handled(cached)
        try:
            resp = await fetch(request)
        except NETWORK_ERRORS as e:
            log.debug("Tile unavailable offline %s: %s", request.url, e)
            return Handled(empty_not_found())
        if resp.status_code != 200:
            return Handled(resp)
        await self.cache.put(request, resp)
        trim = asyncio.create_task(self.cache.trim(self.max_entries))
        return Handled(resp, trim)


class NetworkFirst(Strategy):
    """Try the network, store good answers, fall back to cache then 503."""

    def __init__(
        self,
        cache: ResponseCache,
        *,
        cacheable: Predicate = any_request,
        fallback: Callable[[httpx.Request], Awaitable[httpx.Response | None]] | None = None,
    ) -> None:
        self.cache = cache
        self.cacheable = cacheable
        self.fallback = fallback or cache.match

    async def __call__(self, request: httpx.Request, fetch: Fetcher) -> Handled:
        try:
            resp = await fetch(request)
        except NETWORK_ERRORS as e:
            log.info("Network failed for %s, trying cache: %s", request.url, e)
            cached = await self.fallback(request)
            if cached is not None:
                return Handled(cached)
            return Handled(offline_response())

        write = None
        if resp.is_success and self.cacheable(request):
            write = asyncio.create_task(self.cache.put(request, resp))
        return Handled(resp, write)


class CacheFirst(Strategy):
    """Serve any cached copy; otherwise fetch, storing only what *storable* allows."""

    def __init__(
        self,
        cache: ResponseCache,
        *,
        storable: Predicate = is_static_asset,
        lookup: Callable[[httpx.Request], Awaitable[httpx.Response | None]] | None = None,
    ) -> None:
        self.cache = cache
        self.storable = storable
        self.lookup = lookup or cache.match

    async def __call__(self, request: httpx.Request, fetch: Fetcher) -> Handled:
        cached = await self.lookup(request)
        if cached is not None:
            return Handled(cached)
        try:
            resp = await fetch(request)
        except NETWORK_ERRORS as e:
            log.info("Offline and no cached copy of %s: %s", request.url, e)
            return Handled(offline_response())
        write = None
        if resp.is_success and self.storable(request):
            write = asyncio.create_task(self.cache.put(request, resp))
        return Handled(resp, write)


# ---- Interceptor -----------------------------------------------------------


class NetworkInterceptor:
    def __init__(self, fetch: Fetcher, *, timeout: float | None = None) -> None:
        self._fetch = fetch
        self._timeout = timeout
        self._routes: list[tuple[Predicate, Strategy]] = []
        self._pending: set[asyncio.Task] = set()

    def route(self, predicate: Predicate, strategy: Strategy) -> None:
        self._routes.append((predicate, strategy))

    async def network(self, request: httpx.Request) -> httpx.Response:
        """Fetch with the interceptor's timeout applied."""
        if self._timeout is None:
            return await self._fetch(request)
        return await asyncio.wait_for(self._fetch(request), self._timeout)

    async def dispatch(self, request: httpx.Request) -> Handled:
        if request.method != "GET":
            return Handled(await self.network(request))
        for predicate, strategy in self._routes:
            if predicate(request):
                handled = await strategy(request, self.network)
                break
        else:
            handled = Handled(await self.network(request))
        if handled.write is not None:
            self._pending.add(handled.write)
            handled.write.add_done_callback(self._write_done)
        return handled

    async def handle(self, request: httpx.Request) -> httpx.Response:
        return (await self.dispatch(request)).response

    def _write_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            log.warning("Cache write failed: %s", task.exception())

    async def drain(self) -> None:
        """Wait for every outstanding cache write."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


def request_json(request: httpx.Request) -> object:
    """Decode a request body as JSON, falling back to text (or None if empty)."""
    raw = request.content
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return raw.decode("utf-8", errors="replace")
