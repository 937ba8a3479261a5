"""Named response caches for the offline layer (the Cache Storage model)."""
from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict

import httpx

log = logging.getLogger(__name__)


def cache_key(request: httpx.Request | str) -> str:
    if isinstance(request, httpx.Request):
        return str(request.url)
    return str(httpx.URL(request))


def clone_response(resp: httpx.Response) -> httpx.Response:
    """Copy a fully read response so the cache and the caller don't share it."""
    try:
        request = resp.request
    except RuntimeError:
        request = None
    # content is already decoded, so the encoding headers no longer apply
    headers = [
        (k, v) for k, v in resp.headers.multi_items()
        if k.lower() not in ("content-encoding", "content-length", "transfer-encoding")
    ]
    return httpx.Response(
        resp.status_code,
        headers=headers,
        content=resp.content,
        request=request,
    )


class ResponseCache:
    """An insertion-ordered map of URL -> response.

    Re-storing a URL moves it to the newest position; eviction always
    removes from the oldest end.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._entries: OrderedDict[str, httpx.Response] = OrderedDict()
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def keys(self) -> list[str]:
        return list(self._entries.keys())

    async def match(self, request: httpx.Request | str) -> httpx.Response | None:
        async with self._lock:
            resp = self._entries.get(cache_key(request))
        return clone_response(resp) if resp is not None else None

    async def put(self, request: httpx.Request | str, resp: httpx.Response) -> None:
        key = cache_key(request)
        async with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = clone_response(resp)

    async def delete(self, request: httpx.Request | str) -> bool:
        async with self._lock:
            return self._entries.pop(cache_key(request), None) is not None

    async def trim(self, max_entries: int, fraction: float = 0.2) -> int:
        """Drop the oldest ``floor(n * fraction)`` entries once n exceeds *max_entries*."""
        async with self._lock:
            count = len(self._entries)
            if count <= max_entries:
                return 0
            to_delete = int(count * fraction)
            for _ in range(to_delete):
                self._entries.popitem(last=False)
        log.info("Evicted %d of %d entries from %s", to_delete, count, self.name)
        return to_delete


class CacheStorage:
    """All cache namespaces owned by one worker."""

    def __init__(self) -> None:
        self._caches: dict[str, ResponseCache] = {}

    def open(self, name: str) -> ResponseCache:
        if name not in self._caches:
            self._caches[name] = ResponseCache(name)
        return self._caches[name]

    def keys(self) -> list[str]:
        return list(self._caches.keys())

    def has(self, name: str) -> bool:
        return name in self._caches

    def delete(self, name: str) -> bool:
        return self._caches.pop(name, None) is not None

    async def match(self, request: httpx.Request | str) -> httpx.Response | None:
        """Look the request up in every namespace, oldest namespace first."""
        for cache in list(self._caches.values()):
            resp = await cache.match(request)
            if resp is not None:
                return resp
        return None
