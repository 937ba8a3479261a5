"""Bounded fan-out: run many per-item fetches in sequential concurrent chunks."""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

from fjordsync.config import settings

log = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

ProgressCallback = Callable[[int, int], None]


async def fetch_all(
    items: Sequence[T],
    per_item_fetch: Callable[[T], Awaitable[R | None]],
    *,
    batch_size: int = settings.BATCH_SIZE,
    on_progress: ProgressCallback | None = None,
    delay: float = settings.BATCH_DELAY,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> list[R]:
    """Fetch every item, *batch_size* at a time.

    A fetch that raises or returns ``None`` is dropped, so the result can be
    shorter than *items*. Within a chunk results arrive in completion order;
    chunks themselves run one after another with *delay* seconds between
    them. ``on_progress(percent, count)`` fires after every chunk.
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")

    total = len(items)
    results: list[R] = []

    for offset in range(0, total, batch_size):
        chunk = items[offset:offset + batch_size]
        tasks = [asyncio.ensure_future(per_item_fetch(item)) for item in chunk]

        for fut in asyncio.as_completed(tasks):
            try:
                value = await fut
            except Exception as e:
                log.warning("Batch item failed: %s", e)
                continue
            if value is not None:
                results.append(value)

        percent = min(100, round((offset + batch_size) / total * 100))
        if on_progress:
            on_progress(percent, len(results))
        log.debug("Fetched %d/%d items (%d%%)", len(results), total, percent)

        if offset + batch_size < total:
            await sleep(delay)

    return results
