"""fjordsync: external geodata sync and cache API for the fish-farm apps."""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import Depends, FastAPI

from fjordsync.auth import verify_api_key
from fjordsync.cache import CacheStore
from fjordsync.config import Settings, settings
from fjordsync.routes import fishhealth, health, registry
from fjordsync.routes import zones as zones_routes
from fjordsync.services import fiskeridir, zones
from fjordsync.services.token import TokenBroker

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
log = logging.getLogger("fjordsync")


async def _refresh_loop(
    name: str,
    refresh,
    interval: int,
    timeout: float = 60.0,
    initial_delay: float = 0.0,
):
    """Generic background warm-up: call *refresh* every *interval* seconds."""
    if initial_delay:
        await asyncio.sleep(initial_delay)
    while True:
        try:
            await asyncio.wait_for(refresh(), timeout=timeout)
            log.debug("Refreshed %s", name)
        except asyncio.CancelledError:
            break
        except Exception as e:
            log.warning("Refresh %s failed: %s", name, e)
        await asyncio.sleep(interval)


@asynccontextmanager
async def lifespan(app: FastAPI):
    client = httpx.AsyncClient(timeout=httpx.Timeout(settings.HTTP_TIMEOUT))
    store = CacheStore()
    broker = TokenBroker(client, store)
    app.state.http = client
    app.state.store = store
    app.state.broker = broker

    Settings.validate()

    tasks: list[asyncio.Task] = []
    if settings.REFRESH_ZONES > 0:
        # Stagger startup slightly so not everything hits at t=0
        tasks = [
            asyncio.create_task(
                _refresh_loop(
                    "disease_zones",
                    lambda: zones.get_disease_zones(client, store, broker),
                    settings.REFRESH_ZONES,
                )
            ),
            asyncio.create_task(
                _refresh_loop(
                    "protected_areas",
                    lambda: zones.get_protected_areas(client, store),
                    settings.REFRESH_ZONES,
                    initial_delay=1,
                )
            ),
            asyncio.create_task(
                _refresh_loop(
                    "locality_polygons",
                    lambda: zones.get_locality_polygons(client, store),
                    settings.REFRESH_ZONES,
                    timeout=120.0,
                    initial_delay=2,
                )
            ),
            asyncio.create_task(
                _refresh_loop(
                    "registry_localities",
                    lambda: fiskeridir.fetch_localities_with_owners(client, store),
                    settings.REFRESH_ZONES,
                    initial_delay=3,
                )
            ),
        ]

    log.info(
        "fjordsync started, %d background jobs, port %s",
        len(tasks),
        settings.PORT,
    )
    yield

    for t in tasks:
        t.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
    await client.aclose()
    log.info("fjordsync shutdown complete")


app = FastAPI(
    title="fjordsync",
    version="0.1.0",
    lifespan=lifespan,
    dependencies=[Depends(verify_api_key)],
)

app.include_router(health.router)
app.include_router(zones_routes.router)
app.include_router(fishhealth.router)
app.include_router(registry.router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "fjordsync.main:app",
        host=settings.HOST,
        port=settings.PORT,
        log_level="info",
    )
