"""Shared pytest fixtures."""

import httpx
import pytest

from fjordsync.cache import CacheStore
from fjordsync.services.token import TokenBroker

TOKEN_URL = "https://id.test.no/connect/token"

START = 1_700_000_000.0


class FakeClock:
    """Manually advanced stand-in for time.time."""

    def __init__(self, start: float = START) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> CacheStore:
    """Create a fresh cache registry driven by the fake clock."""
    return CacheStore(
        zones_ttl=24 * 3600, fish_health_ttl=30 * 60, registry_ttl=60 * 60, clock=clock
    )


@pytest.fixture
async def http():
    async with httpx.AsyncClient() as client:
        yield client


@pytest.fixture
def broker(http: httpx.AsyncClient, store: CacheStore, clock: FakeClock) -> TokenBroker:
    """A broker with valid-looking credentials."""
    return TokenBroker(
        http,
        store,
        client_id="fjord-client",
        client_secret="s3cret",
        token_url=TOKEN_URL,
        clock=clock,
    )


@pytest.fixture
def anon_broker(http: httpx.AsyncClient, store: CacheStore, clock: FakeClock) -> TokenBroker:
    """A broker with no credentials configured."""
    return TokenBroker(
        http, store, client_id="", client_secret="", token_url=TOKEN_URL, clock=clock
    )
