"""BarentsWatch OAuth client-credentials token broker.

Missing credentials and every kind of token failure come back as ``None``
so callers drop to cached or mock data instead of erroring.
"""
from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from fjordsync.cache import CacheStore, Clock
from fjordsync.config import settings
from fjordsync.models import Token

log = logging.getLogger(__name__)


class TokenBroker:
    def __init__(
        self,
        client: httpx.AsyncClient,
        store: CacheStore,
        *,
        client_id: str = settings.BARENTSWATCH_CLIENT_ID,
        client_secret: str = settings.BARENTSWATCH_CLIENT_SECRET,
        token_url: str = settings.BARENTSWATCH_TOKEN_URL,
        clock: Clock = time.time,
    ) -> None:
        self._client = client
        self._store = store
        self._client_id = client_id
        self._client_secret = client_secret
        self._token_url = token_url
        self._clock = clock

    def has_credentials(self) -> bool:
        # E-mail style ids are test accounts with no API access
        return bool(
            self._client_id
            and self._client_secret
            and "@" not in self._client_id
        )

    async def get_token(self) -> str | None:
        if not self.has_credentials():
            log.debug("BarentsWatch credentials not configured")
            return None

        cached = self._store.token
        if cached is not None and cached.is_valid(self._clock()):
            return cached.access_token

        return await self._request_token()

    async def _request_token(self) -> str | None:
        log.debug("Fetching new BarentsWatch access token")
        try:
            resp = await self._client.post(
                self._token_url,
                data={
                    "grant_type": "client_credentials",
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                    "scope": "api",
                },
            )
        except httpx.HTTPError as e:
            log.warning("BarentsWatch token request failed: %s", e)
            return None

        if not resp.is_success:
            log.warning(
                "BarentsWatch token request rejected: HTTP %s %s",
                resp.status_code,
                resp.text[:200],
            )
            return None

        try:
            payload: dict[str, Any] = resp.json()
            token = Token(
                access_token=payload["access_token"],
                expires_at=self._clock() + float(payload["expires_in"]),
            )
        except (ValueError, KeyError, TypeError) as e:
            log.warning("Malformed BarentsWatch token response: %s", e)
            return None

        self._store.token = token
        log.info("BarentsWatch access token obtained (expires in %ss)",
                 payload["expires_in"])
        return token.access_token

    def invalidate(self) -> None:
        self._store.token = None

    def status(self) -> dict[str, Any]:
        token = self._store.token
        expires_in = None
        if token is not None:
            expires_in = max(0, round(token.expires_at - self._clock()))
        return {
            "has_credentials": self.has_credentials(),
            "token_cached": token is not None,
            "token_expires_in_seconds": expires_in,
        }
