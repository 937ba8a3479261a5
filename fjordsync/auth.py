from __future__ import annotations

from fastapi import HTTPException, Request

from fjordsync.config import settings

# Paths that load balancers and uptime probes hit without credentials
OPEN_PATHS = frozenset({"/healthz"})


async def verify_api_key(request: Request) -> None:
    """Reject geodata requests whose X-API-KEY does not match FJORDSYNC_API_KEY.

    An empty FJORDSYNC_API_KEY leaves the service open, which is how the
    front-end runs against a local instance.
    """
    if not settings.API_KEY or request.url.path in OPEN_PATHS:
        return
    if request.headers.get("X-API-KEY", "") != settings.API_KEY:
        raise HTTPException(status_code=401, detail="Missing or wrong X-API-KEY header")
