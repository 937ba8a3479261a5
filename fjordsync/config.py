from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

load_dotenv()

log = logging.getLogger(__name__)


def _csv_list(key: str, default: str = "") -> list[str]:
    raw = os.getenv(key, default)
    return [x.strip() for x in raw.split(",") if x.strip()]


def _env(primary: str, *fallbacks: str, default: str = "") -> str:
    """Read env var with fallback aliases."""
    val = os.getenv(primary)
    if val is not None:
        return val
    for fb in fallbacks:
        val = os.getenv(fb)
        if val is not None:
            return val
    return default


class Settings:
    # --- Auth / Server ---
    API_KEY: str = os.getenv("FJORDSYNC_API_KEY", "")
    HOST: str = os.getenv("FJORDSYNC_HOST", "0.0.0.0")
    PORT: int = int(os.getenv("FJORDSYNC_PORT", "8200"))

    # --- BarentsWatch (OAuth client credentials) ---
    BARENTSWATCH_CLIENT_ID: str = _env("BARENTSWATCH_CLIENT_ID", "BW_CLIENT_ID")
    BARENTSWATCH_CLIENT_SECRET: str = _env(
        "BARENTSWATCH_CLIENT_SECRET", "BW_CLIENT_SECRET"
    )
    BARENTSWATCH_TOKEN_URL: str = os.getenv(
        "BARENTSWATCH_TOKEN_URL", "https://id.barentswatch.no/connect/token"
    )
    BARENTSWATCH_API_URL: str = os.getenv(
        "BARENTSWATCH_API_URL", "https://www.barentswatch.no/bwapi"
    )

    # --- Geodata sources ---
    PROTECTED_AREAS_URL: str = os.getenv(
        "PROTECTED_AREAS_URL",
        "https://kart.miljodirektoratet.no/arcgis/rest/services/vern/MapServer/0/query",
    )
    LOCALITY_WFS_URL: str = os.getenv(
        "LOCALITY_WFS_URL", "https://wfs.geonorge.no/skwms1/wfs.akvakulturlokaliteter"
    )
    FISKERIDIR_LOCALITIES_URL: str = os.getenv(
        "FISKERIDIR_LOCALITIES_URL",
        "https://gis.fiskeridir.no/server/rest/services/fiskeridirWMS_akva/MapServer/4/query",
    )

    # --- Network / caching (seconds) ---
    HTTP_TIMEOUT: float = float(os.getenv("HTTP_TIMEOUT", "15"))
    ZONES_TTL: int = int(os.getenv("ZONES_TTL", str(24 * 60 * 60)))
    FISH_HEALTH_TTL: int = int(os.getenv("FISH_HEALTH_TTL", str(30 * 60)))
    REGISTRY_TTL: int = int(os.getenv("REGISTRY_TTL", str(60 * 60)))

    # --- Batch fetching ---
    BATCH_SIZE: int = int(os.getenv("BATCH_SIZE", "20"))
    BATCH_DELAY: float = float(os.getenv("BATCH_DELAY", "0.1"))
    POLYGON_BATCH_SIZE: int = int(os.getenv("POLYGON_BATCH_SIZE", "50"))
    REGISTRY_PAGE_SIZE: int = int(os.getenv("REGISTRY_PAGE_SIZE", "1000"))
    WEEK_RETRY_DEPTH: int = int(os.getenv("WEEK_RETRY_DEPTH", "4"))

    # --- Background refresh interval (seconds, 0 disables) ---
    REFRESH_ZONES: int = int(os.getenv("REFRESH_ZONES", "0"))

    # --- Offline resilience layer ---
    OFFLINE_ORIGIN: str = os.getenv("OFFLINE_ORIGIN", "http://localhost:5174")
    OFFLINE_CACHE_VERSION: int = int(os.getenv("OFFLINE_CACHE_VERSION", "1"))
    OFFLINE_FETCH_TIMEOUT: float = float(os.getenv("OFFLINE_FETCH_TIMEOUT", "10"))
    TILE_CACHE_MAX_ENTRIES: int = int(os.getenv("TILE_CACHE_MAX_ENTRIES", "2000"))
    TILE_HOSTS: list[str] = _csv_list(
        "TILE_HOSTS",
        "tile.openstreetmap.org,a.tile.openstreetmap.org,"
        "b.tile.openstreetmap.org,c.tile.openstreetmap.org,"
        "cache.kartverket.no,server.arcgisonline.com",
    )
    GEODATA_HOSTS: list[str] = _csv_list(
        "GEODATA_HOSTS",
        "gis.fiskeridir.no,www.barentswatch.no,wfs.geonorge.no,"
        "kart.miljodirektoratet.no",
    )

    # --- Validation ---
    _RECOMMENDED = {
        "BARENTSWATCH_CLIENT_ID": "Disease zones and fish health will use mock data",
        "BARENTSWATCH_CLIENT_SECRET": "Disease zones and fish health will use mock data",
    }

    @classmethod
    def validate(cls) -> None:
        """Log warnings for missing or suspicious configuration."""
        for var, hint in cls._RECOMMENDED.items():
            if not getattr(cls, var):
                log.warning("Missing env var %s: %s", var, hint)
        if "@" in cls.BARENTSWATCH_CLIENT_ID:
            log.warning(
                "BARENTSWATCH_CLIENT_ID looks like an e-mail address; "
                "treating credentials as absent"
            )
        if cls.BATCH_SIZE < 1:
            log.error("BATCH_SIZE must be >= 1 (got %d), using 20", cls.BATCH_SIZE)
            cls.BATCH_SIZE = 20


settings = Settings()
