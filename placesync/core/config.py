"""Application configuration helpers."""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, Tuple

from dotenv import load_dotenv

from placesync.models import BoundingBox

logger = logging.getLogger(__name__)

DEFAULT_BOUNDS = BoundingBox(north=14.74, south=14.65, east=-17.32, west=-17.52)

# Region name -> (bounding box, vicinity keyword) swept by the hourly cadence.
HIGH_TRAFFIC_REGIONS: Dict[str, Tuple[BoundingBox, str]] = {
    "Dakar": (DEFAULT_BOUNDS, "dakar"),
    "Saint-Louis": (BoundingBox(north=16.06, south=16.00, east=-16.47, west=-16.52), "saint-louis"),
    "Thiès": (BoundingBox(north=14.82, south=14.77, east=-16.89, west=-16.95), "thies"),
}


class ConfigError(RuntimeError):
    """Raised when mandatory configuration is missing."""


@dataclass(frozen=True)
class Settings:
    google_api_key: str
    database_url: str
    worker_port: int = 9000
    area_name: str = "dakar"
    bounds: BoundingBox = DEFAULT_BOUNDS
    spacing_km: float = 0.4
    refresh_interval_days: int = 30
    request_delay: float = 2.0
    language: str = "fr"
    high_traffic_limit: int = 100

    def require_api_key(self) -> str:
        if not self.google_api_key:
            raise ConfigError("GOOGLE_API_KEY is required")
        return self.google_api_key


def _parse_bounds(raw: str) -> BoundingBox:
    try:
        north, south, west, east = (float(part) for part in raw.split(","))
    except ValueError as exc:
        raise ConfigError(f"SYNC_BOUNDS must be 'north,south,west,east', got {raw!r}") from exc
    if north < south or east < west:
        raise ConfigError(f"SYNC_BOUNDS is inverted: {raw!r}")
    return BoundingBox(north=north, south=south, east=east, west=west)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    load_dotenv()

    google_api_key = os.getenv("GOOGLE_API_KEY", "")
    database_url = os.getenv("DATABASE_URL", "")
    worker_port = int(os.getenv("WORKER_PORT", "9000"))
    area_name = os.getenv("SYNC_AREA_NAME", "dakar").strip().lower()
    bounds_raw = os.getenv("SYNC_BOUNDS")
    bounds = _parse_bounds(bounds_raw) if bounds_raw else DEFAULT_BOUNDS
    spacing_km = float(os.getenv("SYNC_SPACING_KM", "0.4"))
    refresh_interval_days = int(os.getenv("SYNC_REFRESH_DAYS", "30"))
    request_delay = float(os.getenv("SYNC_REQUEST_DELAY", "2.0"))
    language = os.getenv("SYNC_LANGUAGE", "fr")
    high_traffic_limit = int(os.getenv("SYNC_HIGH_TRAFFIC_LIMIT", "100"))

    if not database_url:
        logger.warning("DATABASE_URL is not set; database operations will fail.")
    if not google_api_key:
        logger.warning("GOOGLE_API_KEY is not configured; Google Places requests will fail.")
    if spacing_km <= 0:
        raise ConfigError("SYNC_SPACING_KM must be positive")

    return Settings(
        google_api_key=google_api_key,
        database_url=database_url,
        worker_port=worker_port,
        area_name=area_name,
        bounds=bounds,
        spacing_km=spacing_km,
        refresh_interval_days=refresh_interval_days,
        request_delay=request_delay,
        language=language,
        high_traffic_limit=high_traffic_limit,
    )
