from __future__ import annotations

import math
import os
from dataclasses import dataclass, field
from datetime import timedelta
from functools import lru_cache
from typing import Dict, Optional


DOMAINS = ("parcel", "fmr", "geocode", "flood_zone")

DEFAULT_TTL_DAYS: Dict[str, int] = {
    "parcel": 90,
    "fmr": 30,
    "geocode": 30,
    "flood_zone": 90,
}

DEFAULT_TXGIO_PARCELS_URL = (
    "https://feature.geographic.texas.gov/arcgis/rest/services/Parcels/"
    "stratmap_land_parcels_48_most_recent/MapServer/0"
)
DEFAULT_FEMA_NFHL_URL = (
    "https://hazards.fema.gov/arcgis/rest/services/public/NFHL/MapServer/28"
)
DEFAULT_HUD_FMR_URL = "https://www.huduser.gov/hudapi/public/fmr/data"
DEFAULT_MAPBOX_GEOCODE_URL = "https://api.mapbox.com/geocoding/v5/mapbox.places"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    v = str(raw).strip().lower()
    if v in {"1", "true", "t", "yes", "y", "on"}:
        return True
    if v in {"0", "false", "f", "no", "n", "off"}:
        return False
    return default


def _env_int(name: str, default: int, *, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or not str(raw).strip():
        return default
    try:
        value = int(str(raw).strip())
    except ValueError:
        return default
    return max(minimum, value)


def _env_float(name: str, default: float, *, minimum: float = 0.0) -> float:
    raw = os.getenv(name)
    if raw is None or not str(raw).strip():
        return default
    try:
        value = float(str(raw).strip())
    except ValueError:
        return default
    if not math.isfinite(value):
        return default
    return max(minimum, value)


def _env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    raw = os.getenv(name)
    if raw is None:
        return default
    raw = raw.strip()
    return raw or default


@dataclass(frozen=True)
class LookupSettings:
    """Process-start configuration for the lookup service.

    Everything is read from the environment once; there is no runtime
    reconfiguration.
    """

    db_path: str = "./lookup_cache.sqlite"
    http_timeout_s: float = 15.0
    user_agent: str = "dealforge-lookup"
    single_flight: bool = False
    ttl_days: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_TTL_DAYS))
    hud_api_key: Optional[str] = None
    mapbox_token: Optional[str] = None
    txgio_parcels_url: str = DEFAULT_TXGIO_PARCELS_URL
    fema_nfhl_url: str = DEFAULT_FEMA_NFHL_URL
    hud_fmr_url: str = DEFAULT_HUD_FMR_URL
    mapbox_geocode_url: str = DEFAULT_MAPBOX_GEOCODE_URL

    @classmethod
    def from_env(cls) -> "LookupSettings":
        ttl_days = {
            domain: _env_int(f"LOOKUP_TTL_DAYS_{domain.upper()}", days)
            for domain, days in DEFAULT_TTL_DAYS.items()
        }
        return cls(
            db_path=_env_str("LOOKUP_DB_PATH", "./lookup_cache.sqlite"),
            http_timeout_s=_env_float("LOOKUP_HTTP_TIMEOUT_S", 15.0, minimum=1.0),
            user_agent=_env_str("LOOKUP_HTTP_USER_AGENT", "dealforge-lookup"),
            single_flight=_env_bool("LOOKUP_SINGLE_FLIGHT", False),
            ttl_days=ttl_days,
            hud_api_key=_env_str("HUD_API_KEY"),
            # The web app exposes the same token under a public name.
            mapbox_token=_env_str("MAPBOX_ACCESS_TOKEN")
            or _env_str("NEXT_PUBLIC_MAPBOX_ACCESS_TOKEN"),
            txgio_parcels_url=_env_str("TXGIO_PARCELS_URL", DEFAULT_TXGIO_PARCELS_URL),
            fema_nfhl_url=_env_str("FEMA_NFHL_URL", DEFAULT_FEMA_NFHL_URL),
            hud_fmr_url=_env_str("HUD_FMR_URL", DEFAULT_HUD_FMR_URL),
            mapbox_geocode_url=_env_str("MAPBOX_GEOCODE_URL", DEFAULT_MAPBOX_GEOCODE_URL),
        )

    def ttls(self) -> Dict[str, timedelta]:
        return {domain: timedelta(days=int(days)) for domain, days in self.ttl_days.items()}


@lru_cache(maxsize=1)
def get_settings() -> LookupSettings:
    return LookupSettings.from_env()


def reset_settings_cache() -> None:
    """Test helper to force env re-read."""

    get_settings.cache_clear()
