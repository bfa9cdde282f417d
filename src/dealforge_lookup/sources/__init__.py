from __future__ import annotations

from typing import Dict

import httpx

from dealforge_lookup.settings import LookupSettings

from .base import AdapterError, LookupSource
from .fema_flood import FemaFloodZoneSource
from .hud_fmr import HudFmrSource
from .mapbox_geocode import MapboxGeocodeSource
from .txgio_parcels import TxGIOParcelSource


def build_sources(settings: LookupSettings, client: httpx.Client) -> Dict[str, LookupSource]:
    """Construct one source per domain, all sharing ``client``."""

    sources = [
        TxGIOParcelSource(client, settings.txgio_parcels_url),
        HudFmrSource(client, settings.hud_fmr_url, settings.hud_api_key),
        MapboxGeocodeSource(client, settings.mapbox_geocode_url, settings.mapbox_token),
        FemaFloodZoneSource(client, settings.fema_nfhl_url),
    ]
    return {s.domain: s for s in sources}


__all__ = [
    "AdapterError",
    "LookupSource",
    "build_sources",
]
