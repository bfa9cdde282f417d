from __future__ import annotations

import math
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

from dealforge_lookup.schemas import GeocodePayload
from dealforge_lookup.sources.base import PARSE_ERRORS, AdapterError, LookupSource
from dealforge_lookup.sources.http import get_json


def normalize_geocode_feature(feature: Dict[str, Any], source: str = "mapbox") -> GeocodePayload:
    center = feature.get("center")
    if not isinstance(center, (list, tuple)) or len(center) != 2:
        raise AdapterError(source, "bad_body", detail="feature has no center")
    lon, lat = float(center[0]), float(center[1])
    if not (math.isfinite(lat) and math.isfinite(lon)):
        raise AdapterError(source, "bad_body", detail="center is not a finite point")

    zip_code = ""
    county = None
    city = None
    state = None
    for ctx in feature.get("context") or []:
        if not isinstance(ctx, dict):
            continue
        ctx_id = str(ctx.get("id") or "")
        text = ctx.get("text") or ""
        if ctx_id.startswith("postcode"):
            zip_code = text
        elif ctx_id.startswith("district"):
            county = text.replace(" County", "") or None
        elif ctx_id.startswith("place"):
            city = text or None
        elif ctx_id.startswith("region"):
            short = str(ctx.get("short_code") or "")
            state = short.split("-")[1].upper() if "-" in short else (text or None)

    return GeocodePayload(
        latitude=lat,
        longitude=lon,
        formatted_address=str(feature.get("place_name") or ""),
        zip_code=zip_code,
        county=county,
        city=city,
        state=state,
    )


class MapboxGeocodeSource(LookupSource):
    """Forward geocoding of US street addresses via Mapbox."""

    domain = "geocode"
    source_name = "mapbox"

    def __init__(self, client: httpx.Client, base_url: str, token: Optional[str]) -> None:
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.token = token

    def fetch(self, key: str) -> Dict[str, Any]:
        if not self.token:
            raise self.fail("missing_credentials", detail="MAPBOX_ACCESS_TOKEN is not set")
        if not (key or "").strip():
            raise self.fail("bad_key", detail="address is required")
        url = f"{self.base_url}/{quote(key, safe='')}.json"
        data = get_json(
            self.client,
            url,
            source=self.source_name,
            params={"access_token": self.token, "country": "US", "types": "address", "limit": "1"},
        )
        features = data.get("features")
        if not isinstance(features, list):
            raise self.fail("bad_body", detail="missing features")
        if not features or not isinstance(features[0], dict):
            raise self.fail("not_found")
        try:
            payload = normalize_geocode_feature(features[0], self.source_name)
        except PARSE_ERRORS as exc:
            raise self.fail("bad_body", detail=str(exc)) from exc
        return payload.model_dump()
