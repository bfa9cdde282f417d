from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from dealforge_lookup.normalize import parse_point_key
from dealforge_lookup.schemas import FloodZonePayload
from dealforge_lookup.sources.arcgis import build_point_query_params, feature_attributes, first_feature
from dealforge_lookup.sources.base import PARSE_ERRORS, LookupSource
from dealforge_lookup.sources.http import get_json


# Special Flood Hazard Areas.
HIGH_RISK_ZONES = ("A", "AE", "AH", "AO", "AR", "A99", "V", "VE")

ZONE_DESCRIPTIONS = {
    "A": "Special Flood Hazard Area - 1% annual chance flood",
    "AE": "Special Flood Hazard Area with base flood elevation",
    "AH": "Special Flood Hazard Area - shallow flooding",
    "AO": "Special Flood Hazard Area - sheet flow",
    "AR": "Special Flood Hazard Area - levee restoration",
    "A99": "Special Flood Hazard Area - flood control system under construction",
    "V": "Coastal Special Flood Hazard Area",
    "VE": "Coastal Special Flood Hazard Area with base flood elevation",
    "B": "Moderate flood hazard area - 0.2% annual chance",
    "X": "Minimal flood hazard area",
    "C": "Minimal flood hazard area",
    "D": "Undetermined flood hazard",
}


def base_zone(zone_code: Optional[str]) -> str:
    # "X PROTECTED BY LEVEE" -> "X"
    return (zone_code or "").strip().split(" ")[0].upper()


def is_high_risk_zone(zone_code: Optional[str]) -> bool:
    return base_zone(zone_code) in HIGH_RISK_ZONES


def risk_level(zone_code: Optional[str], zone_subtype: Optional[str] = None) -> str:
    zone = base_zone(zone_code)
    if zone in HIGH_RISK_ZONES:
        return "high"
    if zone == "B" or "SHADED" in f"{zone_code or ''} {zone_subtype or ''}".upper():
        return "moderate"
    if zone == "D":
        return "undetermined"
    return "low"


def normalize_flood_feature(feature: Dict[str, Any]) -> FloodZonePayload:
    attrs = feature_attributes(feature)
    zone = str(attrs.get("FLD_ZONE") or attrs.get("FLOODZONE") or "").strip() or "X"
    subtype = str(attrs.get("ZONE_SUBTY") or "").strip() or None
    sfha = str(attrs.get("SFHA_TF") or "").strip().upper() in ("T", "TRUE", "Y", "1")
    return FloodZonePayload(
        zone_code=zone,
        zone_subtype=subtype,
        is_sfha=sfha,
        is_high_risk=is_high_risk_zone(zone),
        risk_level=risk_level(zone, subtype),
        description=ZONE_DESCRIPTIONS.get(base_zone(zone), f"Flood zone {zone}"),
    )


class FemaFloodZoneSource(LookupSource):
    """FEMA National Flood Hazard Layer zone at a point."""

    domain = "flood_zone"
    source_name = "fema_nfhl"

    def __init__(self, client: httpx.Client, layer_url: str) -> None:
        self.client = client
        self.layer_url = layer_url.rstrip("/")

    def fetch(self, key: str) -> Dict[str, Any]:
        try:
            lat, lon = parse_point_key(key)
        except ValueError as exc:
            raise self.fail("bad_key", detail=str(exc)) from exc
        params = build_point_query_params(lat, lon, out_fields=["FLD_ZONE", "ZONE_SUBTY", "SFHA_TF"])
        data = get_json(self.client, f"{self.layer_url}/query", source=self.source_name, params=params)
        feature = first_feature(data, self.source_name)
        try:
            payload = normalize_flood_feature(feature)
        except PARSE_ERRORS as exc:
            raise self.fail("bad_body", detail=str(exc)) from exc
        return payload.model_dump()
