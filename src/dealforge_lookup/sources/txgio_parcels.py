from __future__ import annotations

import math
from typing import Any, Dict, Optional

import httpx
from shapely.errors import ShapelyError
from shapely.geometry import shape

from dealforge_lookup.land_use import land_use_description, map_land_use_to_property_type
from dealforge_lookup.normalize import parse_point_key
from dealforge_lookup.schemas import ParcelPayload
from dealforge_lookup.sources.arcgis import build_point_query_params, feature_attributes, first_feature
from dealforge_lookup.sources.base import PARSE_ERRORS, LookupSource
from dealforge_lookup.sources.http import get_json


def _as_str(v: object) -> Optional[str]:
    if v is None:
        return None
    s = str(v).strip()
    return s or None


def _as_float(v: object) -> Optional[float]:
    if v is None or isinstance(v, bool):
        return None
    if isinstance(v, (int, float)):
        value = float(v)
    else:
        s = str(v).strip().replace(",", "")
        try:
            value = float(s)
        except ValueError:
            return None
    return value if math.isfinite(value) else None


def _source_date(raw: object) -> Optional[str]:
    # TxGIO reports date_acq as YYYYMMDD.
    s = _as_str(raw)
    if not s or len(s) != 8 or not s.isdigit():
        return None
    return f"{s[0:4]}-{s[4:6]}-{s[6:8]}"


def _geometry_fields(geometry: Any) -> Dict[str, Any]:
    if not isinstance(geometry, dict) or geometry.get("type") not in ("Polygon", "MultiPolygon"):
        return {}
    try:
        geom = shape(geometry)
    except (ValueError, TypeError, AttributeError, ShapelyError):
        return {}
    if geom.is_empty:
        return {}
    centroid = geom.centroid
    return {
        "boundary_wkt": geom.wkt,
        "bbox": [round(x, 7) for x in geom.bounds],
        "centroid": [round(centroid.x, 7), round(centroid.y, 7)],
    }


def normalize_parcel_feature(feature: Dict[str, Any]) -> ParcelPayload:
    attrs = feature_attributes(feature)
    prop_id = _as_str(attrs.get("prop_id"))
    county = _as_str(attrs.get("county"))
    state_land_use = _as_str(attrs.get("stat_land_use"))
    local_land_use = _as_str(attrs.get("loc_land_use"))
    return ParcelPayload(
        prop_id=prop_id or "",
        geo_id=_as_str(attrs.get("geo_id")),
        county=county or "UNKNOWN",
        fips=_as_str(attrs.get("fips")),
        owner_name=_as_str(attrs.get("owner_name")),
        owner_care_of=_as_str(attrs.get("name_care")),
        situs_address=_as_str(attrs.get("situs_addr")),
        situs_city=_as_str(attrs.get("situs_city")),
        # TxGIO abbreviates state columns to *_stat.
        situs_state=_as_str(attrs.get("situs_stat")) or "TX",
        situs_zip=_as_str(attrs.get("situs_zip")),
        mail_address=_as_str(attrs.get("mail_addr")),
        mail_city=_as_str(attrs.get("mail_city")),
        mail_state=_as_str(attrs.get("mail_stat")),
        mail_zip=_as_str(attrs.get("mail_zip")),
        legal_description=_as_str(attrs.get("legal_desc")),
        legal_area=_as_float(attrs.get("legal_area")),
        legal_area_unit=_as_str(attrs.get("lgl_area_unit")),
        land_value=_as_float(attrs.get("land_value")),
        improvement_value=_as_float(attrs.get("imp_value")),
        market_value=_as_float(attrs.get("mkt_value")),
        tax_year=_as_str(attrs.get("tax_year")),
        state_land_use=state_land_use,
        local_land_use=local_land_use,
        year_built=_as_str(attrs.get("year_built")),
        source_updated_at=_source_date(attrs.get("date_acq")),
        property_type=map_land_use_to_property_type(state_land_use, local_land_use),
        land_use_description=land_use_description(state_land_use, local_land_use),
        **_geometry_fields(feature.get("geometry")),
    )


class TxGIOParcelSource(LookupSource):
    """Parcel containing a point, from the TxGIO StratMap parcel service.

    Keys are ``"lat,lon"`` point keys.
    """

    domain = "parcel"
    source_name = "txgio"

    def __init__(self, client: httpx.Client, layer_url: str) -> None:
        self.client = client
        self.layer_url = layer_url.rstrip("/")

    def fetch(self, key: str) -> Dict[str, Any]:
        try:
            lat, lon = parse_point_key(key)
        except ValueError as exc:
            raise self.fail("bad_key", detail=str(exc)) from exc
        params = build_point_query_params(lat, lon, return_geometry=True, fmt="geojson")
        data = get_json(self.client, f"{self.layer_url}/query", source=self.source_name, params=params)
        feature = first_feature(data, self.source_name)
        try:
            payload = normalize_parcel_feature(feature)
        except PARSE_ERRORS as exc:
            raise self.fail("bad_body", detail=str(exc)) from exc
        if not payload.prop_id:
            raise self.fail("bad_body", detail="feature has no prop_id")
        return payload.model_dump()
