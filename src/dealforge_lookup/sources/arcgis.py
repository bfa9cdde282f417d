from typing import Any, Dict, List, Optional

from dealforge_lookup.sources.base import AdapterError


def build_point_query_params(
    lat: float,
    lon: float,
    out_fields: Optional[List[str]] = None,
    return_geometry: bool = False,
    fmt: str = "json",
) -> Dict[str, str]:
    return {
        "geometry": f"{lon},{lat}",
        "geometryType": "esriGeometryPoint",
        "inSR": "4326",
        "spatialRel": "esriSpatialRelIntersects",
        "outFields": ",".join(out_fields or ["*"]),
        "returnGeometry": "true" if return_geometry else "false",
        "outSR": "4326",
        "f": fmt,
    }


def check_error(data: Dict[str, Any], source: str) -> None:
    # ArcGIS reports query errors with HTTP 200 and an "error" object.
    err = data.get("error")
    if isinstance(err, dict):
        code = err.get("code")
        status = int(code) if isinstance(code, int) else None
        raise AdapterError(source, "upstream_error", status=status, detail=str(err.get("message") or ""))


def first_feature(data: Dict[str, Any], source: str) -> Dict[str, Any]:
    check_error(data, source)
    features = data.get("features")
    if not isinstance(features, list):
        raise AdapterError(source, "bad_body", detail="missing features")
    if not features:
        raise AdapterError(source, "not_found")
    feat = features[0]
    if not isinstance(feat, dict):
        raise AdapterError(source, "bad_body", detail="feature is not an object")
    return feat


def feature_attributes(feature: Dict[str, Any]) -> Dict[str, Any]:
    # f=geojson puts them under "properties", f=json under "attributes".
    attrs = feature.get("properties")
    if not isinstance(attrs, dict):
        attrs = feature.get("attributes")
    return attrs if isinstance(attrs, dict) else {}
