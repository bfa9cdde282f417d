import httpx
import pytest

from dealforge_lookup.settings import LookupSettings
from dealforge_lookup.sources.base import AdapterError
from dealforge_lookup.sources.http import build_http_client
from dealforge_lookup.sources.txgio_parcels import TxGIOParcelSource, normalize_parcel_feature


LAYER = "https://parcels.example/MapServer/0"

FEATURE = {
    "type": "Feature",
    "properties": {
        "prop_id": 123456,
        "geo_id": "05-1234-0000",
        "county": "BEXAR",
        "fips": "48029",
        "owner_name": "SMITH JOHN",
        "name_care": "",
        "situs_addr": "100 OAK LN",
        "situs_city": "SAN ANTONIO",
        "situs_stat": "TX",
        "situs_zip": "78201",
        "mail_addr": "PO BOX 1",
        "mail_city": "SAN ANTONIO",
        "mail_stat": "TX",
        "mail_zip": "78202",
        "legal_desc": "LOT 1 BLK 2",
        "legal_area": "1,250.5",
        "lgl_area_unit": "SQFT",
        "land_value": 50000,
        "imp_value": 12000,
        "mkt_value": 62000,
        "tax_year": "2024",
        "stat_land_use": "M1",
        "loc_land_use": "MH",
        "year_built": "1998",
        "date_acq": "20240315",
    },
    "geometry": {
        "type": "Polygon",
        "coordinates": [[[-98.5, 29.4], [-98.4, 29.4], [-98.4, 29.5], [-98.5, 29.5], [-98.5, 29.4]]],
    },
}


def _source(handler):
    client = build_http_client(LookupSettings(), transport=httpx.MockTransport(handler))
    return TxGIOParcelSource(client, LAYER)


def test_parcel_fetch_sends_point_query_and_normalizes():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["params"] = dict(request.url.params)
        return httpx.Response(200, json={"type": "FeatureCollection", "features": [FEATURE]})

    payload = _source(handler).fetch("29.45,-98.45")
    assert seen["path"] == "/MapServer/0/query"
    assert seen["params"]["geometry"] == "-98.45,29.45"
    assert seen["params"]["f"] == "geojson"
    assert seen["params"]["inSR"] == "4326"
    assert seen["params"]["returnGeometry"] == "true"

    assert payload["prop_id"] == "123456"
    assert payload["county"] == "BEXAR"
    assert payload["owner_care_of"] is None
    assert payload["legal_area"] == 1250.5
    assert payload["market_value"] == 62000.0
    assert payload["source_updated_at"] == "2024-03-15"
    assert payload["property_type"] == "singlewide"
    assert payload["land_use_description"] == "Manufactured Housing (MH)"
    assert payload["bbox"] == [-98.5, 29.4, -98.4, 29.5]
    assert payload["centroid"] == [-98.45, 29.45]
    assert payload["boundary_wkt"].startswith("POLYGON")


def test_parcel_without_geometry_has_no_shape_fields():
    feat = {"properties": {"prop_id": "9", "county": "TRAVIS"}, "geometry": None}
    payload = normalize_parcel_feature(feat)
    assert payload.boundary_wkt is None
    assert payload.centroid is None
    assert payload.situs_state == "TX"
    assert payload.source_updated_at is None


def test_parcel_esri_json_attributes_are_read():
    payload = normalize_parcel_feature({"attributes": {"prop_id": "7", "county": "HAYS"}})
    assert payload.prop_id == "7"
    assert payload.county == "HAYS"


def test_no_parcel_at_point_is_not_found():
    src = _source(lambda request: httpx.Response(200, json={"features": []}))
    with pytest.raises(AdapterError) as exc_info:
        src.fetch("29.45,-98.45")
    assert exc_info.value.reason == "not_found"
    assert exc_info.value.source == "txgio"


def test_arcgis_error_object_is_upstream_error():
    body = {"error": {"code": 400, "message": "Invalid query"}}
    src = _source(lambda request: httpx.Response(200, json=body))
    with pytest.raises(AdapterError) as exc_info:
        src.fetch("29.45,-98.45")
    assert exc_info.value.reason == "upstream_error"
    assert exc_info.value.status == 400


def test_feature_without_prop_id_is_bad_body():
    feat = {"properties": {"county": "BEXAR"}, "geometry": None}
    src = _source(lambda request: httpx.Response(200, json={"features": [feat]}))
    with pytest.raises(AdapterError) as exc_info:
        src.fetch("29.45,-98.45")
    assert exc_info.value.reason == "bad_body"


def test_bad_point_key_is_rejected_without_request():
    def handler(request):
        raise AssertionError("should not be called")

    with pytest.raises(AdapterError) as exc_info:
        _source(handler).fetch("not-a-point")
    assert exc_info.value.reason == "bad_key"


def test_non_finite_numbers_are_dropped():
    feat = {"properties": {"prop_id": "9", "county": "TRAVIS", "legal_area": "NaN", "mkt_value": float("inf")}}
    payload = normalize_parcel_feature(feat)
    assert payload.legal_area is None
    assert payload.market_value is None


def test_normalizer_value_errors_become_bad_body(monkeypatch):
    import dealforge_lookup.sources.txgio_parcels as txgio

    def broken(feature):
        raise ValueError("unexpected attribute shape")

    monkeypatch.setattr(txgio, "normalize_parcel_feature", broken)
    src = _source(lambda request: httpx.Response(200, json={"features": [FEATURE]}))
    with pytest.raises(AdapterError) as exc_info:
        src.fetch("29.45,-98.45")
    assert exc_info.value.reason == "bad_body"
    assert "unexpected attribute shape" in str(exc_info.value)
