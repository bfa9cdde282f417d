import httpx
import pytest

from dealforge_lookup.settings import LookupSettings
from dealforge_lookup.sources.base import AdapterError
from dealforge_lookup.sources.fema_flood import (
    FemaFloodZoneSource,
    base_zone,
    is_high_risk_zone,
    normalize_flood_feature,
    risk_level,
)
from dealforge_lookup.sources.http import build_http_client


LAYER = "https://fema.example/NFHL/MapServer/28"


def _source(handler):
    client = build_http_client(LookupSettings(), transport=httpx.MockTransport(handler))
    return FemaFloodZoneSource(client, LAYER)


def test_flood_fetch_queries_layer_and_normalizes():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["params"] = dict(request.url.params)
        feat = {"attributes": {"FLD_ZONE": "AE", "ZONE_SUBTY": "FLOODWAY", "SFHA_TF": "T"}}
        return httpx.Response(200, json={"features": [feat]})

    payload = _source(handler).fetch("29.45,-98.45")
    assert seen["path"] == "/NFHL/MapServer/28/query"
    assert seen["params"]["f"] == "json"
    assert seen["params"]["outFields"] == "FLD_ZONE,ZONE_SUBTY,SFHA_TF"
    assert seen["params"]["returnGeometry"] == "false"
    assert payload["zone_code"] == "AE"
    assert payload["zone_subtype"] == "FLOODWAY"
    assert payload["is_sfha"] is True
    assert payload["is_high_risk"] is True
    assert payload["risk_level"] == "high"
    assert payload["description"] == "Special Flood Hazard Area with base flood elevation"


def test_point_outside_mapped_area_is_not_found():
    src = _source(lambda request: httpx.Response(200, json={"features": []}))
    with pytest.raises(AdapterError) as exc_info:
        src.fetch("29.45,-98.45")
    assert exc_info.value.reason == "not_found"


def test_zone_x_is_low_risk():
    payload = normalize_flood_feature({"attributes": {"FLD_ZONE": "X", "SFHA_TF": "F"}})
    assert payload.is_high_risk is False
    assert payload.is_sfha is False
    assert payload.risk_level == "low"
    assert payload.description == "Minimal flood hazard area"


def test_shaded_x_is_moderate():
    payload = normalize_flood_feature(
        {"attributes": {"FLD_ZONE": "X", "ZONE_SUBTY": "0.2 PCT ANNUAL CHANCE FLOOD HAZARD SHADED"}}
    )
    assert payload.risk_level == "moderate"
    assert payload.is_high_risk is False


def test_blank_zone_defaults_to_x():
    assert normalize_flood_feature({"attributes": {}}).zone_code == "X"


@pytest.mark.parametrize(
    "code,high",
    [
        ("A", True),
        ("AE", True),
        ("ah", True),
        ("A99", True),
        ("VE", True),
        ("X", False),
        ("D", False),
        ("AREA NOT INCLUDED", False),
        ("", False),
        (None, False),
    ],
)
def test_is_high_risk_zone(code, high):
    assert is_high_risk_zone(code) is high


def test_base_zone_and_risk_level():
    assert base_zone("X PROTECTED BY LEVEE") == "X"
    assert risk_level("D") == "undetermined"
    assert risk_level("B") == "moderate"
    assert risk_level("V") == "high"


@pytest.mark.parametrize("error", [ValueError("bad zone"), TypeError("bad zone")])
def test_normalizer_errors_become_bad_body(monkeypatch, error):
    import dealforge_lookup.sources.fema_flood as fema

    def broken(feature):
        raise error

    monkeypatch.setattr(fema, "normalize_flood_feature", broken)
    feat = {"attributes": {"FLD_ZONE": "AE"}}
    src = _source(lambda request: httpx.Response(200, json={"features": [feat]}))
    with pytest.raises(AdapterError) as exc_info:
        src.fetch("29.45,-98.45")
    assert exc_info.value.reason == "bad_body"
    assert exc_info.value.source == "fema_nfhl"
