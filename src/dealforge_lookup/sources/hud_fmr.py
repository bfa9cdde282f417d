from __future__ import annotations

import math
from typing import Any, Dict, Optional

import httpx

from dealforge_lookup.normalize import normalize_zip
from dealforge_lookup.schemas import FairMarketRentPayload, SuggestedLotRent
from dealforge_lookup.sources.base import PARSE_ERRORS, LookupSource
from dealforge_lookup.sources.http import get_json


# Lot rent is estimated as 30-40% of the two-bedroom FMR.
LOT_RENT_LOW_RATIO = 0.30
LOT_RENT_HIGH_RATIO = 0.40

_RENT_FIELDS = (
    ("efficiency", "Efficiency", "fmr_0"),
    ("one_bedroom", "One-Bedroom", "fmr_1"),
    ("two_bedroom", "Two-Bedroom", "fmr_2"),
    ("three_bedroom", "Three-Bedroom", "fmr_3"),
    ("four_bedroom", "Four-Bedroom", "fmr_4"),
)


def _rent(row: Dict[str, Any], *names: str) -> Optional[float]:
    for name in names:
        v = row.get(name)
        if v in (None, ""):
            continue
        try:
            value = float(str(v).replace(",", "").replace("$", ""))
        except ValueError:
            continue
        if not math.isfinite(value):
            continue
        # HUD uses 0 for "not published".
        return value or None
    return None


def _as_year(*values: object) -> Optional[int]:
    for v in values:
        try:
            year = int(str(v).strip()[:4])
        except (TypeError, ValueError):
            continue
        if year > 1900:
            return year
    return None


def suggested_lot_rent(two_bedroom: Optional[float]) -> SuggestedLotRent:
    base = two_bedroom or 0
    return SuggestedLotRent(
        low=int(round(base * LOT_RENT_LOW_RATIO)),
        high=int(round(base * LOT_RENT_HIGH_RATIO)),
    )


def normalize_fmr_response(zip_code: str, data: Dict[str, Any]) -> Optional[FairMarketRentPayload]:
    body = data.get("data")
    if not isinstance(body, dict):
        return None
    basic = body.get("basicdata")
    if isinstance(basic, list):
        rows = [r for r in basic if isinstance(r, dict)]
        match = [r for r in rows if str(r.get("zip_code") or "") == zip_code]
        basic = (match or rows or [None])[0]
    if not isinstance(basic, dict):
        return None

    # ZIP-level (small area) rents win over metro-level ones when published.
    rents_row = basic
    small = body.get("smallarea_data")
    if (
        isinstance(small, dict)
        and small.get("zip_code")
        and str(basic.get("smallarea_status") or "") == "1"
    ):
        rents_row = small

    rents = {field: _rent(rents_row, *names) for field, *names in _RENT_FIELDS}
    year = _as_year(basic.get("year"), basic.get("fiscal_year"), body.get("year"))
    if year is None:
        return None
    return FairMarketRentPayload(
        zip_code=zip_code,
        county_name=basic.get("county_name") or basic.get("counties_name") or None,
        metro_name=basic.get("metro_name") or None,
        fiscal_year=year,
        suggested_lot_rent=suggested_lot_rent(rents["two_bedroom"]),
        **rents,
    )


class HudFmrSource(LookupSource):
    """HUD Fair Market Rents by ZIP code."""

    domain = "fmr"
    source_name = "hud"

    def __init__(self, client: httpx.Client, base_url: str, api_key: Optional[str]) -> None:
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key

    def fetch(self, key: str) -> Dict[str, Any]:
        if not self.api_key:
            raise self.fail("missing_credentials", detail="HUD_API_KEY is not set")
        try:
            zip_code = normalize_zip(key)
        except ValueError as exc:
            raise self.fail("bad_key", detail=str(exc)) from exc
        data = get_json(
            self.client,
            f"{self.base_url}/{zip_code}",
            source=self.source_name,
            headers={"Authorization": f"Bearer {self.api_key}"},
        )
        try:
            payload = normalize_fmr_response(zip_code, data)
        except PARSE_ERRORS as exc:
            raise self.fail("bad_body", detail=str(exc)) from exc
        if payload is None:
            raise self.fail("bad_body", detail="missing basicdata")
        return payload.model_dump()
