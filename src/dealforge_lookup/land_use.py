from __future__ import annotations

from typing import Optional


# Texas comptroller state land-use categories as reported by TxGIO.
STATE_LAND_USE_DESCRIPTIONS = {
    "A1": "Single-Family Residential",
    "A2": "Multi-Family Residential",
    "B1": "Apartment Complex",
    "C1": "Vacant Residential Land",
    "D1": "Agricultural Land",
    "E1": "Farm/Ranch Improvements",
    "F1": "Commercial Property",
    "G1": "Minerals/Oil & Gas",
    "J1": "Utilities",
    "L1": "Industrial",
    "M1": "Manufactured Housing",
    "MH": "Mobile Home",
}

LOCAL_LAND_USE_DESCRIPTIONS = {
    "RES": "Residential",
    "COM": "Commercial",
    "AGR": "Agricultural",
    "VAC": "Vacant",
    "MH": "Mobile Home",
    "IND": "Industrial",
}

PROPERTY_TYPES = (
    "singlewide",
    "doublewide",
    "land_only",
    "land_with_home",
    "park",
    "other",
)


def _codes(state_land_use: Optional[str], local_land_use: Optional[str]) -> tuple[str, str]:
    # Counties sometimes repeat the code, e.g. "A1,A1".
    state_code = (state_land_use or "").split(",")[0].strip().upper()
    local_code = (local_land_use or "").strip().upper()
    return state_code, local_code


def map_land_use_to_property_type(
    state_land_use: Optional[str],
    local_land_use: Optional[str],
) -> Optional[str]:
    """Suggest a property type from TxGIO land-use codes, or None if unclear."""

    if not state_land_use and not local_land_use:
        return None
    state_code, local_code = _codes(state_land_use, local_land_use)

    if (
        state_code in ("M1", "MH")
        or local_code in ("MH", "MOBILE")
        or "MANUFACT" in local_code
        or "MFG" in local_code
    ):
        # Width is not in the record; singlewide is the common case.
        return "singlewide"

    if "PARK" in local_code or "MHP" in local_code or "TRAILER" in local_code:
        return "park"

    if (
        state_code in ("C1", "D1")
        or local_code in ("VAC", "VACANT")
        or "AGRI" in local_code
    ):
        return "land_only"

    if state_code in ("A1", "A2") or local_code == "RES":
        return "land_with_home"

    return None


def land_use_description(
    state_land_use: Optional[str],
    local_land_use: Optional[str],
) -> Optional[str]:
    if not state_land_use and not local_land_use:
        return None
    state_code, local_code = _codes(state_land_use, local_land_use)

    desc = STATE_LAND_USE_DESCRIPTIONS.get(state_code)
    if desc:
        return f"{desc} ({local_code})" if local_code else desc
    if local_code:
        return LOCAL_LAND_USE_DESCRIPTIONS.get(local_code, local_code)
    return state_land_use or local_land_use
