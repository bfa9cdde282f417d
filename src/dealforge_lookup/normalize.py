import re
from typing import Optional, Tuple


_WHITESPACE_RE = re.compile(r"\s+")
_PUNCT_RE = re.compile(r"[^\w\s#]", re.UNICODE)
_ZIP_RE = re.compile(r"^(\d{5})(?:-?\d{4})?$")

_DIRECTIONALS = {
    "NORTH": "N",
    "SOUTH": "S",
    "EAST": "E",
    "WEST": "W",
    "NORTHEAST": "NE",
    "NORTHWEST": "NW",
    "SOUTHEAST": "SE",
    "SOUTHWEST": "SW",
}

_STREET_TYPES = {
    "STREET": "ST",
    "ROAD": "RD",
    "DRIVE": "DR",
    "AVENUE": "AVE",
    "BOULEVARD": "BLVD",
    "LANE": "LN",
    "COURT": "CT",
    "PLACE": "PL",
    "CIRCLE": "CIR",
    "PARKWAY": "PKWY",
    "HIGHWAY": "HWY",
    "TRAIL": "TRL",
    "TERRACE": "TER",
}

POINT_PRECISION = 6


def normalize_address_key(value: Optional[str]) -> str:
    """Canonical cache key for a free-form street address.

    "123 North Main Street, San Antonio" and "123 N. MAIN ST San Antonio"
    produce the same key.
    """

    if value is None:
        return ""
    cleaned = _PUNCT_RE.sub(" ", str(value).upper())
    words = _WHITESPACE_RE.sub(" ", cleaned).strip().split(" ")
    out = []
    for word in words:
        if not word:
            continue
        word = _DIRECTIONALS.get(word, word)
        word = _STREET_TYPES.get(word, word)
        out.append(word)
    return " ".join(out)


def point_key(lat: float, lon: float) -> str:
    lat_f = float(lat)
    lon_f = float(lon)
    if not (-90.0 <= lat_f <= 90.0) or not (-180.0 <= lon_f <= 180.0):
        raise ValueError("point is out of range")
    return f"{lat_f:.{POINT_PRECISION}f},{lon_f:.{POINT_PRECISION}f}"


def parse_point_key(key: str) -> Tuple[float, float]:
    parts = [p.strip() for p in (key or "").split(",")]
    if len(parts) != 2:
        raise ValueError("point must be lat,lon")
    try:
        lat, lon = float(parts[0]), float(parts[1])
    except ValueError:
        raise ValueError("point must be numeric lat,lon")
    point_key(lat, lon)
    return lat, lon


def normalize_zip(value: Optional[str]) -> str:
    cleaned = (value or "").strip()
    m = _ZIP_RE.match(cleaned)
    if not m:
        raise ValueError(f"invalid ZIP code: {value!r}")
    return m.group(1)


def normalize_key(domain: str, raw: str) -> str:
    if domain in ("parcel", "flood_zone"):
        lat, lon = parse_point_key(raw)
        return point_key(lat, lon)
    if domain == "fmr":
        return normalize_zip(raw)
    if domain == "geocode":
        key = normalize_address_key(raw)
        if not key:
            raise ValueError("address is required")
        return key
    return (raw or "").strip()
