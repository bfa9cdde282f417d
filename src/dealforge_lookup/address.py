from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from dealforge_lookup.freshness import utc_now
from dealforge_lookup.normalize import normalize_address_key, normalize_zip, point_key
from dealforge_lookup.orchestrator import LookupFailed, LookupOrchestrator
from dealforge_lookup.schemas import (
    AddressLookup,
    FairMarketRentPayload,
    FloodZonePayload,
    GeocodePayload,
    ParcelPayload,
)


logger = logging.getLogger("dfl.lookup")


def lookup_address(
    orchestrator: LookupOrchestrator,
    address: str,
    now: Optional[datetime] = None,
) -> AddressLookup:
    """Geocode an address, then gather parcel, rents and flood zone for it.

    Geocoding is required; if it fails the whole lookup fails. The other
    sections are best-effort and report their own failures under ``errors``.
    """

    key = normalize_address_key(address)
    if not key:
        raise ValueError("address is required")
    now = now or utc_now()

    geo = orchestrator.resolve("geocode", key, now)
    geocode = GeocodePayload(**geo.payload)
    out = AddressLookup(address=address, key=key, geocode=geocode)
    out.sources["geocode"] = geo.source
    if geo.degraded:
        out.degraded_domains.append("geocode")

    lookups = []
    try:
        point = point_key(geocode.latitude, geocode.longitude)
    except ValueError:
        out.errors["parcel"] = out.errors["flood_zone"] = "bad_key"
    else:
        lookups += [("parcel", point, ParcelPayload), ("flood_zone", point, FloodZonePayload)]
    if not geocode.zip_code:
        out.errors["fmr"] = "geocode returned no ZIP code"
    else:
        try:
            lookups.append(("fmr", normalize_zip(geocode.zip_code), FairMarketRentPayload))
        except ValueError:
            out.errors["fmr"] = "bad_key"

    for domain, sub_key, model in lookups:
        if domain not in orchestrator.sources:
            continue
        try:
            res = orchestrator.resolve(domain, sub_key, now)
        except LookupFailed as exc:
            logger.info("address lookup %r: %s unavailable (%s)", key, domain, exc.reason)
            out.errors[domain] = exc.reason
            continue
        setattr(out, domain, model(**res.payload))
        out.sources[domain] = res.source
        if res.degraded:
            out.degraded_domains.append(domain)
    return out
