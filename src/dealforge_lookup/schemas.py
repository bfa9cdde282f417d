from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class GeocodePayload(BaseModel):
    latitude: float
    longitude: float
    formatted_address: str
    zip_code: str = ""
    county: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None


class SuggestedLotRent(BaseModel):
    low: int = 0
    high: int = 0


class FairMarketRentPayload(BaseModel):
    zip_code: str
    county_name: Optional[str] = None
    metro_name: Optional[str] = None
    fiscal_year: int
    efficiency: Optional[float] = None
    one_bedroom: Optional[float] = None
    two_bedroom: Optional[float] = None
    three_bedroom: Optional[float] = None
    four_bedroom: Optional[float] = None
    suggested_lot_rent: SuggestedLotRent = SuggestedLotRent()


class ParcelPayload(BaseModel):
    prop_id: str
    geo_id: Optional[str] = None
    county: str
    fips: Optional[str] = None
    owner_name: Optional[str] = None
    owner_care_of: Optional[str] = None
    situs_address: Optional[str] = None
    situs_city: Optional[str] = None
    situs_state: Optional[str] = "TX"
    situs_zip: Optional[str] = None
    mail_address: Optional[str] = None
    mail_city: Optional[str] = None
    mail_state: Optional[str] = None
    mail_zip: Optional[str] = None
    legal_description: Optional[str] = None
    legal_area: Optional[float] = None
    legal_area_unit: Optional[str] = None
    land_value: Optional[float] = None
    improvement_value: Optional[float] = None
    market_value: Optional[float] = None
    tax_year: Optional[str] = None
    state_land_use: Optional[str] = None
    local_land_use: Optional[str] = None
    year_built: Optional[str] = None
    source_updated_at: Optional[str] = None
    boundary_wkt: Optional[str] = None
    bbox: Optional[List[float]] = None
    centroid: Optional[List[float]] = None
    property_type: Optional[str] = None
    land_use_description: Optional[str] = None


class FloodZonePayload(BaseModel):
    zone_code: str
    zone_subtype: Optional[str] = None
    is_sfha: bool = False
    is_high_risk: bool = False
    risk_level: str = "low"
    description: Optional[str] = None


class AddressLookup(BaseModel):
    """Combined answer for one street address.

    A section is ``None`` only when its lookup failed; the reason is then
    listed under ``errors`` with the domain as key.
    """

    address: str
    key: str
    geocode: GeocodePayload
    parcel: Optional[ParcelPayload] = None
    fmr: Optional[FairMarketRentPayload] = None
    flood_zone: Optional[FloodZonePayload] = None
    sources: Dict[str, str] = Field(default_factory=dict)
    degraded_domains: List[str] = Field(default_factory=list)
    errors: Dict[str, str] = Field(default_factory=dict)

    @property
    def degraded(self) -> bool:
        return bool(self.degraded_domains or self.errors)
