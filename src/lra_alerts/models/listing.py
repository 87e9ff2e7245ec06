"""
Listing Data Models

Pydantic models for the canonical LRA property record.
"""
import math
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


# Raw ArcGIS attributes carried through to the stored document and CSV export
RAW_PASSTHROUGH_FIELDS = (
    "OBJECTID", "Shape", "GDB_GEOMATTR_DATA",
    "AddrNum", "ADDRESS", "LowAddrNum", "LowAddrSuf", "HighAddrNum", "HighAddrSuf",
    "StPreDir", "StName", "StType", "StSufDir",
    "Handle", "CityBlock", "Parcel", "ParcelId", "GUID",
    "WARD", "NEIGHBORHOOD_NUM", "ZipCode", "SQFT",
    "Underground_Storage", "Irregular_Lot", "Description", "Acres", "Status",
    "Stories", "Usage", "Environmental", "Deed_Restriction",
    "Record_No", "Class", "Field", "LRA_PRICING", "Featured", "AssessorsTotal",
    "Frontage", "NbrOfUnits", "LegalDescription", "AssessorsNbrhdNum", "LOCATION",
    "PublicNotice", "PropertyType", "BuriedMaterials", "SideLotEligible",
)

CANONICAL_FIELDS = (
    "id", "parcelId", "address", "neighborhood", "ward", "zip", "sqft", "usage", "status",
)


class SubscriptionType(str, Enum):
    """Dimensions a user can subscribe to."""

    ZIP = "zip"
    PARCEL = "parcel"
    WARD = "ward"
    NEIGHBORHOOD = "neighborhood"


def stringify_value(value: Any) -> Optional[str]:
    """
    Render a field value as the string used for matching and selection menus.

    Integral floats drop their fraction (5.0 -> "5"); blanks become None.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        if value.is_integer():
            return str(int(value))
    text = str(value).strip()
    return text or None


class Listing(BaseModel):
    """
    Canonical LRA property record.

    Attributes:
        id: Stable identifier (parcel id, else OBJECTID, else generated token)
        parcel_id: Source parcel identifier
        address: Street address as published
        neighborhood: Neighborhood number or name
        ward: City ward
        zip: 5-digit ZIP code
        sqft: Lot/building square footage
        usage: Usage or property type
        status: Inventory status (Available, PROPNS, ...)
        raw: Raw passthrough attributes from the source layer
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = Field(..., description="Stable listing identifier")
    parcel_id: Optional[str] = Field(None, alias="parcelId", description="Source parcel id")
    address: Optional[str] = Field(None, description="Street address")
    neighborhood: Optional[str] = Field(None, description="Neighborhood")
    ward: Optional[float] = Field(None, description="City ward")
    zip: Optional[str] = Field(None, description="5-digit ZIP code")
    sqft: Optional[float] = Field(None, description="Square footage")
    usage: Optional[str] = Field(None, description="Usage")
    status: Optional[str] = Field(None, description="Inventory status")
    raw: Dict[str, Any] = Field(default_factory=dict, description="Raw passthrough fields")

    @property
    def property_type(self) -> Optional[str]:
        return stringify_value(self.raw.get("PropertyType"))

    @property
    def has_generated_id(self) -> bool:
        """True when neither a parcel id nor an object id was available."""
        return self.id.startswith("gen-")

    def canonical_fields(self) -> Dict[str, Any]:
        """Canonical fields keyed by their document (camelCase) names."""
        return {
            "id": self.id,
            "parcelId": self.parcel_id,
            "address": self.address,
            "neighborhood": self.neighborhood,
            "ward": self.ward,
            "zip": self.zip,
            "sqft": self.sqft,
            "usage": self.usage,
            "status": self.status,
        }

    def to_record(self) -> Dict[str, Any]:
        """
        Flatten raw passthrough and canonical fields into one mapping.

        This is the full normalized field set: it is what gets fingerprinted,
        stored as the listing document and written to the CSV export.
        """
        record = {name: self.raw.get(name) for name in RAW_PASSTHROUGH_FIELDS}
        record.update(self.canonical_fields())
        return record

    def dimension_value(self, subscription_type: SubscriptionType) -> Optional[str]:
        """Value of this listing for a subscription dimension, or None."""
        values = {
            SubscriptionType.ZIP: self.zip,
            SubscriptionType.PARCEL: self.parcel_id,
            SubscriptionType.WARD: self.ward,
            SubscriptionType.NEIGHBORHOOD: self.neighborhood,
        }
        return stringify_value(values[SubscriptionType(subscription_type)])

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "Listing":
        """Rebuild a listing from a stored listing document."""
        return cls(
            id=document["id"],
            parcel_id=document.get("parcelId"),
            address=document.get("address"),
            neighborhood=document.get("neighborhood"),
            ward=document.get("ward"),
            zip=document.get("zip"),
            sqft=document.get("sqft"),
            usage=document.get("usage"),
            status=document.get("status"),
            raw={name: document.get(name) for name in RAW_PASSTHROUGH_FIELDS},
        )
