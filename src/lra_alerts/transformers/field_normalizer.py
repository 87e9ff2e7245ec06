"""
Field Normalization Transformer

Maps heterogeneous ArcGIS attribute schemas onto the canonical Listing shape.
"""
import math
import re
import uuid
from typing import Any, Dict, Mapping, Optional, Sequence

from src.lra_alerts.models.listing import Listing, RAW_PASSTHROUGH_FIELDS
from src.lra_alerts.utils.logger import get_logger

logger = get_logger(__name__)


# Canonical field -> candidate source attribute names, highest priority first
FIELD_ALIASES: Dict[str, Sequence[str]] = {
    "parcel_id": ("ParcelId", "PARCELID", "Parcel", "PARCEL"),
    "address": ("ADDRESS", "Address", "AddrNum", "Addr", "AddressNum", "LOCATION"),
    "ward": ("WARD", "Ward", "Wards"),
    "zip": ("ZipCode", "ZIPCODE", "Zip", "ZIP", "PostalCode", "POSTALCODE"),
    "sqft": ("SQFT", "SqFt", "SquareFeet", "Square_Footage"),
    "usage": ("Usage", "PropertyType", "PROPERTYTYPE", "Use", "Zoning"),
    "status": ("Status", "STATUS", "State", "Condition"),
    "neighborhood": ("NEIGHBORHOOD_NUM", "Neighborhood", "NEIGHBORHOOD", "NeighborhoodName"),
}

OBJECT_ID_ALIASES: Sequence[str] = ("OBJECTID", "ObjectId")

_NON_DIGITS = re.compile(r"\D+")


def _is_absent(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def pick_attr(attrs: Optional[Mapping[str, Any]], aliases: Sequence[str]) -> Any:
    """Return the first present (non-null, non-blank) attribute among `aliases`."""
    if not attrs:
        return None
    for alias in aliases:
        value = attrs.get(alias)
        if not _is_absent(value):
            return value
    return None


def coerce_number(value: Any) -> Optional[float]:
    """
    Coerce a source value to a finite number.

    Numbers pass through, strings are parsed, anything else becomes None.
    Never raises.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip().replace(",", ""))
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def normalize_zip(value: Any) -> Optional[str]:
    """
    Normalize a ZIP code to exactly 5 digits.

    "63104-1234" -> "63104", "104" -> "00104", "" / "N/A" -> None.
    """
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    digits = _NON_DIGITS.sub("", str(value).strip())
    if not digits:
        return None
    return digits[:5].zfill(5)


def _text(value: Any) -> Optional[str]:
    if _is_absent(value):
        return None
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def generate_listing_id() -> str:
    """Unpredictable id for records the source could not identify."""
    return f"gen-{uuid.uuid4().hex}"


class FieldNormalizer:
    """
    Normalizes raw ArcGIS attribute maps into Listing instances.

    Malformed fields degrade to None; a record is never rejected.
    """

    def __init__(self, aliases: Optional[Mapping[str, Sequence[str]]] = None):
        """
        Initialize the normalizer.

        Args:
            aliases: Override or extend FIELD_ALIASES (per canonical field)
        """
        merged = dict(FIELD_ALIASES)
        if aliases:
            merged.update({field: tuple(names) for field, names in aliases.items()})
        self.aliases = merged

    def derive_id(self, attrs: Mapping[str, Any]) -> str:
        parcel = _text(pick_attr(attrs, self.aliases["parcel_id"]))
        if parcel:
            return parcel
        object_id = _text(pick_attr(attrs, OBJECT_ID_ALIASES))
        if object_id:
            return object_id
        listing_id = generate_listing_id()
        logger.debug("listing_id_generated", listing_id=listing_id)
        return listing_id

    def normalize(self, attrs: Optional[Mapping[str, Any]]) -> Listing:
        """
        Normalize one raw attribute map.

        Args:
            attrs: Raw ArcGIS feature attributes (may be None, sparse or not a mapping)

        Returns:
            Canonical Listing
        """
        if not isinstance(attrs, Mapping):
            attrs = {}
        raw = {name: attrs.get(name) for name in RAW_PASSTHROUGH_FIELDS}
        if raw["OBJECTID"] is None and attrs.get("ObjectId") is not None:
            raw["OBJECTID"] = attrs.get("ObjectId")

        return Listing(
            id=self.derive_id(attrs),
            parcel_id=_text(pick_attr(attrs, self.aliases["parcel_id"])),
            address=_text(pick_attr(attrs, self.aliases["address"])),
            neighborhood=_text(pick_attr(attrs, self.aliases["neighborhood"])),
            ward=coerce_number(pick_attr(attrs, self.aliases["ward"])),
            zip=normalize_zip(pick_attr(attrs, self.aliases["zip"])),
            sqft=coerce_number(pick_attr(attrs, self.aliases["sqft"])),
            usage=_text(pick_attr(attrs, self.aliases["usage"])),
            status=_text(pick_attr(attrs, self.aliases["status"])),
            raw=raw,
        )
