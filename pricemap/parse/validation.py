"""Validation and normalization of canonical records."""
import logging

from pricemap.parse.models import PropertyRecord

logger = logging.getLogger(__name__)

_TYPE_ALIASES = {
    "flat": "apartment",
    "apartment": "apartment",
    "apt": "apartment",
    "house": "house",
    "home": "house",
    "villa": "house",
    "room": "room",
    "bedroom": "room",
}


class RecordValidationError(ValueError):
    """A record is missing a mandatory field."""

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


def validate_property(record: PropertyRecord) -> None:
    """Raise RecordValidationError if a mandatory field is missing."""
    if record.price <= 0:
        raise RecordValidationError("price", "price must be greater than 0")
    if not record.has_coordinates and not record.address:
        raise RecordValidationError("location", "latitude/longitude or address required")
    if not record.source:
        raise RecordValidationError("source", "source is required")
    if not record.external_id:
        raise RecordValidationError("external_id", "external_id is required")


def is_valid(record: PropertyRecord) -> bool:
    """Check a record without raising."""
    try:
        validate_property(record)
    except RecordValidationError as e:
        logger.debug(f"Dropping {record.source}/{record.external_id or '?'}: {e}")
        return False
    return True


def normalize_type(value: str) -> str:
    """Map free-form property types onto apartment/house/room."""
    lowered = (value or "").strip().lower()
    if lowered in _TYPE_ALIASES:
        return _TYPE_ALIASES[lowered]
    for needle, canonical in (("apartment", "apartment"), ("flat", "apartment"), ("house", "house"), ("room", "room")):
        if needle in lowered:
            return canonical
    return lowered or "apartment"


def normalize_property(record: PropertyRecord) -> PropertyRecord:
    """Trim strings and fill defaults in place."""
    record.city = " ".join(record.city.split())
    record.country = " ".join(record.country.split())
    record.address = " ".join(record.address.split())
    record.type = normalize_type(record.type)
    if not record.currency:
        record.currency = "USD"
    return record
