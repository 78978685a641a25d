"""Tests for record validation and normalization."""
import pytest

from pricemap.parse.validation import (
    RecordValidationError,
    is_valid,
    normalize_property,
    normalize_type,
    validate_property,
)
from tests.helpers import make_record


def test_valid_record():
    """A complete record passes."""
    validate_property(make_record())
    assert is_valid(make_record())


@pytest.mark.parametrize(
    "fields, field_name",
    [
        ({"price": 0}, "price"),
        ({"latitude": 0, "longitude": 0, "address": ""}, "location"),
        ({"source": ""}, "source"),
        ({"external_id": ""}, "external_id"),
    ],
)
def test_invalid_records(fields, field_name):
    """Missing mandatory fields raise with the field name."""
    record = make_record(**fields)
    with pytest.raises(RecordValidationError) as exc_info:
        validate_property(record)
    assert exc_info.value.field == field_name
    assert not is_valid(record)


def test_address_without_coordinates_is_valid():
    """An address is enough of a location signal."""
    assert is_valid(make_record(latitude=0, longitude=0))


def test_normalize_type():
    """Free-form types map onto apartment/house/room."""
    assert normalize_type("Flat") == "apartment"
    assert normalize_type("Detached house") == "house"
    assert normalize_type("Bedroom") == "room"
    assert normalize_type("") == "apartment"


def test_normalize_property_trims():
    """Whitespace is collapsed and the type normalized."""
    record = make_record(city="  New   York ", address=" 1  Main St ", type="Villa", currency="")
    normalize_property(record)
    assert record.city == "New York"
    assert record.address == "1 Main St"
    assert record.type == "house"
    assert record.currency == "USD"
