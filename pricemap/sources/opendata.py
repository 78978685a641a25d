"""Government open-data portal sources."""
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

import orjson

from pricemap.fetch.client import Fetcher
from pricemap.jobs.run_control import RunControl
from pricemap.parse.models import PropertyRecord
from pricemap.services.geocoding import Geocoder
from pricemap.sources.base import Source

logger = logging.getLogger(__name__)

SQFT_TO_SQM = 0.092903

DEFAULT_FIELDS = {
    "id": "id",
    "address": "address",
    "price": "price",
    "latitude": "latitude",
    "longitude": "longitude",
    "area": "area",
    "rooms": "rooms",
    "type": "type",
}


@dataclass(frozen=True)
class Portal:
    """Where a portal's dataset lives and how its rows map onto PropertyRecord."""

    name: str
    url: str
    country: str
    city: str
    currency: str = "USD"
    records_path: tuple[str, ...] = ("results",)
    fields: Mapping[str, str] = field(default_factory=lambda: dict(DEFAULT_FIELDS))
    id_fields: tuple[str, ...] = ("id",)
    price_per_sqm: bool = False
    area_factor: float = 1.0


PORTALS: dict[str, Portal] = {
    "nyc_opendata": Portal(
        name="nyc_opendata",
        url="https://data.cityofnewyork.us/resource/22z6-9x9z.json?$limit=5000&$where=sale_price>0",
        country="United States",
        city="New York",
        currency="USD",
        records_path=(),
        fields={
            "address": "address",
            "district": "neighborhood",
            "price": "sale_price",
            "latitude": "latitude",
            "longitude": "longitude",
            "area": "gross_square_feet",
            "rooms": "residential_units",
            "year_built": "year_built",
        },
        id_fields=("address", "sale_date"),
        area_factor=SQFT_TO_SQM,
    ),
    "berlin_opendata": Portal(
        name="berlin_opendata",
        url="https://daten.berlin.de/api/3/action/datastore_search?resource_id=real_estate_prices&limit=5000",
        country="Germany",
        city="Berlin",
        currency="EUR",
        records_path=("result", "records"),
        fields={
            "address": "address",
            "district": "district",
            "price": "price_per_sqm",
            "latitude": "latitude",
            "longitude": "longitude",
            "area": "area_sqm",
            "rooms": "rooms",
        },
        id_fields=("district", "address"),
        price_per_sqm=True,
    ),
    "tokyo_opendata": Portal(
        name="tokyo_opendata",
        url="https://portal.data.metro.tokyo.lg.jp/api/3/action/datastore_search?resource_id=real_estate_prices&limit=5000",
        country="Japan",
        city="Tokyo",
        currency="JPY",
        records_path=("result", "records"),
        fields={
            "address": "address",
            "district": "ward",
            "price": "price",
            "latitude": "latitude",
            "longitude": "longitude",
            "area": "area",
            "type": "type",
        },
        id_fields=("_id",),
    ),
    "sydney_opendata": Portal(
        name="sydney_opendata",
        url="https://data.nsw.gov.au/api/3/action/datastore_search?resource_id=property_sales&limit=5000",
        country="Australia",
        city="Sydney",
        currency="AUD",
        records_path=("result", "records"),
        fields={
            "address": "address",
            "district": "suburb",
            "price": "purchase_price",
            "latitude": "latitude",
            "longitude": "longitude",
            "area": "area",
            "type": "property_type",
        },
        id_fields=("property_id", "contract_date"),
    ),
}


def _number(value: Any) -> float:
    """Best-effort float from JSON numbers or numeric strings like '1,250,000'."""
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).replace(",", "").replace("$", "").strip())
    except ValueError:
        return 0.0


class OpenDataSource(Source):
    """Consumes one JSON dataset of a government open-data portal."""

    def __init__(self, portal: Portal, fetcher: Fetcher, geocoder: Optional[Geocoder] = None):
        super().__init__(fetcher, geocoder)
        self.portal = portal
        self.name = portal.name

    async def parse(self, control: RunControl) -> list[PropertyRecord]:
        body = await self.fetcher.fetch(self.portal.url, control)
        try:
            payload = orjson.loads(body)
        except orjson.JSONDecodeError as e:
            raise ValueError(f"failed to decode {self.name} data: {e}") from e

        rows = self.extract_rows(payload)
        records = await self.build_records(
            control, rows, self.to_record, f"{self.portal.city}, {self.portal.country}"
        )
        logger.info(f"Parsed {len(records)} properties from {self.name}")
        return records

    def extract_rows(self, payload: Any) -> list[dict]:
        """Walk `records_path` down to the list of rows."""
        node = payload
        for key in self.portal.records_path:
            if not isinstance(node, dict):
                return []
            node = node.get(key)
        if not isinstance(node, list):
            return []
        return [row for row in node if isinstance(row, dict)]

    def to_record(self, row: dict) -> Optional[PropertyRecord]:
        """Map one dataset row, or None when it has no usable price or identity."""
        fields = self.portal.fields

        def get(name: str) -> Any:
            key = fields.get(name)
            return row.get(key) if key else None

        price = _number(get("price"))
        area = _number(get("area")) * self.portal.area_factor
        if self.portal.price_per_sqm:
            price *= area
        if price <= 0:
            return None

        id_parts = [str(row.get(key, "")).strip() for key in self.portal.id_fields]
        if not any(id_parts):
            return None

        return PropertyRecord(
            source=self.name,
            external_id=f"{self.name}_" + "_".join(id_parts),
            country=self.portal.country,
            city=self.portal.city,
            district=str(get("district") or ""),
            address=str(get("address") or ""),
            latitude=_number(get("latitude")),
            longitude=_number(get("longitude")),
            price=price,
            currency=self.portal.currency,
            area=area,
            rooms=int(_number(get("rooms"))),
            year_built=int(_number(get("year_built"))),
            type=str(get("type") or "apartment"),
        )
