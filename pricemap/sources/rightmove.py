"""Rightmove (UK) listing pages."""
import logging
import re
from typing import Optional
from urllib.parse import quote_plus, urljoin

from selectolax.parser import HTMLParser, Node

from pricemap.fetch.client import Fetcher
from pricemap.jobs.run_control import RunControl
from pricemap.parse.models import PropertyRecord
from pricemap.services.geocoding import Geocoder
from pricemap.sources.base import Source

logger = logging.getLogger(__name__)

BASE_URL = "https://www.rightmove.co.uk"

CITIES = [
    "London", "Manchester", "Birmingham", "Liverpool", "Leeds",
    "Glasgow", "Edinburgh", "Bristol", "Cardiff", "Belfast",
    "Newcastle", "Sheffield", "Leicester", "Coventry", "Nottingham",
    "Southampton", "Portsmouth", "Brighton", "Reading", "Oxford",
    "Cambridge", "York", "Bath", "Norwich", "Exeter",
]

DEAL_TYPES = [
    ("property-for-sale", "sale"),
    ("property-to-rent", "rent"),
]

_PRICE_CLEAN = re.compile(r"[^\d.]")
_AREA = re.compile(r"(\d+(?:,\d+)?)\s*(sq\s*ft|sqft|sq\s*m|sqm)", re.IGNORECASE)
_BEDROOMS = re.compile(r"(\d+)\s*bed", re.IGNORECASE)
_BATHROOMS = re.compile(r"(\d+)\s*bath", re.IGNORECASE)
_PROPERTY_ID = re.compile(r"/properties/(\d+)")


def extract_price(text: str) -> float:
    cleaned = _PRICE_CLEAN.sub("", text or "")
    try:
        return float(cleaned)
    except ValueError:
        return 0.0


def extract_area(text: str) -> float:
    """Area in m2 from '1,234 sq ft' / '115 sq m' style text."""
    match = _AREA.search(text or "")
    if not match:
        return 0.0
    area = float(match.group(1).replace(",", ""))
    if "ft" in match.group(2).lower():
        area *= 0.092903
    return area


def extract_int(pattern: re.Pattern, text: str) -> int:
    match = pattern.search(text or "")
    return int(match.group(1)) if match else 0


def extract_id(href: str) -> str:
    match = _PROPERTY_ID.search(href or "")
    return match.group(1) if match else ""


def _text(card: Node, *selectors: str) -> str:
    for selector in selectors:
        node = card.css_first(selector)
        if node is not None:
            text = node.text(strip=True)
            if text:
                return text
    return ""


def _float_attr(card: Node, name: str) -> float:
    value = card.attributes.get(name)
    try:
        return float(value) if value else 0.0
    except ValueError:
        return 0.0


class RightmoveSource(Source):
    """Search result pages for UK cities, for sale and to rent."""

    name = "rightmove"

    def __init__(
        self,
        fetcher: Fetcher,
        geocoder: Optional[Geocoder] = None,
        cities: Optional[list[str]] = None,
        base_url: str = BASE_URL,
    ):
        super().__init__(fetcher, geocoder)
        self.cities = cities or CITIES
        self.base_url = base_url

    async def parse(self, control: RunControl) -> list[PropertyRecord]:
        dimensions = [(city, path) for city in self.cities for path, _ in DEAL_TYPES]

        async def parse_one(dimension: tuple[str, str]) -> list[PropertyRecord]:
            city, path = dimension
            return await self.parse_city(control, city, path)

        records = await self.collect(control, dimensions, parse_one)
        logger.info(f"Parsed {len(records)} properties from Rightmove")
        return records

    def search_url(self, city: str, path: str) -> str:
        return f"{self.base_url}/{path}/find.html?searchLocation={quote_plus(city)}"

    async def parse_city(self, control: RunControl, city: str, path: str) -> list[PropertyRecord]:
        body = await self.fetcher.fetch(self.search_url(city, path), control)
        html = body.decode("utf-8", errors="replace")

        def convert(card) -> Optional[PropertyRecord]:
            record = self.parse_card(card)
            if record is not None and not record.city:
                record.city = city
            return record

        return await self.build_records(control, self.property_cards(html), convert, "UK")

    @staticmethod
    def property_cards(html: str) -> list[Node]:
        if not html:
            return []
        parser = HTMLParser(html)
        cards = parser.css(".l-searchResults .propertyCard")
        if not cards:
            cards = parser.css("[data-test='propertyCard']")
        return cards

    def parse_card(self, card: Node) -> Optional[PropertyRecord]:
        """One search result card, None when it has no price."""
        price = extract_price(_text(card, ".propertyCard-price", "[data-test='property-price']"))
        if price <= 0:
            return None

        record = PropertyRecord(
            source=self.name,
            country="United Kingdom",
            currency="GBP",
            price=price,
        )

        record.address = _text(card, ".propertyCard-address", "[data-test='property-address']")
        if "," in record.address:
            record.city = record.address.split(",")[-1].strip()

        link = card.css_first("a.propertyCard-link") or card.css_first("a[href*='/properties/']")
        href = link.attributes.get("href") if link is not None else None
        if href:
            record.url = href if href.startswith("http") else urljoin(self.base_url, href)
            record.external_id = extract_id(href) or href

        details = _text(card, ".propertyCard-details", "[data-test='property-details']")
        record.area = extract_area(details)
        record.bedrooms = extract_int(_BEDROOMS, details)
        record.bathrooms = extract_int(_BATHROOMS, details)

        property_type = _text(card, ".propertyCard-type", ".property-information span")
        if property_type:
            record.type = property_type

        record.latitude = _float_attr(card, "data-lat")
        record.longitude = _float_attr(card, "data-lng")
        return record
