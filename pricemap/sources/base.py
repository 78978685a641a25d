"""Abstract base class for listing sources.

A Source turns one external origin (a listing site, an open-data portal) into
canonical PropertyRecord objects. Sources own a Fetcher for their network I/O
and are run by the ScrapeRunner, which does not care which kind of source it
is running.

Example usage:
    class MySource(Source):
        name = "my_source"

        async def parse(self, control):
            payload = await self.fetcher.fetch("https://example.com/api", control)
            ...
            return records
"""
import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Iterable, Optional, TypeVar

from pricemap.fetch.client import Fetcher
from pricemap.jobs.run_control import RunControl, ScrapeCancelled
from pricemap.parse.models import PropertyRecord
from pricemap.parse.validation import is_valid, normalize_property
from pricemap.services.geocoding import Geocoder, GeocodingError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Source(ABC):
    """Base class for every listing source.

    Attributes:
        name: Unique identifier, also stored on every record as `source`.
        fetcher: Fetcher used for every request of this source.
        geocoder: Optional geocoder used when a listing has an address but no coordinates.
    """

    name: str

    def __init__(self, fetcher: Fetcher, geocoder: Optional[Geocoder] = None):
        self.fetcher = fetcher
        self.geocoder = geocoder

    @abstractmethod
    async def parse(self, control: RunControl) -> list[PropertyRecord]:
        """Fetch and convert every listing of this source.

        Raises:
            ScrapeCancelled: when `control` stops; its `records` carries the
                complete records gathered so far.
            FetchError: when the source cannot be reached at all.
        """

    async def collect(
        self,
        control: RunControl,
        dimensions: Iterable[T],
        parse_one: Callable[[T], Awaitable[list[PropertyRecord]]],
    ) -> list[PropertyRecord]:
        """
        Run `parse_one` for every sub-dimension (city, deal type...).
        A failing dimension is logged and skipped; cancellation stops the loop
        and hands back what was already collected.
        """
        records: list[PropertyRecord] = []
        for dimension in dimensions:
            try:
                control.raise_if_stopped()
                records.extend(await parse_one(dimension))
            except ScrapeCancelled as e:
                e.records = records + e.records
                raise
            except Exception as e:
                logger.warning(f"Error parsing {dimension} from {self.name}: {e}")
                continue
        return records

    async def build_records(
        self,
        control: RunControl,
        items: Iterable[T],
        convert: Callable[[T], Optional[PropertyRecord]],
        suffix: str = "",
    ) -> list[PropertyRecord]:
        """
        Convert raw items one at a time, geocoding as needed, then finalize.
        Stops at the first item seen after `control` stops; the raised
        ScrapeCancelled carries the finalized records converted before it.
        """
        candidates: list[Optional[PropertyRecord]] = []
        try:
            for item in items:
                control.raise_if_stopped()
                record = convert(item)
                if record is not None:
                    await self.locate(record, suffix)
                candidates.append(record)
        except ScrapeCancelled as e:
            e.records = self.finalize(candidates)
            raise
        return self.finalize(candidates)

    async def locate(self, record: PropertyRecord, suffix: str = "") -> None:
        """Fill missing coordinates from the address, if a geocoder is available."""
        if record.has_coordinates or not record.address or self.geocoder is None:
            return
        query = f"{record.address}, {suffix}" if suffix else record.address
        try:
            record.latitude, record.longitude = await self.geocoder.geocode(query)
        except GeocodingError as e:
            logger.debug(f"Geocoding failed for {query!r}: {e}")

    def finalize(self, candidates: Iterable[Optional[PropertyRecord]]) -> list[PropertyRecord]:
        """Normalize candidates and drop the ones missing mandatory fields."""
        kept = []
        dropped = 0
        for record in candidates:
            if record is None:
                dropped += 1
                continue
            normalize_property(record)
            if is_valid(record):
                kept.append(record)
            else:
                dropped += 1
        if dropped:
            logger.debug(f"{self.name}: dropped {dropped} incomplete listings")
        return kept
