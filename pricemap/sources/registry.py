"""Source registry and factory."""
import logging
from collections.abc import Callable, Iterable
from typing import Optional

from pricemap.fetch.client import Fetcher
from pricemap.services.geocoding import Geocoder
from pricemap.sources.base import Source
from pricemap.sources.opendata import PORTALS, OpenDataSource
from pricemap.sources.rightmove import RightmoveSource

logger = logging.getLogger(__name__)

FetcherFactory = Callable[[], Fetcher]
SourceBuilder = Callable[[Fetcher, Optional[Geocoder]], Source]


def _portal_builder(portal_name: str) -> SourceBuilder:
    def build(fetcher: Fetcher, geocoder: Optional[Geocoder]) -> Source:
        return OpenDataSource(PORTALS[portal_name], fetcher, geocoder)

    return build


class SourceRegistry:
    """Maps source names to builders. Open-data portals first, they rarely block."""

    def __init__(self, registrations: Optional[dict[str, SourceBuilder]] = None):
        builtins: dict[str, SourceBuilder] = {name: _portal_builder(name) for name in PORTALS}
        builtins["rightmove"] = lambda fetcher, geocoder: RightmoveSource(fetcher, geocoder)
        if registrations:
            builtins.update(registrations)
        self._registrations = builtins

    def register(self, name: str, builder: SourceBuilder) -> None:
        self._registrations[name.strip().lower()] = builder

    def names(self) -> list[str]:
        return list(self._registrations)

    def build(
        self,
        fetcher_factory: FetcherFactory,
        geocoder: Optional[Geocoder] = None,
        names: Optional[Iterable[str]] = None,
    ) -> list[Source]:
        """
        Instantiate sources, each with its own fetcher.
        Raises ValueError for unknown names.
        """
        selected = [n.strip().lower() for n in names] if names else self.names()
        unknown = [n for n in selected if n not in self._registrations]
        if unknown:
            allowed = ", ".join(sorted(self._registrations))
            raise ValueError(f"Unknown sources: {', '.join(unknown)}. Allowed: {allowed}.")

        sources = [self._registrations[name](fetcher_factory(), geocoder) for name in selected]
        logger.info(f"Registered {len(sources)} sources: {', '.join(s.name for s in sources)}")
        return sources
