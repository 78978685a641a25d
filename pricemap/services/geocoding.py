"""Address geocoding through OpenCage or Nominatim."""
import logging
from typing import Optional, Protocol

import httpx
import orjson

from pricemap.fetch.rate_limit import RateLimiter
from pricemap.services.cache import TTLCache

logger = logging.getLogger(__name__)

OPENCAGE_URL = "https://api.opencagedata.com/geocode/v1/json"
NOMINATIM_URL = "https://nominatim.openstreetmap.org/search"


class GeocodingError(Exception):
    """Address could not be resolved."""


class Geocoder(Protocol):
    async def geocode(self, address: str) -> tuple[float, float]: ...


class HTTPGeocoder:
    """
    Resolves addresses to (lat, lng).
    Uses OpenCage when an API key is set, Nominatim otherwise (max 1 request/s).
    Results, including misses, are cached.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        cache: Optional[TTLCache] = None,
        user_agent: str = "PriceMap/1.0",
        min_interval: float = 1.0,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.cache = cache
        self.user_agent = user_agent
        self.rate_limiter = RateLimiter(min_interval, jitter=0.0)
        self.client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def aclose(self) -> None:
        await self.client.aclose()

    async def geocode(self, address: str) -> tuple[float, float]:
        key = f"geocode:{address.strip().lower()}"
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                if cached == ():
                    raise GeocodingError(f"no results found for address: {address}")
                return cached

        try:
            coords = await self._lookup(address)
        except GeocodingError:
            if self.cache is not None:
                self.cache.set(key, ())
            raise

        if self.cache is not None:
            self.cache.set(key, coords)
        return coords

    async def _lookup(self, address: str) -> tuple[float, float]:
        await self.rate_limiter.acquire()
        if self.api_key:
            params = {"q": address, "key": self.api_key, "limit": 1}
            url = OPENCAGE_URL
        else:
            params = {"q": address, "format": "json", "limit": 1}
            url = NOMINATIM_URL

        try:
            response = await self.client.get(url, params=params, headers={"User-Agent": self.user_agent})
        except httpx.HTTPError as e:
            raise GeocodingError(f"failed to geocode {address!r}: {e}") from e

        if response.status_code != 200:
            raise GeocodingError(f"geocoding API returned status {response.status_code}")

        try:
            payload = orjson.loads(response.content)
            if self.api_key:
                results = payload.get("results") or []
                if results:
                    geometry = results[0]["geometry"]
                    return float(geometry["lat"]), float(geometry["lng"])
            elif payload:
                return float(payload[0]["lat"]), float(payload[0]["lon"])
        except (orjson.JSONDecodeError, KeyError, TypeError, ValueError, AttributeError) as e:
            raise GeocodingError(f"unreadable geocoding response for {address!r}: {e}") from e

        raise GeocodingError(f"no results found for address: {address}")
