"""Tests for the HTTP geocoder."""
import httpx
import orjson
import pytest

from pricemap.services.cache import TTLCache
from pricemap.services.geocoding import GeocodingError, HTTPGeocoder


def make_geocoder(handler, api_key=None, cache=None) -> HTTPGeocoder:
    return HTTPGeocoder(api_key=api_key, cache=cache, min_interval=0, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_nominatim_lookup_is_cached():
    """Nominatim answers are parsed and served from the cache afterwards."""
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, content=orjson.dumps([{"lat": "48.8566", "lon": "2.3522"}]))

    with TTLCache(ttl=60) as cache:
        geocoder = make_geocoder(handler, cache=cache)
        assert await geocoder.geocode("Paris, France") == (48.8566, 2.3522)
        assert await geocoder.geocode("paris, france") == (48.8566, 2.3522)
        await geocoder.aclose()

    assert len(calls) == 1
    assert calls[0].url.params["format"] == "json"


@pytest.mark.asyncio
async def test_opencage_lookup():
    """OpenCage is used when an API key is set."""
    def handler(request):
        assert request.url.params["key"] == "secret"
        payload = {"results": [{"geometry": {"lat": 51.5, "lng": -0.12}}]}
        return httpx.Response(200, content=orjson.dumps(payload))

    geocoder = make_geocoder(handler, api_key="secret")
    assert await geocoder.geocode("London") == (51.5, -0.12)
    await geocoder.aclose()


@pytest.mark.asyncio
async def test_miss_is_cached():
    """No results raise and the miss is remembered."""
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, content=b"[]")

    with TTLCache(ttl=60) as cache:
        geocoder = make_geocoder(handler, cache=cache)
        with pytest.raises(GeocodingError):
            await geocoder.geocode("Nowhere")
        with pytest.raises(GeocodingError):
            await geocoder.geocode("Nowhere")
        await geocoder.aclose()

    assert len(calls) == 1


@pytest.mark.asyncio
async def test_http_error_status():
    """Non-200 answers raise GeocodingError."""
    geocoder = make_geocoder(lambda request: httpx.Response(500))
    with pytest.raises(GeocodingError):
        await geocoder.geocode("Paris")
    await geocoder.aclose()
