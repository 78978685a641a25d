"""Tests for the fetcher: retries, backoff, rate limiting and rotation."""
import httpx
import pytest

from pricemap.fetch.client import Fetcher, is_retryable_status
from pricemap.fetch.errors import FetchStatusError, RetriesExhaustedError
from pricemap.fetch.proxy_pool import NoWorkingProxiesError, ProxyPool
from pricemap.jobs.run_control import ScrapeCancelled
from tests.helpers import RecordingControl

URL = "https://example.com/listings"


class FakeCircuit:
    def __init__(self):
        self.rotations = 0

    async def rotate_circuit(self, control=None):
        self.rotations += 1


def make_fetcher(handler, **kwargs) -> Fetcher:
    options = dict(rate_limit_delay=0.0, rate_limit_jitter=0.0, max_retries=2, retry_delay=1.0)
    options.update(kwargs)
    return Fetcher(transport=httpx.MockTransport(handler), **options)


def test_is_retryable_status():
    """429 and 5xx are retryable, other errors are not."""
    assert is_retryable_status(429)
    assert is_retryable_status(500)
    assert is_retryable_status(503)
    assert not is_retryable_status(404)
    assert not is_retryable_status(403)


@pytest.mark.asyncio
async def test_fetch_returns_body(control):
    """200 returns the body with browser headers."""
    seen = []

    def handler(request):
        seen.append(request.headers["User-Agent"])
        return httpx.Response(200, content=b"hello")

    fetcher = make_fetcher(handler)
    assert await fetcher.fetch(URL, control) == b"hello"
    assert seen and seen[0].startswith("Mozilla/5.0")
    assert fetcher.request_count == 1
    await fetcher.aclose()


@pytest.mark.asyncio
async def test_permanent_503_exhausts_retries(control):
    """max_retries=2 against a permanent 503 makes exactly 3 attempts."""
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(503)

    fetcher = make_fetcher(handler, max_retries=2)
    with pytest.raises(RetriesExhaustedError) as exc_info:
        await fetcher.fetch(URL, control)

    assert len(calls) == 3
    assert exc_info.value.attempts == 3
    assert "503" in str(exc_info.value.last_error)
    assert fetcher.request_count == 1


@pytest.mark.asyncio
async def test_backoff_delay_doubles(control):
    """Waits between attempts are retry_delay * 2**attempt."""
    fetcher = make_fetcher(lambda request: httpx.Response(500), max_retries=3, retry_delay=0.5)
    with pytest.raises(RetriesExhaustedError):
        await fetcher.fetch(URL, control)

    assert control.sleeps == [0.5, 1.0, 2.0]


@pytest.mark.asyncio
async def test_retry_then_success(control):
    """A 429 followed by a 200 returns the body after one wait."""
    responses = iter([httpx.Response(429), httpx.Response(200, content=b"ok")])
    fetcher = make_fetcher(lambda request: next(responses))

    assert await fetcher.fetch(URL, control) == b"ok"
    assert control.sleeps == [1.0]


@pytest.mark.asyncio
async def test_transport_error_is_retried(control):
    """Connection errors are retried like 5xx."""
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) == 1:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, content=b"ok")

    fetcher = make_fetcher(handler)
    assert await fetcher.fetch(URL, control) == b"ok"
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_fatal_status_not_retried(control):
    """404 fails at once without waiting."""
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(404)

    fetcher = make_fetcher(handler)
    with pytest.raises(FetchStatusError) as exc_info:
        await fetcher.fetch(URL, control)

    assert exc_info.value.status_code == 404
    assert len(calls) == 1
    assert control.sleeps == []


@pytest.mark.asyncio
async def test_rate_limit_spaces_requests(control):
    """Every request after the first waits within [delay, delay + jitter]."""
    fetcher = make_fetcher(lambda request: httpx.Response(200), rate_limit_delay=1.0, rate_limit_jitter=0.5)
    for _ in range(3):
        await fetcher.fetch(URL, control)

    assert len(control.sleeps) == 2
    assert all(1.0 <= delay <= 1.5 for delay in control.sleeps)
    assert fetcher.request_count == 3


@pytest.mark.asyncio
async def test_rotation_every_ten_requests(control):
    """The circuit rotates at requests 10 and 20, never on the first one."""
    circuit = FakeCircuit()
    fetcher = make_fetcher(lambda request: httpx.Response(200), circuit=circuit)

    await fetcher.fetch(URL, control)
    assert circuit.rotations == 0

    for _ in range(24):
        await fetcher.fetch(URL, control)
    assert circuit.rotations == 2


@pytest.mark.asyncio
async def test_rotation_on_late_attempts(control):
    """Attempts after the second come back with a new identity."""
    circuit = FakeCircuit()
    responses = iter([httpx.Response(503)] * 3 + [httpx.Response(200)])
    fetcher = make_fetcher(lambda request: next(responses), circuit=circuit, max_retries=3)

    await fetcher.fetch(URL, control)
    assert circuit.rotations == 2


@pytest.mark.asyncio
async def test_cancelled_before_fetch():
    """A stopped run raises ScrapeCancelled without sending anything."""
    calls = []
    control = RecordingControl()
    control.cancel("shutdown")

    fetcher = make_fetcher(lambda request: calls.append(request) or httpx.Response(200))
    with pytest.raises(ScrapeCancelled):
        await fetcher.fetch(URL, control)
    assert calls == []


@pytest.mark.asyncio
async def test_cancelled_during_backoff():
    """Cancellation during a backoff wait stops further attempts."""
    calls = []
    control = RecordingControl(cancel_on_sleep=True)

    def handler(request):
        calls.append(request)
        return httpx.Response(503)

    fetcher = make_fetcher(handler, max_retries=5)
    with pytest.raises(ScrapeCancelled):
        await fetcher.fetch(URL, control)
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_proxy_pool_failover(control):
    """A transport error marks the proxy failed and the retry uses the next one."""
    pool = ProxyPool(max_failures=1)
    first = pool.add("http://10.0.0.1:8080")
    pool.add("http://10.0.0.2:8080")
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) == 1:
            raise httpx.ConnectTimeout("timed out", request=request)
        return httpx.Response(200, content=b"ok")

    fetcher = make_fetcher(handler, proxy_pool=pool)
    assert await fetcher.fetch(URL, control) == b"ok"
    assert not first.is_working
    assert pool.working_count() == 1


@pytest.mark.asyncio
async def test_no_working_proxies_is_fatal(control):
    """An exhausted pool fails immediately."""
    pool = ProxyPool()
    fetcher = make_fetcher(lambda request: httpx.Response(200), proxy_pool=pool)

    with pytest.raises(NoWorkingProxiesError):
        await fetcher.fetch(URL, control)
    assert control.sleeps == []


class SettlingCircuit(FakeCircuit):
    async def rotate_circuit(self, control=None):
        self.rotations += 1
        control.cancel("shutdown")
        await control.sleep(2.0)


@pytest.mark.asyncio
async def test_cancelled_during_rotation_settle(control):
    """A stop during the circuit settle wait cancels the fetch before sending."""
    calls = []
    circuit = SettlingCircuit()

    def handler(request):
        calls.append(request)
        return httpx.Response(200)

    fetcher = make_fetcher(handler, circuit=circuit)
    for _ in range(10):
        await fetcher.fetch(URL, control)

    with pytest.raises(ScrapeCancelled):
        await fetcher.fetch(URL, control)
    assert circuit.rotations == 1
    assert len(calls) == 10
