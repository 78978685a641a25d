"""HTTP fetcher with rate limiting, retries and identity rotation."""
import logging
from typing import Optional

import httpx
from tenacity import (
    AsyncRetrying,
    RetryError,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from pricemap.config import Config, config as default_config
from pricemap.fetch.errors import FetchStatusError, RetriesExhaustedError, RetryableStatusError
from pricemap.fetch.headers import build_headers
from pricemap.fetch.proxy_pool import ProxyEndpoint, ProxyPool
from pricemap.fetch.rate_limit import RateLimiter
from pricemap.fetch.tor import CircuitController, CircuitError, TorController
from pricemap.jobs.run_control import RunControl

logger = logging.getLogger(__name__)

# Retries, timeouts and connection errors all end up here
RETRYABLE_ERRORS = (RetryableStatusError, httpx.TransportError)


def is_retryable_status(status_code: int) -> bool:
    """Check if status code is retryable."""
    return status_code == 429 or status_code >= 500


class Fetcher:
    """
    GETs pages for one source.

    Each instance owns its rate limiter, so two sources never slow each other down.
    Requests can go direct, through a fixed proxy (e.g. the Tor SOCKS port) or through
    a ProxyPool, in which case every attempt takes the next working endpoint.
    """

    def __init__(
        self,
        *,
        rate_limit_delay: float = 2.0,
        rate_limit_jitter: float = 2.0,
        max_retries: int = 3,
        retry_delay: float = 2.0,
        timeout: float = 30.0,
        user_agent: Optional[str] = None,
        proxy: Optional[str] = None,
        circuit: Optional[CircuitController] = None,
        proxy_pool: Optional[ProxyPool] = None,
        rotate_every: int = 10,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.timeout = timeout
        self.user_agent = user_agent
        self.proxy = proxy
        self.circuit = circuit
        self.proxy_pool = proxy_pool
        self.rotate_every = rotate_every
        self.rate_limiter = RateLimiter(rate_limit_delay, rate_limit_jitter)
        self.rotation_count = 0
        self._transport = transport
        self._clients: dict[Optional[str], httpx.AsyncClient] = {}

    @classmethod
    def from_config(
        cls,
        cfg: Config = default_config,
        proxy_pool: Optional[ProxyPool] = None,
        **overrides,
    ) -> "Fetcher":
        """Build a fetcher from configuration (Tor routing when USE_TOR is set)."""
        options = dict(
            rate_limit_delay=cfg.RATE_LIMIT_DELAY,
            rate_limit_jitter=cfg.RATE_LIMIT_JITTER,
            max_retries=cfg.MAX_RETRIES,
            retry_delay=cfg.RETRY_DELAY,
            timeout=cfg.TIMEOUT,
            user_agent=cfg.USER_AGENT,
            proxy_pool=proxy_pool,
        )
        if cfg.USE_TOR:
            options["proxy"] = f"socks5://{cfg.TOR_PROXY_HOST}:{cfg.TOR_PROXY_PORT}"
            options["circuit"] = TorController(
                host=cfg.TOR_PROXY_HOST,
                port=cfg.TOR_CONTROL_PORT,
                password=cfg.TOR_CONTROL_PASSWORD,
            )
        options.update(overrides)
        return cls(**options)

    @property
    def request_count(self) -> int:
        return self.rate_limiter.request_count

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self) -> None:
        clients = list(self._clients.values())
        self._clients.clear()
        for client in clients:
            await client.aclose()

    def _client_for(self, proxy: Optional[str]) -> httpx.AsyncClient:
        client = self._clients.get(proxy)
        if client is None:
            limits = httpx.Limits(max_connections=10, max_keepalive_connections=10, keepalive_expiry=30)
            if self._transport is not None:
                client = httpx.AsyncClient(transport=self._transport, timeout=self.timeout)
            else:
                client = httpx.AsyncClient(
                    http2=True,
                    proxy=proxy,
                    timeout=self.timeout,
                    limits=limits,
                    follow_redirects=True,
                )
            self._clients[proxy] = client
        return client

    async def rotate_identity(self, control: Optional[RunControl] = None) -> None:
        """Ask for a new circuit. Circuit failures are logged, never raised."""
        if self.circuit is None:
            return
        logger.info("Rotating Tor circuit...")
        try:
            await self.circuit.rotate_circuit(control)
            self.rotation_count += 1
        except CircuitError as e:
            logger.warning(f"Failed to rotate Tor circuit: {e}")

    async def fetch(self, url: str, control: Optional[RunControl] = None) -> bytes:
        """Fetch a URL with rate limiting, retries and identity rotation."""
        control = control or RunControl()
        control.raise_if_stopped()

        sequence = await self.rate_limiter.acquire(control)
        if self.circuit is not None and sequence > 0 and sequence % self.rotate_every == 0:
            await self.rotate_identity(control)

        attempts = self.max_retries + 1
        retrying = AsyncRetrying(
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(multiplier=self.retry_delay, exp_base=2),
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=control.sleep,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    control.raise_if_stopped()
                    return await self._attempt(url, attempt.retry_state.attempt_number, control)
        except RetryError as e:
            last_error = e.last_attempt.exception()
            raise RetriesExhaustedError(url, attempts, last_error) from last_error

    async def _attempt(self, url: str, attempt_number: int, control: RunControl) -> bytes:
        # Third attempt onwards: come back with a new identity
        if attempt_number > 2:
            await self.rotate_identity(control)

        endpoint: Optional[ProxyEndpoint] = None
        proxy = self.proxy
        if self.proxy_pool is not None:
            endpoint = self.proxy_pool.next()
            proxy = endpoint.address

        client = self._client_for(proxy)
        try:
            response = await client.get(url, headers=build_headers(self.user_agent))
        except httpx.TransportError as e:
            if endpoint is not None:
                self.proxy_pool.mark_failed(endpoint)
            logger.warning(f"Network error for {url} (attempt {attempt_number}): {e!r}")
            raise

        if endpoint is not None:
            self.proxy_pool.mark_working(endpoint)

        status = response.status_code
        if status == 200:
            return response.content
        if is_retryable_status(status):
            raise RetryableStatusError(url, status)
        raise FetchStatusError(url, status)
