"""Pool of egress proxies with health tracking."""
import dataclasses
import logging
import random
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional
from urllib.parse import urlparse

import httpx

logger = logging.getLogger(__name__)

SUPPORTED_PROTOCOLS = ("http", "https", "socks5")
DEFAULT_MAX_FAILURES = 3


class ProxyPoolError(Exception):
    """Base class for proxy pool errors."""


class InvalidProxyError(ProxyPoolError, ValueError):
    """Proxy address is malformed or uses an unsupported protocol."""


class NoWorkingProxiesError(ProxyPoolError):
    """The pool has no endpoint left that is considered working."""


@dataclass
class ProxyEndpoint:
    """One egress path."""

    address: str
    protocol: str
    is_working: bool = True
    consecutive_failures: int = 0
    last_checked: Optional[datetime] = None
    last_used: Optional[datetime] = None


class ProxyPool:
    """
    Tracks proxies and hands them out round-robin or at random.
    Every access goes through one lock, so callers never see a half-updated endpoint.
    """

    def __init__(self, max_failures: int = DEFAULT_MAX_FAILURES):
        self.max_failures = max_failures
        self._proxies: list[ProxyEndpoint] = []
        self._cursor = -1
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._proxies)

    def add(self, address: str, protocol: Optional[str] = None) -> ProxyEndpoint:
        """Validate and add a proxy. Raises InvalidProxyError without touching the pool."""
        parsed = urlparse(address or "")
        if not parsed.scheme or not parsed.netloc or not parsed.hostname:
            raise InvalidProxyError(f"invalid proxy URL {address!r}: missing scheme or host")

        protocol = (protocol or parsed.scheme).lower()
        if protocol not in SUPPORTED_PROTOCOLS:
            raise InvalidProxyError(f"unsupported proxy protocol: {protocol}")

        endpoint = ProxyEndpoint(address=address, protocol=protocol, last_checked=datetime.utcnow())
        with self._lock:
            self._proxies.append(endpoint)
        logger.info(f"Added proxy: {address} ({protocol})")
        return endpoint

    def add_many(self, addresses: Iterable[str], protocol: Optional[str] = None) -> int:
        """Add every valid address, log the others. Returns how many were added."""
        added = 0
        for address in addresses:
            try:
                self.add(address, protocol)
                added += 1
            except InvalidProxyError as e:
                logger.warning(f"Failed to add proxy {address}: {e}")
        return added

    def next(self) -> ProxyEndpoint:
        """Next working proxy in round-robin order."""
        with self._lock:
            if not self._proxies:
                raise NoWorkingProxiesError("no proxies available")

            for _ in range(len(self._proxies)):
                self._cursor = (self._cursor + 1) % len(self._proxies)
                endpoint = self._proxies[self._cursor]
                if endpoint.is_working:
                    endpoint.last_used = datetime.utcnow()
                    return endpoint

        raise NoWorkingProxiesError("no working proxies available")

    def random(self) -> ProxyEndpoint:
        """Random working proxy."""
        with self._lock:
            if not self._proxies:
                raise NoWorkingProxiesError("no proxies available")
            working = [p for p in self._proxies if p.is_working]
            if not working:
                raise NoWorkingProxiesError("no working proxies available")
            endpoint = random.choice(working)
            endpoint.last_used = datetime.utcnow()
            return endpoint

    def mark_failed(self, endpoint: ProxyEndpoint) -> None:
        with self._lock:
            endpoint.consecutive_failures += 1
            if endpoint.consecutive_failures >= self.max_failures and endpoint.is_working:
                endpoint.is_working = False
                logger.warning(
                    f"Proxy marked as not working after {endpoint.consecutive_failures} failures: {endpoint.address}"
                )

    def mark_working(self, endpoint: ProxyEndpoint) -> None:
        with self._lock:
            endpoint.is_working = True
            endpoint.consecutive_failures = 0
            endpoint.last_checked = datetime.utcnow()

    def working_count(self) -> int:
        with self._lock:
            return sum(1 for p in self._proxies if p.is_working)

    def remove_failed(self) -> int:
        """Drop every endpoint that is not working. Returns how many were removed."""
        with self._lock:
            working = [p for p in self._proxies if p.is_working]
            removed = len(self._proxies) - len(working)
            self._proxies = working
            if self._cursor >= len(working):
                self._cursor = -1

        if removed > 0:
            logger.info(f"Removed {removed} failed proxies")
        return removed

    def snapshot(self) -> list[ProxyEndpoint]:
        """Copies of all endpoints."""
        with self._lock:
            return [dataclasses.replace(p) for p in self._proxies]

    async def check_all(self, test_url: str, timeout: float = 10.0) -> int:
        """Request `test_url` through every proxy and update health. Returns the working count."""
        with self._lock:
            endpoints = list(self._proxies)

        logger.info(f"Checking {len(endpoints)} proxies...")
        for endpoint in endpoints:
            try:
                async with httpx.AsyncClient(proxy=endpoint.address, timeout=timeout) as client:
                    response = await client.get(test_url)
                if response.status_code != 200:
                    raise httpx.HTTPStatusError(
                        f"unexpected status code: {response.status_code}",
                        request=response.request,
                        response=response,
                    )
            except httpx.HTTPError as e:
                self.mark_failed(endpoint)
                logger.warning(f"Proxy check failed for {endpoint.address}: {e}")
            else:
                self.mark_working(endpoint)
                logger.debug(f"Proxy check successful for {endpoint.address}")

        working = self.working_count()
        logger.info(f"Proxy check complete. Working proxies: {working}/{len(endpoints)}")
        return working
