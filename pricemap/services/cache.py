"""In-memory TTL cache with a background sweeper."""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Hashable, Optional

logger = logging.getLogger(__name__)

DEFAULT_SWEEP_INTERVAL = 300.0  # 5 minutes


@dataclass
class CacheEntry:
    value: Any
    expires_at: float


class TTLCache:
    """
    Expiring key/value store.

    Expired entries read as absent right away and are purged by a daemon thread
    every `sweep_interval` seconds, whether or not anything reads them.

    Example:
        cache = TTLCache(ttl=3600)
        cache.set("geocode:Paris", (48.85, 2.35))
        cache.get("geocode:Paris")
        cache.close()
    """

    def __init__(self, ttl: float, sweep_interval: float = DEFAULT_SWEEP_INTERVAL):
        self.ttl = ttl
        self.sweep_interval = sweep_interval
        self._entries: dict[Hashable, CacheEntry] = {}
        self._lock = threading.Lock()
        self._stopped = threading.Event()
        self._sweeper = threading.Thread(target=self._sweep_loop, name="ttl-cache-sweeper", daemon=True)
        self._sweeper.start()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def get(self, key: Hashable, default: Any = None) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or time.monotonic() >= entry.expires_at:
                return default
            return entry.value

    def set(self, key: Hashable, value: Any) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(value=value, expires_at=time.monotonic() + self.ttl)

    def delete(self, key: Hashable) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries = {}

    def sweep(self) -> int:
        """Remove expired entries now. Returns how many were removed."""
        now = time.monotonic()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if now >= entry.expires_at]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug(f"Cache sweep removed {len(expired)} expired entries")
        return len(expired)

    def stats(self) -> dict:
        with self._lock:
            size = len(self._entries)
        return {
            "size": size,
            "ttl_seconds": self.ttl,
        }

    def close(self) -> None:
        """Stop the sweeper thread."""
        self._stopped.set()

    def _sweep_loop(self) -> None:
        while not self._stopped.wait(self.sweep_interval):
            self.sweep()
