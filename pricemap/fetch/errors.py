"""Fetch error hierarchy."""
from typing import Optional


class FetchError(Exception):
    """Base class for fetch failures."""

    def __init__(self, url: str, message: str):
        self.url = url
        self.message = message
        super().__init__(f"{message} ({url})")


class FetchStatusError(FetchError):
    """Server answered with a status that will not be retried."""

    def __init__(self, url: str, status_code: int, message: Optional[str] = None):
        self.status_code = status_code
        super().__init__(url, message or f"unexpected status code: {status_code}")


class RetryableStatusError(FetchStatusError):
    """Server answered 429 or 5xx."""

    def __init__(self, url: str, status_code: int):
        super().__init__(url, status_code, f"server returned status {status_code} (will retry)")


class RetriesExhaustedError(FetchError):
    """Every attempt failed with a retryable error."""

    def __init__(self, url: str, attempts: int, last_error: Optional[BaseException]):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(url, f"failed after {attempts} attempts: {last_error}")
