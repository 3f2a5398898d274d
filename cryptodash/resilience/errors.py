"""
Failures raised along the outbound fetch path.
"""
from typing import Optional


class FetchError(Exception):
    """Base class for failures fetching an upstream resource."""
    pass


class NetworkFailure(FetchError):
    """Raised when the request never produced an HTTP response."""
    pass


class HttpFailure(FetchError):
    """Raised when the upstream API answers with a non-2xx status."""

    def __init__(self, status: int, message: Optional[str] = None):
        self.status = status
        super().__init__(message or f"HTTP error! Status: {status}")


class RateLimited(HttpFailure):
    """Raised when the upstream API answers 429 Too Many Requests."""

    def __init__(self, message: Optional[str] = None):
        super().__init__(429, message)


class ParseFailure(FetchError):
    """Raised when a response body is not the JSON shape we expect."""
    pass


class RetriesExhausted(FetchError):
    """Raised when every attempt failed and no cached data was available."""

    def __init__(self, identity: str, attempts: int, last_error: Optional[Exception] = None):
        self.identity = identity
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Fetch failed after {attempts} attempts for {identity}: {last_error}"
        )
