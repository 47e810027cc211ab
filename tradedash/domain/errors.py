from typing import Optional


class DashboardError(Exception):
    """Base class for dashboard core failures."""


class FetchError(DashboardError):
    """Raised when an upstream fetch fails."""

    def __init__(self, message: str, status: Optional[int] = None, retry_after: Optional[float] = None) -> None:
        super().__init__(message)
        self.status = status
        self.retry_after = retry_after


class NetworkError(FetchError):
    """Transport failure or timeout."""


class ServerError(FetchError):
    """Upstream answered with a 5xx status."""


class RateLimited(FetchError):
    """Upstream answered 429; ``retry_after`` carries the hint in seconds."""

    def __init__(self, message: str, retry_after: Optional[float] = None) -> None:
        super().__init__(message, status=429, retry_after=retry_after)


class CircuitBreakerOpen(FetchError):
    """Upstream self-protection; the call was skipped, not attempted."""

    def __init__(self, message: str, retry_after: Optional[float] = None) -> None:
        super().__init__(message, status=503, retry_after=retry_after)


class RequestRejected(FetchError):
    """Upstream refused the request with a non-retryable 4xx status."""


class DataIntegrityError(DashboardError):
    """Raised when a raw record cannot be turned into a domain object."""


class RequestTimeout(NetworkError):
    """The request exceeded its endpoint timeout."""
