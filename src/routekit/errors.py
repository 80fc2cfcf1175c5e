"""Error types shared across the caching and routing services."""

from __future__ import annotations


class ProviderError(Exception):
    """Generic failure reported by the external maps provider."""

    def __init__(self, message: str, code: str = "PROVIDER_ERROR", status: int | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.status = status


class RateLimitError(ProviderError):
    def __init__(self, retry_after: float = 60.0) -> None:
        super().__init__("Rate limit exceeded", code="RATE_LIMIT_EXCEEDED", status=429)
        self.retry_after = retry_after


class QuotaExceededError(ProviderError):
    def __init__(self, message: str = "Daily quota exceeded") -> None:
        super().__init__(message, code="QUOTA_EXCEEDED", status=403)


class CacheUnavailableError(ConnectionError):
    """Raised inside the persistent tier when the shared store cannot be reached."""


class InvalidInputError(ValueError):
    """Caller supplied input that can never succeed (malformed address, bad coordinates)."""


class WaypointLimitError(InvalidInputError):
    def __init__(self, count: int, limit: int) -> None:
        super().__init__(
            f"Route has {count} waypoints; the maps provider optimizes at most {limit} per request. "
            "Split the day into smaller clusters."
        )
        self.count = count
        self.limit = limit


class ContractViolation(RuntimeError):
    """An internal operation was invoked with inputs that break its contract."""
