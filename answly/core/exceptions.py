"""
Access-control failures surfaced to clients.

Each exception knows its HTTP status and a stable ``error`` code; the handler
registered in ``answly.main`` renders them as JSON.
"""
from typing import Any, Dict, Optional


class AccessError(Exception):
    """Base class for authentication and authorization failures."""

    status_code: int = 403
    error: str = "forbidden"
    default_detail: str = "Forbidden"

    def __init__(self, detail: Optional[str] = None, **extra: Any):
        self.detail = detail or self.default_detail
        self.extra = extra
        super().__init__(self.detail)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {"error": self.error, "detail": self.detail, **self.extra}


class MissingApiKey(AccessError):
    status_code = 400
    error = "missing_api_key"
    default_detail = "Missing x-api-key header"


class MissingOrganization(AccessError):
    status_code = 400
    error = "missing_organization"
    default_detail = "No organization context for this request"


class Unauthenticated(AccessError):
    status_code = 401
    error = "unauthenticated"
    default_detail = "Not authenticated"


class Forbidden(AccessError):
    pass


class RateLimitExceeded(Forbidden):
    """
    Per-key request window is full.

    Attributes:
        retry_after: Seconds until the current window closes
    """
    error = "rate_limit_exceeded"
    default_detail = "Rate limit exceeded"

    def __init__(self, retry_after: int, detail: Optional[str] = None):
        self.retry_after = retry_after
        super().__init__(detail, retry_after=retry_after)


class QuotaExceeded(Forbidden):
    """Per-key daily quota is used up; ``retry_after`` points at the next day."""
    error = "quota_exceeded"
    default_detail = "Daily quota exceeded"

    def __init__(self, retry_after: int, detail: Optional[str] = None):
        self.retry_after = retry_after
        super().__init__(detail, retry_after=retry_after)


class GrantNotFound(AccessError):
    status_code = 404
    error = "grant_not_found"
    default_detail = "Permission grant not found"


class ApiKeyNotFound(AccessError):
    status_code = 404
    error = "api_key_not_found"
    default_detail = "API key not found"


class DuplicateGrant(AccessError):
    status_code = 409
    error = "duplicate_grant"
    default_detail = "Permission already granted; revoke it first"
