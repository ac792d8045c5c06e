"""
BuFood API Gateway — Exception Hierarchy
==========================================

What:  Application-specific exceptions, one per client-facing error category.
How:   Each class carries a fixed HTTP status and a machine-stable label.
       `gateway.error_handlers` turns any raised exception into the
       `{error, details|message, requestId}` envelope.
Who:   Raised by middleware (origin, admission), the lifecycle manager and
       the external route handlers.

Exception Hierarchy:
    GatewayError (base)                   → 500 internal
    ├── ValidationError                   → 400 validation
    ├── UnauthorizedError                 → 401 unauthorized
    ├── CrossOriginDeniedError            → 403 cross-origin-denied
    ├── NotFoundError                     → 404 not-found
    ├── RateLimitExceededError            → 429 rate-limited
    ├── ServiceUnavailableError           → 503 service-unavailable
    └── StoreUnavailableError             → 500 internal
"""

from typing import Any, Dict, Optional


class GatewayError(Exception):
    """
    Base exception for all gateway errors.

    Attributes:
        message:  Client-facing error description
        context:  Additional debug info (logged, not returned to the client)
    """

    status_code = 500
    label = "internal"

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(GatewayError):
    """Client input failed validation (bad body, bad params, oversized payload)."""

    status_code = 400
    label = "validation"

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class UnauthorizedError(GatewayError):
    """Raised by handlers when the auth collaborator rejects the caller."""

    status_code = 401
    label = "unauthorized"

    def __init__(
        self,
        message: str = "Authentication required",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class CrossOriginDeniedError(GatewayError):
    """
    Raised when a request declares an Origin that is neither allow-listed nor
    a subdomain of a configured wildcard suffix.
    """

    status_code = 403
    label = "cross-origin-denied"

    def __init__(self, origin: str, context: Optional[Dict[str, Any]] = None):
        ctx = context or {}
        ctx["origin"] = origin
        super().__init__(message=f"Origin '{origin}' is not allowed", context=ctx)
        self.origin = origin


class NotFoundError(GatewayError):
    """Requested resource does not exist."""

    status_code = 404
    label = "not-found"

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class RateLimitExceededError(GatewayError):
    """
    Raised when a client exceeds the request ceiling of the current window.

    Response includes:
        - Retry-After header: seconds until the window resets
        - RateLimit-* headers describing the limit
    """

    status_code = 429
    label = "rate-limited"

    def __init__(
        self,
        retry_after: int = 60,
        limit: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(
            message="Too many requests, please try again later.",
            context=ctx,
        )
        self.retry_after = retry_after
        self.limit = limit


class ServiceUnavailableError(GatewayError):
    """Raised for requests that arrive after shutdown has begun."""

    status_code = 503
    label = "service-unavailable"

    def __init__(
        self,
        message: str = "Server is shutting down",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class StoreUnavailableError(GatewayError):
    """
    Raised when a handler borrows the persistent store before it is ready.

    Classified as internal: the process keeps accepting traffic while the
    store is down, and these requests fail individually.
    """

    def __init__(
        self,
        state: str,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["store_state"] = state
        super().__init__(
            message=f"Persistent store is not ready (state: {state})",
            context=ctx,
        )
        self.state = state
