"""
BuFood API Gateway — Error Classifier
=======================================

What:  Maps any failure surfaced by the pipeline or a handler into the
       stable client-facing envelope:

           {"error": <label>, "details"|"message": <str>, "requestId": <id>}

How:   `classify()` reduces an arbitrary exception to a GatewayError subclass,
       `error_response()` logs one error record and builds the JSONResponse.
       Middleware that short-circuits (origin, admission) and the terminal
       boundary in RequestContextMiddleware call `error_response()` directly;
       FastAPI exception handlers cover errors raised inside routing.

Taxonomy:
    validation (400) │ unauthorized (401) │ cross-origin-denied (403)
    not-found (404)  │ rate-limited (429) │ service-unavailable (503)
    internal (500, default)

Framework HTTP errors fold into the same labels: 400/413/422 → validation,
401 and 403 → unauthorized (answered as 401; cross-origin-denied is reserved
for the origin guard), 404/405 → not-found, 429 → rate-limited, any other
status → internal.

Production mode replaces the internal message with a generic one; every
other category is client-caused and keeps its message.
"""

import logging
from typing import Dict

import pydantic
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from gateway.config import Settings
from gateway.context import current_request_id
from gateway.exceptions import (
    GatewayError,
    NotFoundError,
    RateLimitExceededError,
    UnauthorizedError,
    ValidationError,
)
from gateway.logging_config import safe_log
from gateway.schemas.common import ErrorResponse

logger = logging.getLogger(__name__)

GENERIC_INTERNAL_MESSAGE = "Something went wrong"

_HTTP_STATUS_CATEGORIES = {
    400: ValidationError,
    413: ValidationError,
    422: ValidationError,
    401: UnauthorizedError,
    403: UnauthorizedError,
}


def classify(exc: BaseException) -> GatewayError:
    """Reduce any exception to a member of the closed taxonomy."""
    if isinstance(exc, GatewayError):
        return exc

    if isinstance(exc, RequestValidationError):
        return ValidationError(
            message=_format_validation_errors(exc.errors()),
            context={"errors": exc.errors()},
        )

    if isinstance(exc, pydantic.ValidationError):
        return ValidationError(message=_format_validation_errors(exc.errors()))

    if isinstance(exc, StarletteHTTPException):
        detail = str(exc.detail) if exc.detail else ""
        if exc.status_code in (404, 405):
            error = NotFoundError(resource="route")
            if detail:
                error.message = detail
            return error
        if exc.status_code == 429:
            return RateLimitExceededError()
        category = _HTTP_STATUS_CATEGORIES.get(exc.status_code)
        if category is not None:
            return category(message=detail) if detail else category()
        return GatewayError(message=detail or "Internal Server Error")

    return GatewayError(message=str(exc) or exc.__class__.__name__)


def _format_validation_errors(errors) -> str:
    parts = []
    for err in errors:
        location = ".".join(str(part) for part in err.get("loc", ()))
        message = err.get("msg", "invalid value")
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts) or "Validation failed"


def error_body(error: GatewayError, request_id: str, settings: Settings) -> Dict[str, str]:
    if error.label == "internal":
        message = GENERIC_INTERNAL_MESSAGE if settings.is_production else error.message
        body = ErrorResponse(error=error.label, message=message, requestId=request_id)
    else:
        body = ErrorResponse(error=error.label, details=error.message, requestId=request_id)
    return body.model_dump(exclude_none=True)


def error_headers(error: GatewayError) -> Dict[str, str]:
    if isinstance(error, RateLimitExceededError):
        headers = {"Retry-After": str(error.retry_after)}
        if error.limit is not None:
            headers["RateLimit-Limit"] = str(error.limit)
            headers["RateLimit-Remaining"] = "0"
            headers["RateLimit-Reset"] = str(error.retry_after)
        return headers
    return {}


def error_response(request: Request, exc: BaseException, settings: Settings) -> JSONResponse:
    """
    Classify `exc`, emit one error record and build the envelope response.

    The record carries the request id, the error message and its location
    (method and path) so it can be matched with the access record.
    """
    error = classify(exc)
    request_id = _request_id(request)
    location = f"{request.method} {request.url.path}"

    level = logging.ERROR if error.status_code >= 500 else logging.WARNING
    safe_log(
        logger,
        level,
        "[%s] %s at %s: %s",
        request_id,
        error.label,
        location,
        error.message,
        exc_info=exc if error.label == "internal" else None,
        extra={
            "request_id": request_id,
            "error": error.message,
            "label": error.label,
            "location": location,
            "context": error.context,
        },
    )

    return JSONResponse(
        status_code=error.status_code,
        content=error_body(error, request_id, settings),
        headers=error_headers(error),
    )


def _request_id(request: Request) -> str:
    ctx = getattr(request.state, "request_context", None)
    if ctx is not None:
        return ctx.id
    return current_request_id()


def register_exception_handlers(app: FastAPI, settings: Settings) -> None:
    """
    Register handlers for errors raised inside routing.

    Anything not matched here propagates out of the router and is classified
    by the terminal boundary in RequestContextMiddleware.
    """

    @app.exception_handler(GatewayError)
    async def handle_gateway_error(request: Request, exc: GatewayError):
        return error_response(request, exc, settings)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        return error_response(request, exc, settings)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        return error_response(request, exc, settings)
