"""
BuFood API Gateway — Response Schemas
=======================================

What:  Pydantic models for the responses the gateway itself produces.
Who:   Used by the health/banner routes and in the OpenAPI document served
       at /api-docs. Handler-specific schemas live with the handlers.
"""

from typing import Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """
    Envelope of every error response.

    Internal errors carry `message`; every other category carries `details`.

    Example:
        {
            "error": "rate-limited",
            "details": "Too many requests, please try again later.",
            "requestId": "550e8400-e29b-41d4-a716-446655440000"
        }
    """
    error: str = Field(description="Machine-stable error label")
    details: Optional[str] = Field(default=None, description="Client-facing error description")
    message: Optional[str] = Field(default=None, description="Internal error description")
    requestId: str = Field(description="Request correlation ID")


class HealthResponse(BaseModel):
    status: str = Field(description="healthy when the store is ready, degraded otherwise")
    timestamp: str = Field(description="Current server time (UTC ISO 8601)")
    uptime: float = Field(description="Seconds since the process started")
    version: str = Field(description="Gateway version")
    store: str = Field(description="Persistent store connection state")
    cache: str = Field(description="External cache connection state, or disabled")
    cache_backend: str = Field(description="Backend serving the response cache")


class BannerResponse(BaseModel):
    message: str
    status: str
