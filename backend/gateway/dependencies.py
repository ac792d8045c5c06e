"""
BuFood API Gateway — Handler Dependencies
===========================================

FastAPI dependencies through which the external route handlers borrow
gateway-owned objects. Handlers never construct or close these.

Example (a write handler signalling cache invalidation):
    @router.post("/api/products")
    async def create_product(
        payload: ProductIn,
        db: AsyncSession = Depends(get_db_session),
        cache: ResponseCache = Depends(get_response_cache),
    ):
        ...
        await cache.invalidate("/api/products")
"""

from fastapi import Request

from gateway.cache import ResponseCache
from gateway.config import Settings
from gateway.context import RequestContext
from gateway.database import get_db_session
from gateway.lifecycle import LifecycleManager

__all__ = [
    "get_db_session",
    "get_lifecycle",
    "get_request_context",
    "get_response_cache",
    "get_settings",
]


def get_lifecycle(request: Request) -> LifecycleManager:
    return request.app.state.lifecycle


def get_response_cache(request: Request) -> ResponseCache:
    return request.app.state.lifecycle.response_cache


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_request_context(request: Request) -> RequestContext:
    return request.state.request_context
