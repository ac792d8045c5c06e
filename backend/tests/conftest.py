"""
BuFood API Gateway — Test Configuration (conftest.py)
======================================================

What:  Shared pytest fixtures for the entire test suite.
How:   pytest auto-discovers conftest.py and makes fixtures available to all tests.

Fixture Hierarchy:
    Function-scoped (created fresh for each test):
    ├── make_settings:   Factory for frozen Settings with test defaults
    ├── handler_calls:   Side-effect counter shared with the sample routes
    ├── sample_router:   Stand-in for the external route handlers
    ├── make_client:     Builds an app and an HTTPX AsyncClient around it
    └── fake_redis:      AsyncMock standing in for redis.asyncio.Redis

The ASGI test transport does not run the lifespan, so apps built here start
with an UNINITIALIZED store and the in-process cache backend unless a test
calls `lifecycle.startup()` itself.
"""

import os
from collections import Counter
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock

import pytest
from fastapi import APIRouter, Depends
from httpx import ASGITransport, AsyncClient
from pydantic import BaseModel

# Override settings for testing BEFORE any app imports
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test.db"
os.environ["JWT_SECRET"] = "test-secret-not-real"
os.environ["LOG_LEVEL"] = "WARNING"

from gateway.cache import ResponseCache  # noqa: E402
from gateway.config import Settings  # noqa: E402
from gateway.dependencies import get_response_cache  # noqa: E402
from gateway.exceptions import NotFoundError, UnauthorizedError  # noqa: E402
from gateway.main import create_app  # noqa: E402


TEST_DEFAULTS = {
    "environment": "test",
    "database_url": "sqlite+aiosqlite:///./test.db",
    "jwt_secret": "test-secret-not-real",
    "log_level": "WARNING",
    "slow_down_delay_ms": 0,
    "store_connect_attempts": 1,
    "store_retry_min_wait": 0,
    "store_retry_max_wait": 0,
}


@pytest.fixture
def make_settings():
    """
    Provides a factory for Settings with test defaults.

    Usage:
        settings = make_settings(rate_limit_max_requests=3)
    """

    def _make(**overrides) -> Settings:
        values = {**TEST_DEFAULTS, **overrides}
        return Settings(_env_file=None, **values)

    return _make


class ProductIn(BaseModel):
    name: str
    price: float


@pytest.fixture
def handler_calls():
    """Counts how many times each sample handler actually ran."""
    return Counter()


@pytest.fixture
def sample_router(handler_calls):
    """
    Routes standing in for the external handler layer.

    GET  /api/products          cacheable read (counts invocations)
    POST /api/products          write that invalidates the product cache
    GET  /api/orders/{id}       raises NotFoundError
    GET  /api/secure            raises UnauthorizedError
    GET  /api/boom              raises an unclassified RuntimeError
    POST /api/echo              echoes the raw request body
    """
    router = APIRouter(prefix="/api")

    @router.get("/products")
    async def list_products(page: int = 1):
        handler_calls["products"] += 1
        return {"page": page, "items": ["pad thai", "ramen"], "call": handler_calls["products"]}

    @router.post("/products", status_code=201)
    async def create_product(
        product: ProductIn,
        cache: ResponseCache = Depends(get_response_cache),
    ):
        handler_calls["create"] += 1
        await cache.invalidate("/api/products")
        return product.model_dump()

    @router.get("/orders/{order_id}")
    async def get_order(order_id: str):
        raise NotFoundError(resource="order", resource_id=order_id)

    @router.get("/secure")
    async def secure():
        raise UnauthorizedError(message="Invalid token")

    @router.get("/boom")
    async def boom():
        raise RuntimeError("database exploded at row 42")

    @router.post("/echo")
    async def echo(payload: dict):
        handler_calls["echo"] += 1
        return payload

    return router


@pytest.fixture
def make_client(make_settings, sample_router):
    """
    Builds an app (with the sample routes) and yields an AsyncClient for it.

    Usage:
        async with make_client(rate_limit_max_requests=3) as (client, app):
            response = await client.get("/api/products")
    """

    @asynccontextmanager
    async def _make(settings=None, **overrides):
        settings = settings or make_settings(**overrides)
        app = create_app(settings, routers=[sample_router])
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client, app

    return _make


@pytest.fixture
def fake_redis():
    """
    Provides a mock redis.asyncio client.

    What:    AsyncMock with get/set/delete/ping/aclose coroutines.
    Why:     Tests must not need a running Redis server.
    """
    client = AsyncMock()
    client.get = AsyncMock(return_value=None)
    client.set = AsyncMock(return_value=True)
    client.delete = AsyncMock(return_value=1)
    client.ping = AsyncMock(return_value=True)
    client.aclose = AsyncMock()
    return client
