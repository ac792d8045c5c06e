"""
BuFood API Gateway — Pipeline & Service Route Tests
=====================================================

What we test:
    ✅ Middleware order (request context outermost, response cache innermost)
    ✅ Security headers and gzip on ordinary responses
    ✅ Body limit: declared and streamed bodies over the cap → 400 validation
    ✅ GET /health and GET / contents
    ✅ Access records: one per request, /health only at DEBUG
    ✅ Lifespan: connections opened on startup, closed on shutdown
"""

import logging

import pytest
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from gateway import __version__
from gateway.admission import AdmissionController
from gateway.cache import ResponseCache
from gateway.connections import ConnectionState
from gateway.lifecycle import LifecycleManager
from gateway.main import create_app
from gateway.middleware.admission import AdmissionMiddleware
from gateway.middleware.body_limit import BodyLimitMiddleware
from gateway.middleware.cache import ResponseCacheMiddleware
from gateway.middleware.origin import OriginGuardMiddleware, OriginPolicy
from gateway.middleware.request_context import RequestContextMiddleware
from gateway.middleware.security_headers import SECURITY_HEADERS, SecurityHeadersMiddleware
from gateway.pipeline import build_middleware


class TestPipelineOrder:
    def test_stages_in_execution_order(self, make_settings):
        settings = make_settings()
        response_cache = ResponseCache()
        middleware = build_middleware(
            settings,
            lifecycle=LifecycleManager.from_settings(settings, response_cache),
            admission=AdmissionController.from_settings(settings),
            response_cache=response_cache,
            origin_policy=OriginPolicy.from_settings(settings),
        )

        assert [m.cls for m in middleware] == [
            RequestContextMiddleware,
            OriginGuardMiddleware,
            CORSMiddleware,
            SecurityHeadersMiddleware,
            GZipMiddleware,
            BodyLimitMiddleware,
            AdmissionMiddleware,
            ResponseCacheMiddleware,
        ]


class TestResponseHeaders:
    @pytest.mark.asyncio
    async def test_security_headers_present(self, make_client):
        async with make_client() as (client, _):
            response = await client.get("/")

        for name, value in SECURITY_HEADERS.items():
            assert response.headers[name] == value

    @pytest.mark.asyncio
    async def test_large_responses_are_compressed(self, make_client):
        payload = {"items": ["nasi lemak"] * 200}
        async with make_client() as (client, _):
            response = await client.post("/api/echo", json=payload, headers={"Accept-Encoding": "gzip"})

        assert response.headers["content-encoding"] == "gzip"
        assert response.json() == payload

    @pytest.mark.asyncio
    async def test_small_responses_are_not_compressed(self, make_client):
        async with make_client() as (client, _):
            response = await client.get("/", headers={"Accept-Encoding": "gzip"})
        assert "content-encoding" not in response.headers


class TestBodyLimit:
    @pytest.mark.asyncio
    async def test_declared_oversized_body_is_rejected(self, make_client, handler_calls):
        async with make_client(max_body_bytes=1024) as (client, _):
            response = await client.post("/api/echo", json={"note": "x" * 2000})

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "validation"
        assert "1024" in body["details"]
        assert handler_calls["echo"] == 0

    @pytest.mark.asyncio
    async def test_streamed_oversized_body_is_rejected(self, make_client, handler_calls):
        async def chunks():
            yield b'{"note": "'
            for _ in range(4):
                yield b"x" * 512
            yield b'"}'

        async with make_client(max_body_bytes=1024) as (client, _):
            response = await client.post(
                "/api/echo", content=chunks(), headers={"Content-Type": "application/json"}
            )

        assert response.status_code == 400
        assert response.json()["error"] == "validation"
        assert handler_calls["echo"] == 0

    @pytest.mark.asyncio
    async def test_body_under_limit_is_accepted(self, make_client):
        async with make_client(max_body_bytes=1024) as (client, _):
            response = await client.post("/api/echo", json={"note": "x" * 100})
        assert response.status_code == 200


class TestServiceRoutes:
    @pytest.mark.asyncio
    async def test_health_reports_connection_states(self, make_client):
        async with make_client() as (client, _):
            response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "degraded"
        assert data["version"] == __version__
        assert data["store"] == "uninitialized"
        assert data["cache"] == "disabled"
        assert data["cache_backend"] == "memory"
        assert data["uptime"] >= 0
        assert "timestamp" in data

    @pytest.mark.asyncio
    async def test_banner(self, make_client):
        async with make_client() as (client, _):
            response = await client.get("/")
        assert response.json() == {"message": "Welcome to the BuFood API backend!", "status": "ok"}

    @pytest.mark.asyncio
    async def test_docs_are_served(self, make_client):
        async with make_client() as (client, _):
            response = await client.get("/api-docs")
        assert response.status_code == 200


class TestAccessLog:
    @pytest.mark.asyncio
    async def test_one_record_per_request(self, make_client, caplog):
        caplog.set_level(logging.INFO, logger="bufood.access")
        async with make_client() as (client, _):
            response = await client.get("/api/products?page=3")

        records = [r for r in caplog.records if r.name == "bufood.access"]
        assert len(records) == 1
        record = records[0]
        assert record.request_id == response.headers["X-Request-ID"]
        assert (record.method, record.path, record.status) == ("GET", "/api/products", 200)
        assert record.duration_ms >= 0

    @pytest.mark.asyncio
    async def test_health_checks_logged_at_debug(self, make_client, caplog):
        caplog.set_level(logging.INFO, logger="bufood.access")
        async with make_client() as (client, _):
            await client.get("/health")

        assert [r for r in caplog.records if r.name == "bufood.access"] == []

    @pytest.mark.asyncio
    async def test_rejections_logged_as_warning(self, make_client, caplog):
        caplog.set_level(logging.INFO, logger="bufood.access")
        async with make_client() as (client, _):
            await client.get("/api/products", headers={"Origin": "https://evil.example"})

        records = [r for r in caplog.records if r.name == "bufood.access"]
        assert [(r.levelno, r.status) for r in records] == [(logging.WARNING, 403)]


@pytest.fixture
def preserve_root_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


class TestLifespan:
    @pytest.mark.asyncio
    async def test_startup_and_shutdown(self, make_settings, tmp_path, preserve_root_logging):
        app = create_app(make_settings(database_url=f"sqlite+aiosqlite:///{tmp_path / 'life.db'}"))
        lifecycle = app.state.lifecycle

        async with app.router.lifespan_context(app):
            assert lifecycle.store.state is ConnectionState.READY
            assert lifecycle.ready

        assert lifecycle.store.state is ConnectionState.CLOSED
        assert lifecycle.exit_code == 0
        assert not lifecycle.accepting
