"""
BuFood API Gateway — Lifecycle Manager
========================================

What:  Owns startup and shutdown of the process-wide connections (external
       cache store, persistent store) and exposes readiness.
Who:   Created by the application factory, stored on `app.state.lifecycle`,
       driven by the FastAPI lifespan and by the server's signal handling.

Startup:
    1. Cache: if USE_REDIS, connect and PING. On success the response cache
       switches to the Redis backend; on failure the cause is logged and the
       in-process backend stays in place (fail-open).
    2. Store: connect eagerly, once. A failure is logged and the gateway
       keeps serving; requests that need the store fail individually.
       The one-time index normalization runs when the store becomes READY.

Shutdown (SIGTERM / SIGINT):
    1. Stop admitting new requests (`accepting = False`)
    2. Close the cache connection if open; failure logged and ignored
    3. Close the store connection if open; failure → exit code 1
    4. Exit code 0 on a clean sequence

    Shutdown is idempotent: a second call while the first is running awaits
    the same sequence instead of starting another one.
"""

import asyncio
import logging
from typing import Dict, Optional

from gateway.cache import MemoryCacheBackend, RedisCacheBackend, ResponseCache
from gateway.config import Settings
from gateway.connections import CacheConnection, ConnectionState, ManagedConnection
from gateway.database import StoreConnection

logger = logging.getLogger(__name__)


class LifecycleManager:
    def __init__(
        self,
        settings: Settings,
        store: ManagedConnection,
        response_cache: ResponseCache,
        cache: Optional[ManagedConnection] = None,
    ):
        self.settings = settings
        self.store = store
        self.cache = cache
        self.response_cache = response_cache
        self.accepting = True
        self.exit_code: Optional[int] = None
        self._shutdown_task: Optional[asyncio.Task] = None

    @classmethod
    def from_settings(cls, settings: Settings, response_cache: ResponseCache) -> "LifecycleManager":
        cache = CacheConnection.from_settings(settings) if settings.use_redis else None
        return cls(
            settings=settings,
            store=StoreConnection(settings),
            response_cache=response_cache,
            cache=cache,
        )

    # ── Startup ───────────────────────────────────────────────────────────

    async def startup(self) -> None:
        await self._start_cache()
        await self.store.connect()

    async def _start_cache(self) -> None:
        if self.cache is None:
            logger.info("Running with in-memory cache (Redis disabled)")
            self.response_cache.use_backend(MemoryCacheBackend())
            return
        if await self.cache.connect():
            self.response_cache.use_backend(RedisCacheBackend(self.cache.client))
        else:
            logger.info("Continuing with in-memory cache")
            self.response_cache.use_backend(MemoryCacheBackend())

    # ── Readiness ─────────────────────────────────────────────────────────

    @property
    def ready(self) -> bool:
        return self.accepting and self.store.is_ready

    def readiness(self) -> Dict[str, str]:
        return {
            "store": self.store.state.value,
            "cache": self.cache.state.value if self.cache is not None else "disabled",
            "cache_backend": self.response_cache.backend.name,
        }

    # ── Shutdown ──────────────────────────────────────────────────────────

    def begin_shutdown(self, reason: str = "signal") -> None:
        """Stop admitting new requests. Safe to call any number of times."""
        if self.accepting:
            logger.info("Received shutdown %s, starting graceful shutdown...", reason)
            self.accepting = False

    async def shutdown(self) -> int:
        if self._shutdown_task is None:
            self._shutdown_task = asyncio.ensure_future(self._shutdown_sequence())
        else:
            logger.info("Shutdown already in progress; ignoring repeated request")
        return await asyncio.shield(self._shutdown_task)

    async def _shutdown_sequence(self) -> int:
        self.begin_shutdown("request")
        code = 0

        if self.cache is not None and self.cache.state is not ConnectionState.CLOSED:
            try:
                await self.cache.close()
            except Exception as e:
                logger.warning("Redis close error (ignored): %s", e)

        if self.store.state is not ConnectionState.CLOSED:
            try:
                await self.store.close()
            except Exception as e:
                logger.error("Error during shutdown while closing the store: %s", e)
                code = 1

        self.exit_code = code
        logger.info("Shutdown complete (exit code %d)", code)
        return code
