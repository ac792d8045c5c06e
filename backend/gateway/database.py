"""
BuFood API Gateway — Persistent Store Connection
==================================================

What:  The process-wide async SQLAlchemy engine, its session factory, the
       one-time post-connect maintenance and the per-request session
       dependency handlers use.
How:   `StoreConnection` is a ManagedConnection:
       - _open():    create the engine once, verify it with SELECT 1 under a
                     tenacity retry policy (exponential backoff + jitter)
       - _on_ready(): index normalization, exactly once per process
       - _close():   dispose the engine (closes every pooled connection)
Who:   Owned by the LifecycleManager; handlers borrow sessions through
       `get_db_session` and never touch the engine directly.

Connection Pooling Strategy:
    pool_size / max_overflow from settings, pool_pre_ping to catch stale
    connections, pool_recycle=3600. SQLite URLs (tests, local runs) use
    SQLAlchemy's default pool, which does not accept sizing arguments.

Index normalization:
    Once the store is READY, every secondary index of the configured tables
    (STORE_INDEX_RESET_TABLES, default "carts") is dropped so the handler
    layer can recreate the ones it owns. A failure here is logged and the
    gateway keeps serving.
"""

import logging
from typing import AsyncGenerator, List, Optional

from fastapi import Request
from sqlalchemy import MetaData, Table, text
from sqlalchemy.exc import NoSuchTableError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from gateway.config import Settings
from gateway.connections import ConnectionState, ManagedConnection
from gateway.exceptions import StoreUnavailableError

logger = logging.getLogger(__name__)


class StoreConnection(ManagedConnection):
    name = "Persistent store"

    def __init__(self, settings: Settings):
        super().__init__()
        self.settings = settings
        self.engine: Optional[AsyncEngine] = None
        self.session_factory: Optional[async_sessionmaker[AsyncSession]] = None
        self.maintenance_runs = 0

    def _engine_options(self) -> dict:
        options = {"echo": self.settings.log_level == "DEBUG"}
        if not self.settings.database_url.startswith("sqlite"):
            options.update(
                pool_size=self.settings.db_pool_size,
                max_overflow=self.settings.db_max_overflow,
                pool_pre_ping=self.settings.db_pool_pre_ping,
                pool_recycle=3600,
            )
        return options

    async def _open(self) -> None:
        if self.engine is None:
            self.engine = create_async_engine(self.settings.database_url, **self._engine_options())
            self.session_factory = async_sessionmaker(
                self.engine,
                class_=AsyncSession,
                expire_on_commit=False,
            )

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.settings.store_connect_attempts),
            wait=wait_exponential_jitter(
                initial=self.settings.store_retry_min_wait,
                max=self.settings.store_retry_max_wait,
            ),
            retry=retry_if_exception_type((SQLAlchemyError, OSError)),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        ):
            with attempt:
                async with self.engine.connect() as conn:
                    await conn.execute(text("SELECT 1"))

    async def _on_ready(self) -> None:
        if self.maintenance_runs:
            return
        self.maintenance_runs += 1
        try:
            dropped = await self.normalize_indexes(self.settings.store_index_reset_tables_list)
            logger.info("Index normalization dropped %d index(es)", len(dropped))
        except Exception as e:
            logger.error("Index normalization failed (serving continues): %s", e)

    async def normalize_indexes(self, tables: List[str]) -> List[str]:
        """Drop every secondary index on `tables`; missing tables are skipped."""

        def _drop(sync_conn) -> List[str]:
            dropped: List[str] = []
            for table_name in tables:
                try:
                    table = Table(table_name, MetaData(), autoload_with=sync_conn)
                except NoSuchTableError:
                    logger.info("Index normalization: table %s does not exist", table_name)
                    continue
                for index in list(table.indexes):
                    index.drop(bind=sync_conn)
                    dropped.append(index.name)
            return dropped

        async with self.engine.begin() as conn:
            return await conn.run_sync(_drop)

    async def _close(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()

    async def ping(self) -> bool:
        if not self.is_ready or self.engine is None:
            return False
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError) as e:
            logger.warning("Persistent store ping failed: %s", e)
            return False
        return True


# ── Session Dependency ────────────────────────────────────────────────────
async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that lends a session from the shared engine.

    Commits when the handler returns, rolls back when it raises, and always
    closes the session (returning its connection to the pool). The engine
    itself is never disposed here.

    Raises:
        StoreUnavailableError: the store is not READY (still connecting,
        failed at startup, or already closed by shutdown).
    """
    store: StoreConnection = request.app.state.lifecycle.store
    if store.state is not ConnectionState.READY or store.session_factory is None:
        raise StoreUnavailableError(state=store.state.value)

    async with store.session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
