"""
BuFood API Gateway — Managed Connections
==========================================

What:  State machine shared by the process-wide connection handles
       (persistent store, external cache store).

State Machine:
    UNINITIALIZED ──connect()──→ CONNECTING ──ok──→ READY ──close()──→ CLOSED
                                      │
                                      └──error──→ FAILED (cause logged)

    close() on a FAILED or never-connected handle only marks it CLOSED.
    Handles are owned by the LifecycleManager; request code borrows them
    and never calls connect() or close().
"""

import enum
import logging
from abc import ABC, abstractmethod
from typing import Optional

import redis.asyncio as redis_asyncio

from gateway.config import Settings

logger = logging.getLogger(__name__)


class ConnectionState(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    CONNECTING = "connecting"
    READY = "ready"
    CLOSED = "closed"
    FAILED = "failed"


class ManagedConnection(ABC):
    """
    Base class: subclasses implement `_open()` and `_close()`; the state
    transitions and their logging live here.
    """

    name = "connection"

    def __init__(self) -> None:
        self.state = ConnectionState.UNINITIALIZED
        self.error: Optional[BaseException] = None

    @property
    def is_ready(self) -> bool:
        return self.state is ConnectionState.READY

    async def connect(self) -> bool:
        """Open the connection. Returns True when READY; never raises."""
        if self.state is not ConnectionState.UNINITIALIZED:
            return self.is_ready
        self.state = ConnectionState.CONNECTING
        logger.info("Connecting %s...", self.name)
        try:
            await self._open()
        except Exception as e:
            self.state = ConnectionState.FAILED
            self.error = e
            logger.error("%s connection failed: %s", self.name, e)
            return False
        self.state = ConnectionState.READY
        logger.info("%s connected", self.name)
        await self._on_ready()
        return True

    async def close(self) -> None:
        """
        Release the connection. Exceptions from the underlying client
        propagate; the handle is marked CLOSED either way.
        """
        if self.state is ConnectionState.CLOSED:
            return
        was_open = self.state in (ConnectionState.READY, ConnectionState.FAILED)
        self.state = ConnectionState.CLOSED
        if was_open:
            await self._close()
            logger.info("%s connection closed", self.name)

    @abstractmethod
    async def _open(self) -> None: ...

    @abstractmethod
    async def _close(self) -> None: ...

    async def _on_ready(self) -> None:
        return None


class CacheConnection(ManagedConnection):
    """External cache store (Redis) connection."""

    name = "Redis"

    def __init__(self, url: str, connect_timeout: float = 2.0):
        super().__init__()
        self.url = url
        self.connect_timeout = connect_timeout
        self.client: Optional[redis_asyncio.Redis] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "CacheConnection":
        return cls(settings.redis_url, settings.redis_connect_timeout)

    async def _open(self) -> None:
        self.client = redis_asyncio.from_url(
            self.url,
            socket_timeout=self.connect_timeout,
            socket_connect_timeout=self.connect_timeout,
        )
        await self.client.ping()

    async def _close(self) -> None:
        if self.client is not None:
            await self.client.aclose()
