"""
BuFood API Gateway — Response Cache
=====================================

What:  Short-TTL memoization of safe, idempotent read responses.
How:   `ResponseCache` serializes a captured response (status, headers, body)
       and stores it in a pluggable `CacheBackend`:

       ┌────────────────────┐     ┌──────────────────────────────┐
       │  ResponseCache     │ ──→ │ RedisCacheBackend (shared)   │
       │  lookup / store /  │     ├──────────────────────────────┤
       │  invalidate        │ ──→ │ MemoryCacheBackend (process) │
       └────────────────────┘     └──────────────────────────────┘

       The backend is chosen once at startup by the lifecycle manager.

Failure policy (fail-open):
    The Redis backend logs and swallows connection/command errors: a failed
    read is a miss, a failed write is skipped. A cache outage never blocks
    or errors a request; it only makes it uncached.

Invalidation is explicit: handlers that mutate a resource family call
`ResponseCache.invalidate(prefix)` (see `gateway.dependencies`).
"""

import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Backends
# ══════════════════════════════════════════════════════════════════════════


class CacheBackend(ABC):
    """Key/value store with per-entry TTL."""

    name = "abstract"

    @abstractmethod
    async def get(self, key: str) -> Optional[bytes]: ...

    @abstractmethod
    async def set(self, key: str, value: bytes, ttl: int) -> None: ...

    @abstractmethod
    async def delete(self, key: str) -> None: ...

    @abstractmethod
    async def invalidate(self, prefix: str) -> int:
        """Drop every entry whose key starts with `prefix`; return how many."""

    async def close(self) -> None:
        return None


class MemoryCacheBackend(CacheBackend):
    """
    In-process backend for single-process deployments and as the fallback
    when the external store is disabled or unreachable.

    An expired entry is removed when read, and every `sweep_interval`
    seconds a write also purges all expired entries, so keys that are never
    read again (one per distinct query string) do not accumulate.
    """

    name = "memory"

    def __init__(self, clock: Callable[[], float] = time.monotonic, sweep_interval: float = 60.0):
        self._clock = clock
        self._entries: Dict[str, Tuple[float, bytes]] = {}
        self.sweep_interval = sweep_interval
        self._next_sweep = clock() + sweep_interval

    async def get(self, key: str) -> Optional[bytes]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    async def set(self, key: str, value: bytes, ttl: int) -> None:
        now = self._clock()
        if now >= self._next_sweep:
            self.purge_expired()
            self._next_sweep = now + self.sweep_interval
        self._entries[key] = (now + ttl, value)

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [key for key, (expires_at, _) in self._entries.items() if now >= expires_at]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Purged %d expired cache entries", len(expired))
        return len(expired)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def invalidate(self, prefix: str) -> int:
        keys = [key for key in self._entries if key.startswith(prefix)]
        for key in keys:
            del self._entries[key]
        return len(keys)

    def __len__(self) -> int:
        return len(self._entries)


class RedisCacheBackend(CacheBackend):
    """
    Shared backend over a `redis.asyncio.Redis` client owned by the
    lifecycle manager. This class never closes the client.
    """

    name = "redis"

    def __init__(self, client, namespace: str = "cache:"):
        self._client = client
        self._namespace = namespace

    def _key(self, key: str) -> str:
        return f"{self._namespace}{key}"

    async def get(self, key: str) -> Optional[bytes]:
        try:
            value = await self._client.get(self._key(key))
        except (RedisError, OSError) as e:
            logger.warning("Redis cache read failed, treating as miss: %s", e)
            return None
        if value is None:
            return None
        return value.encode("utf-8") if isinstance(value, str) else value

    async def set(self, key: str, value: bytes, ttl: int) -> None:
        try:
            await self._client.set(self._key(key), value, ex=ttl)
        except (RedisError, OSError) as e:
            logger.warning("Redis cache write failed, response not cached: %s", e)

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(self._key(key))
        except (RedisError, OSError) as e:
            logger.warning("Redis cache delete failed: %s", e)

    async def invalidate(self, prefix: str) -> int:
        removed = 0
        try:
            keys = [key async for key in self._client.scan_iter(match=self._key(prefix) + "*")]
            if keys:
                removed = await self._client.delete(*keys)
        except (RedisError, OSError) as e:
            logger.warning("Redis cache invalidation failed for %s: %s", prefix, e)
        return int(removed or 0)


# ══════════════════════════════════════════════════════════════════════════
# Response memoization
# ══════════════════════════════════════════════════════════════════════════


class CachedResponse(BaseModel):
    """Serialized form of a captured response."""

    status: int
    headers: List[Tuple[str, str]]
    body: bytes

    model_config = ConfigDict(ser_json_bytes="base64", val_json_bytes="base64")


# Per-response headers that must not be replayed from the cache
_UNCACHEABLE_HEADERS = {"x-request-id", "set-cookie", "date", "ratelimit-remaining", "ratelimit-reset"}


class ResponseCache:
    """
    Memoizes GET responses under configured path prefixes.

    Key: `METHOD:path?query`, so two requests share an entry only when
    method, path and raw query string are identical.
    """

    def __init__(
        self,
        backend: Optional[CacheBackend] = None,
        ttl: int = 600,
        prefixes: Iterable[str] = (),
    ):
        self.backend: CacheBackend = backend or MemoryCacheBackend()
        self.ttl = ttl
        self.prefixes = tuple(p.rstrip("/") for p in prefixes if p)

    def use_backend(self, backend: CacheBackend) -> None:
        logger.info("Response cache backend: %s", backend.name)
        self.backend = backend

    def is_cacheable(self, method: str, path: str) -> bool:
        if method != "GET":
            return False
        return any(path == p or path.startswith(p + "/") for p in self.prefixes)

    @staticmethod
    def make_key(method: str, path: str, query: str = "") -> str:
        return f"{method}:{path}?{query}" if query else f"{method}:{path}"

    async def lookup(self, key: str) -> Optional[CachedResponse]:
        raw = await self.backend.get(key)
        if raw is None:
            return None
        try:
            return CachedResponse.model_validate_json(raw)
        except ValueError:
            logger.warning("Discarding unreadable cache entry %s", key)
            await self.backend.delete(key)
            return None

    async def store(self, key: str, status: int, headers: List[Tuple[str, str]], body: bytes) -> None:
        kept = [(k, v) for k, v in headers if k.lower() not in _UNCACHEABLE_HEADERS]
        entry = CachedResponse(status=status, headers=kept, body=body)
        await self.backend.set(key, entry.model_dump_json().encode("utf-8"), self.ttl)

    async def invalidate(self, path_prefix: str) -> int:
        """Drop cached GET responses whose path starts with `path_prefix`."""
        removed = await self.backend.invalidate(f"GET:{path_prefix}")
        logger.info("Invalidated %d cached responses under %s", removed, path_prefix)
        return removed
