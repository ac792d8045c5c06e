"""
BuFood API Gateway — Response Cache Middleware
================================================

What:  Wraps route dispatch for cacheable prefixes with the ResponseCache.
How:   Plain ASGI middleware. Only GET requests under the configured
       prefixes are considered; everything else passes straight through.
       - Hit:  replay the stored status, headers and body (`X-Cache: HIT`)
       - Miss: run the handler, capture its messages, store 200 responses
               (`X-Cache: MISS`)

The request's `receive` channel is handed to the handler untouched, so the
wrapper never consumes or alters a request body.
"""

import logging
from typing import List, Tuple

from starlette.datastructures import MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from gateway.cache import ResponseCache

logger = logging.getLogger(__name__)


class ResponseCacheMiddleware:
    def __init__(self, app: ASGIApp, *, cache: ResponseCache) -> None:
        self.app = app
        self.cache = cache

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or not self.cache.is_cacheable(scope["method"], scope["path"]):
            await self.app(scope, receive, send)
            return

        query = scope.get("query_string", b"").decode("latin-1")
        key = self.cache.make_key(scope["method"], scope["path"], query)

        cached = await self.cache.lookup(key)
        if cached is not None:
            logger.debug("Cache hit %s", key)
            headers = [(k.encode("latin-1"), v.encode("latin-1")) for k, v in cached.headers]
            headers.append((b"x-cache", b"HIT"))
            await send({"type": "http.response.start", "status": cached.status, "headers": headers})
            await send({"type": "http.response.body", "body": cached.body, "more_body": False})
            return

        status = 0
        raw_headers: List[Tuple[bytes, bytes]] = []
        chunks: List[bytes] = []

        async def capture(message: Message) -> None:
            nonlocal status, raw_headers
            if message["type"] == "http.response.start":
                status = message["status"]
                raw_headers = list(message.get("headers", []))
                MutableHeaders(scope=message).append("X-Cache", "MISS")
            elif message["type"] == "http.response.body":
                chunks.append(message.get("body", b""))
                if not message.get("more_body", False) and status == 200:
                    await self.cache.store(
                        key,
                        status,
                        [(k.decode("latin-1"), v.decode("latin-1")) for k, v in raw_headers],
                        b"".join(chunks),
                    )
            await send(message)

        await self.app(scope, receive, capture)
