"""
BuFood API Gateway — Admission Middleware
===========================================

What:  ASGI adapter for the AdmissionController (gateway.admission).
How:   For requests under the configured prefix:
       1. Refuse new work once the lifecycle has started shutting down
       2. Ceiling stage: reject with 429 `rate-limited` above the maximum
       3. Delay stage: sleep before dispatch above the delay threshold
       Admitted responses carry RateLimit-Limit/Remaining/Reset headers.

Written as a plain ASGI middleware (not BaseHTTPMiddleware) so the delay
can watch `receive()` for `http.disconnect`: if the client goes away during
the artificial delay, the request is dropped without dispatching. Body
chunks read while watching are replayed to the application in order.
"""

import asyncio
import logging
from typing import List

from starlette.datastructures import MutableHeaders
from starlette.requests import Request
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from gateway.admission import AdmissionController, AdmissionDecision, client_identity
from gateway.config import Settings
from gateway.error_handlers import error_response
from gateway.exceptions import RateLimitExceededError, ServiceUnavailableError

logger = logging.getLogger(__name__)


class AdmissionMiddleware:
    def __init__(
        self,
        app: ASGIApp,
        *,
        controller: AdmissionController,
        settings: Settings,
        lifecycle=None,
    ) -> None:
        self.app = app
        self.controller = controller
        self.settings = settings
        self.lifecycle = lifecycle

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or not self.controller.applies_to(scope["path"]):
            await self.app(scope, receive, send)
            return

        request = Request(scope, receive)

        if self.lifecycle is not None and not self.lifecycle.accepting:
            response = error_response(request, ServiceUnavailableError(), self.settings)
            await response(scope, receive, send)
            return

        key = client_identity(
            request.client.host if request.client else None,
            request.headers.get("x-forwarded-for"),
            self.settings.trust_proxy_hops,
        )

        decision = self.controller.limiter.check(key)
        if not decision.allowed:
            error = RateLimitExceededError(
                retry_after=self.controller.limiter.retry_after(decision),
                limit=decision.limit,
                context={"client": key, "count": decision.count},
            )
            response = error_response(request, error, self.settings)
            await response(scope, receive, send)
            return

        delay = self.controller.slow_down.delay_for(key)
        if delay > 0:
            logger.debug("Delaying %s by %.3fs", key, delay)
            buffered: List[Message] = []
            if not await wait_unless_disconnected(delay, receive, buffered):
                logger.info("Client %s disconnected during admission delay", key)
                return
            receive = _replaying(buffered, receive)

        await self.app(scope, receive, _with_rate_limit_headers(send, decision))


async def wait_unless_disconnected(delay: float, receive: Receive, buffered: List[Message]) -> bool:
    """
    Sleep for `delay` seconds while watching the client connection.

    Returns False if an `http.disconnect` arrives first. Any `http.request`
    messages received meanwhile are appended to `buffered`.
    """
    sleeper = asyncio.ensure_future(asyncio.sleep(delay))
    watcher = asyncio.ensure_future(receive())
    try:
        while True:
            done, _ = await asyncio.wait({sleeper, watcher}, return_when=asyncio.FIRST_COMPLETED)
            if watcher in done:
                message = watcher.result()
                if message["type"] == "http.disconnect":
                    return False
                buffered.append(message)
                if sleeper in done:
                    return True
                watcher = asyncio.ensure_future(receive())
                continue
            return True
    finally:
        for task in (sleeper, watcher):
            if not task.done():
                task.cancel()


def _replaying(buffered: List[Message], receive: Receive) -> Receive:
    if not buffered:
        return receive
    queue = list(buffered)

    async def replay_receive() -> Message:
        if queue:
            return queue.pop(0)
        return await receive()

    return replay_receive


def _with_rate_limit_headers(send: Send, decision: AdmissionDecision) -> Send:
    async def send_wrapper(message: Message) -> None:
        if message["type"] == "http.response.start":
            headers = MutableHeaders(scope=message)
            headers.setdefault("RateLimit-Limit", str(decision.limit))
            headers.setdefault("RateLimit-Remaining", str(decision.remaining))
            headers.setdefault("RateLimit-Reset", str(max(int(decision.reset_after), 0)))
        await send(message)

    return send_wrapper
