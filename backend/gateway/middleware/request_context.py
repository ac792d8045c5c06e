"""
BuFood API Gateway — Request Context & Access Logging Middleware
==================================================================

What:  Outermost stage of the pipeline. For every request it:
       1. Creates the RequestContext (new UUID, method, path, received_at)
       2. Publishes it in the ContextVar and in `request.state`
       3. Runs the rest of the pipeline
       4. Classifies any exception that escaped everything below it
          (the single terminal error boundary)
       5. Echoes the id in `X-Request-ID` and emits one access record

Access record fields: request_id, method, path, status, duration_ms, client_ip.

Client-supplied X-Request-ID headers are ignored: the id must be unique per
request inside this process.
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from gateway.config import Settings
from gateway.context import RequestContext, request_context_var
from gateway.error_handlers import error_response
from gateway.logging_config import safe_log

access_logger = logging.getLogger("bufood.access")


class RequestContextMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp, *, settings: Settings) -> None:
        super().__init__(app)
        self.settings = settings

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        start_time = time.perf_counter()
        ctx = RequestContext.new(request.method, request.url.path)
        token = request_context_var.set(ctx)
        request.state.request_context = ctx
        request.state.request_id = ctx.id

        try:
            try:
                response = await call_next(request)
            except Exception as exc:
                response = error_response(request, exc, self.settings)

            response.headers["X-Request-ID"] = ctx.id
            self._log_completion(request, ctx, response.status_code, start_time)
            return response
        finally:
            request_context_var.reset(token)

    def _log_completion(
        self, request: Request, ctx: RequestContext, status: int, start_time: float
    ) -> None:
        duration_ms = (time.perf_counter() - start_time) * 1000
        client_ip = request.client.host if request.client else "unknown"

        if ctx.path == "/health":
            level = logging.DEBUG
        elif status >= 500:
            level = logging.ERROR
        elif status >= 400:
            level = logging.WARNING
        else:
            level = logging.INFO

        safe_log(
            access_logger,
            level,
            "%s %s %d %.1fms [%s] from %s",
            ctx.method,
            ctx.path,
            status,
            duration_ms,
            ctx.id,
            client_ip,
            extra={
                "request_id": ctx.id,
                "method": ctx.method,
                "path": ctx.path,
                "status": status,
                "duration_ms": round(duration_ms, 2),
                "client_ip": client_ip,
            },
        )
