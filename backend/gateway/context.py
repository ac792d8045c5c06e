"""
BuFood API Gateway — Request Context
======================================

What:  The per-request identity record every downstream component reads.
How:   Created once by RequestContextMiddleware, stored in a ContextVar (for
       loggers and middleware) and in `request.state` (for handlers).

Invariant: exactly one id per request, never reassigned.
"""

import time
import uuid
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class RequestContext:
    id: str
    method: str
    path: str
    received_at: float = field(default_factory=time.time)

    @classmethod
    def new(cls, method: str, path: str) -> "RequestContext":
        return cls(id=str(uuid.uuid4()), method=method, path=path)


# Coroutine-local: concurrent requests on one event loop each see their own value
request_context_var: ContextVar[Optional[RequestContext]] = ContextVar(
    "request_context", default=None
)


def current_request_id() -> str:
    """Request id of the in-flight request, or "" outside a request."""
    ctx = request_context_var.get()
    return ctx.id if ctx is not None else ""
