"""
BuFood API Gateway — Middleware Pipeline
==========================================

What:  The ordered list of stages every request traverses.
How:   `build_middleware()` returns Starlette `Middleware` entries in
       execution order and is passed to `FastAPI(middleware=...)`, where
       the first entry is the outermost layer.

Pipeline (request direction):
    ┌──────────────────┐  id, access log, terminal error boundary
    │ Request context  │
    ├──────────────────┤  403 cross-origin-denied
    │ Origin guard     │
    ├──────────────────┤  Access-Control-* headers, preflight
    │ CORS             │
    ├──────────────────┤  CSP, HSTS, nosniff, ...
    │ Security headers │
    ├──────────────────┤
    │ GZip             │
    ├──────────────────┤  400 validation above MAX_BODY_BYTES
    │ Body limit       │
    ├──────────────────┤  503 while draining, 429 ceiling, delay stage
    │ Admission        │
    ├──────────────────┤  GET under cached prefixes only
    │ Response cache   │
    └──────────────────┘
            ↓
         Router → handler

The request context is the outermost stage and runs ahead of the origin check
and body parsing. Every response carries the request id, origin and
admission rejections included.
"""

from typing import List

from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from starlette.middleware import Middleware

from gateway.admission import AdmissionController
from gateway.cache import ResponseCache
from gateway.config import Settings
from gateway.lifecycle import LifecycleManager
from gateway.middleware.admission import AdmissionMiddleware
from gateway.middleware.body_limit import BodyLimitMiddleware
from gateway.middleware.cache import ResponseCacheMiddleware
from gateway.middleware.origin import OriginGuardMiddleware, OriginPolicy, cors_options
from gateway.middleware.request_context import RequestContextMiddleware
from gateway.middleware.security_headers import SecurityHeadersMiddleware


def build_middleware(
    settings: Settings,
    lifecycle: LifecycleManager,
    admission: AdmissionController,
    response_cache: ResponseCache,
    origin_policy: OriginPolicy,
) -> List[Middleware]:
    return [
        Middleware(RequestContextMiddleware, settings=settings),
        Middleware(OriginGuardMiddleware, policy=origin_policy, settings=settings),
        Middleware(CORSMiddleware, **cors_options(origin_policy)),
        Middleware(SecurityHeadersMiddleware),
        Middleware(GZipMiddleware, minimum_size=500),
        Middleware(BodyLimitMiddleware, settings=settings),
        Middleware(AdmissionMiddleware, controller=admission, settings=settings, lifecycle=lifecycle),
        Middleware(ResponseCacheMiddleware, cache=response_cache),
    ]
