"""
BuFood API Gateway — Health Check & Banner Routes
===================================================

What:  Unauthenticated service endpoints:
       - GET /health: service status, timestamp, uptime, connection states
       - GET /:       service banner
Who:   Load balancers, container health checks, humans with curl.

Status levels:
    - healthy:  persistent store READY and the gateway accepting traffic
    - degraded: store not ready (still connecting, failed, or closed)

Both levels answer HTTP 200: the process is up and keeps serving requests
that do not need the store.
"""

import logging
import time
from datetime import datetime, timezone

from fastapi import APIRouter, Request

from gateway import __version__
from gateway.schemas.common import BannerResponse, HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.monotonic()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
)
async def health_check(request: Request) -> HealthResponse:
    lifecycle = request.app.state.lifecycle
    readiness = lifecycle.readiness()

    return HealthResponse(
        status="healthy" if lifecycle.ready else "degraded",
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime=round(time.monotonic() - _start_time, 2),
        version=__version__,
        store=readiness["store"],
        cache=readiness["cache"],
        cache_backend=readiness["cache_backend"],
    )


@router.get("/", response_model=BannerResponse, summary="Service banner")
async def root() -> BannerResponse:
    return BannerResponse(message="Welcome to the BuFood API backend!", status="ok")
