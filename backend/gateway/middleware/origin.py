"""
BuFood API Gateway — Origin Validator
=======================================

What:  Decides whether a request's declared Origin may receive a
       cross-origin response, and rejects it before anything else runs.
How:   `OriginPolicy` is a pure function of (origin, configured set);
       `OriginGuardMiddleware` answers denied origins with 403
       `cross-origin-denied`. Allowed origins continue to Starlette's
       CORSMiddleware, configured from the same policy, which adds the
       Access-Control-* headers and answers preflights.

Rules, in order:
    1. No Origin header (mobile apps, curl)        → allow
    2. Exact match in the allow-list               → allow
    3. Host is a subdomain of a wildcard suffix    → allow
    4. Anything else (including unparseable)       → deny
"""

import re
from typing import Iterable, Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from gateway.config import Settings
from gateway.error_handlers import error_response
from gateway.exceptions import CrossOriginDeniedError


class OriginPolicy:
    """Immutable allow-list plus wildcard-domain predicate."""

    def __init__(self, allowed_origins: Iterable[str], wildcard_suffixes: Iterable[str] = ()):
        self._allowed = frozenset(allowed_origins)
        self._suffixes = tuple(s.lstrip(".").lower() for s in wildcard_suffixes if s)
        regex = self.origin_regex()
        self._suffix_pattern = re.compile(regex) if regex else None

    @classmethod
    def from_settings(cls, settings: Settings) -> "OriginPolicy":
        return cls(settings.cors_origins_list, settings.cors_origin_suffixes_list)

    @property
    def allowed_origins(self) -> list:
        return sorted(self._allowed)

    def is_allowed(self, origin: Optional[str]) -> bool:
        if not origin:
            return True
        if origin in self._allowed:
            return True
        return self._matches_suffix(origin)

    def _matches_suffix(self, origin: str) -> bool:
        # Same pattern CORSMiddleware matches; userinfo, paths and query
        # strings never match.
        if self._suffix_pattern is None:
            return False
        return self._suffix_pattern.fullmatch(origin) is not None

    def origin_regex(self) -> Optional[str]:
        """
        Regex equivalent of the suffix rule, for CORSMiddleware's
        `allow_origin_regex` (matched with re.fullmatch).
        """
        if not self._suffixes:
            return None
        alternatives = "|".join(re.escape(suffix) for suffix in self._suffixes)
        return rf"(?i)[a-z][a-z0-9+.\-]*://(?:[a-z0-9\-]+\.)+(?:{alternatives})(?::\d+)?"


class OriginGuardMiddleware(BaseHTTPMiddleware):
    """Rejects requests whose Origin the policy denies, before CORS handling."""

    def __init__(self, app: ASGIApp, *, policy: OriginPolicy, settings: Settings) -> None:
        super().__init__(app)
        self._policy = policy
        self._settings = settings

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        origin = request.headers.get("origin")
        if not self._policy.is_allowed(origin):
            return error_response(request, CrossOriginDeniedError(origin), self._settings)
        return await call_next(request)


def cors_options(policy: OriginPolicy) -> dict:
    """Keyword arguments for CORSMiddleware derived from the origin policy."""
    return {
        "allow_origins": policy.allowed_origins,
        "allow_origin_regex": policy.origin_regex(),
        "allow_credentials": True,
        "allow_methods": ["*"],
        "allow_headers": ["*"],
        "expose_headers": [
            "X-Request-ID",
            "Retry-After",
            "RateLimit-Limit",
            "RateLimit-Remaining",
            "RateLimit-Reset",
        ],
    }
