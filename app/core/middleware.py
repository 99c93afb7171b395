"""
HTTP middleware - per-IP rate limiting and security headers.

Rate limits use a moving window (the `limits` package) so a burst at a
window boundary cannot double the budget. Storage defaults to process
memory; point RATE_LIMIT_STORAGE_URI at redis:// when running several
workers.

Default rules:
- auth: AUTH_RATE_LIMIT requests per AUTH_RATE_LIMIT_WINDOW_MINUTES for each
  of the credential and OTP endpoints, counted per client IP and path
- global: GLOBAL_RATE_LIMIT requests per GLOBAL_RATE_LIMIT_WINDOW_MINUTES
  per client IP across the whole API
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from fastapi import Request, Response, status
from limits import RateLimitItem, RateLimitItemPerMinute
from limits.storage import storage_from_string
from limits.strategies import MovingWindowRateLimiter
from secure import Secure
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from app.core.config import get_settings
from app.core.errors import error_response

logger = logging.getLogger(__name__)

settings = get_settings()

AUTH_PATHS = tuple(
    f"/api/users/{name}"
    for name in (
        "register",
        "login",
        "verify-email-otp",
        "resend-verification",
        "forgot-password",
        "reset-password",
    )
)
EXEMPT_PATHS = {"/api/health"}

_storage = storage_from_string(settings.rate_limit_storage_uri)
_limiter = MovingWindowRateLimiter(_storage)


def reset_rate_limits() -> None:
    """Forget every recorded hit."""
    _storage.reset()


@dataclass
class RateLimitRule:
    """A limit applied to every path, or only to `paths` when given."""
    name: str
    limit: RateLimitItem
    paths: Optional[Tuple[str, ...]] = None
    # Count each path separately instead of sharing one budget
    per_path: bool = False

    def applies_to(self, path: str) -> bool:
        return self.paths is None or path in self.paths


def default_rules() -> List[RateLimitRule]:
    return [
        RateLimitRule(
            name="auth",
            limit=RateLimitItemPerMinute(settings.auth_rate_limit, settings.auth_rate_limit_window_minutes),
            paths=AUTH_PATHS,
            per_path=True,
        ),
        RateLimitRule(
            name="global",
            limit=RateLimitItemPerMinute(settings.global_rate_limit, settings.global_rate_limit_window_minutes),
        ),
    ]


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Reject requests over the limit with 429 in the usual error envelope.

    Rules are checked in order and the first exhausted one wins, so list
    the narrow rules before the global one. Responses carry
    X-RateLimit-* headers for the narrowest matching rule.
    """

    def __init__(self, app: ASGIApp, rules: Optional[List[RateLimitRule]] = None, enabled: Optional[bool] = None):
        super().__init__(app)
        self.rules = rules if rules is not None else default_rules()
        self.enabled = settings.rate_limit_enabled if enabled is None else enabled

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if not self.enabled or path in EXEMPT_PATHS or request.method == "OPTIONS":
            return await call_next(request)

        client_ip = self._get_client_ip(request)
        headers: Dict[str, str] = {}

        for rule in self.rules:
            if not rule.applies_to(path):
                continue
            identifiers = [rule.name, client_ip]
            if rule.per_path:
                identifiers.append(path)

            allowed = _limiter.hit(rule.limit, *identifiers)
            reset_time, remaining = _limiter.get_window_stats(rule.limit, *identifiers)
            if not headers:
                headers = {
                    "X-RateLimit-Limit": str(rule.limit.amount),
                    "X-RateLimit-Remaining": str(max(0, remaining)),
                    "X-RateLimit-Reset": str(int(reset_time)),
                }

            if not allowed:
                retry_after = max(1, int(reset_time - time.time()))
                logger.warning(
                    "Rate limit '%s' exceeded by %s on %s %s", rule.name, client_ip, request.method, path
                )
                response = error_response(status.HTTP_429_TOO_MANY_REQUESTS, "Too many requests. Try again later.")
                response.headers.update(headers)
                response.headers["Retry-After"] = str(retry_after)
                return response

        response = await call_next(request)
        response.headers.update(headers)
        return response

    def _get_client_ip(self, request: Request) -> str:
        if settings.trust_proxy_headers:
            forwarded_for = request.headers.get("x-forwarded-for")
            if forwarded_for:
                return forwarded_for.split(",")[0].strip()
        return request.client.host if request.client else "unknown"


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Add the standard security headers (HSTS, X-Frame-Options, nosniff,
    Referrer-Policy, CSP...) to API responses.

    The interactive docs load assets from a CDN, which the default CSP
    forbids, so they are skipped.
    """

    DOCS_PATHS = ("/docs", "/redoc", "/openapi.json")

    def __init__(self, app: ASGIApp, secure_headers: Optional[Secure] = None):
        super().__init__(app)
        self.secure_headers = secure_headers or Secure.with_default_headers()

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)
        if not request.url.path.startswith(self.DOCS_PATHS):
            await self.secure_headers.set_headers_async(response)
        return response
