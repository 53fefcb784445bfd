"""HTTP middleware applying the abuse guard to every request.

Order of checks: blocked IP, attack patterns in the URL, origin (mutating
methods only), per-route rate limit. Registration gets the tight auth limit.
Security headers go on every response.
"""

from __future__ import annotations

import logging
from urllib.parse import unquote

from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from adminconsole.config import settings
from adminconsole.errors import RateLimitedError
from adminconsole.security.abuse import (
    SECURITY_HEADERS,
    AbuseGuard,
    get_client_ip,
    has_attack_patterns,
    validate_origin,
)
from adminconsole.security.rate_limiter import API_RATE_LIMIT, AUTH_RATE_LIMIT, RateLimitConfig

logger = logging.getLogger(__name__)

_MUTATING_METHODS = {"POST", "PUT", "PATCH", "DELETE"}
# Login is throttled by the failed-login tracker, not the auth window
_AUTH_PATHS = ("/auth/register",)
_UNLIMITED_PATHS = ("/health",)


def _limit_for(path: str) -> RateLimitConfig:
    if path.startswith(_AUTH_PATHS):
        return AUTH_RATE_LIMIT
    return API_RATE_LIMIT


def _with_headers(response: Response) -> Response:
    for name, value in SECURITY_HEADERS.items():
        response.headers[name] = value
    return response


class SecurityMiddleware(BaseHTTPMiddleware):
    """Reads the AbuseGuard from app.state.guard."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        guard: AbuseGuard = request.app.state.guard
        ip = get_client_ip(request)
        path = request.url.path

        if guard.blocklist.is_blocked(ip):
            logger.info("Blocked IP %s tried %s %s", ip, request.method, path)
            return _with_headers(JSONResponse({"error": "Access denied"}, status_code=403))

        if has_attack_patterns(unquote(str(request.url))):
            logger.warning("Attack pattern in URL from %s: %s", ip, path)
            return _with_headers(JSONResponse({"error": "Bad request"}, status_code=400))

        if request.method in _MUTATING_METHODS and not validate_origin(
            request.headers.get("origin"),
            request.headers.get("host"),
            settings.security.origins,
        ):
            logger.warning("Origin mismatch from %s on %s", ip, path)
            return _with_headers(JSONResponse({"error": "Invalid origin"}, status_code=403))

        if path.startswith(_UNLIMITED_PATHS):
            return _with_headers(await call_next(request))

        config = _limit_for(path)
        result = await guard.rate_limiter.check(f"{ip}:{path}", config)
        if result.limited:
            exc = RateLimitedError(result.retry_after)
            return _with_headers(JSONResponse(
                exc.body(),
                status_code=exc.status_code,
                headers={
                    "Retry-After": str(result.retry_after),
                    "X-RateLimit-Limit": str(config.max_requests),
                    "X-RateLimit-Remaining": "0",
                    "X-RateLimit-Reset": str(int(result.reset_at)),
                },
            ))

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(config.max_requests)
        response.headers["X-RateLimit-Remaining"] = str(result.remaining)
        return _with_headers(response)
