"""Error taxonomy shared by every route.

Each class maps to one HTTP status via the handlers registered in
`register_error_handlers`. Bodies are generic; details stay in server logs.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from adminconsole.config import settings

logger = logging.getLogger(__name__)


class ConsoleError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = 500
    public_message: str = "Request failed"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.public_message)
        self.message = message or self.public_message

    def body(self) -> dict[str, Any]:
        return {"error": self.message}


class UnauthorizedError(ConsoleError):
    """Caller's role rank is below what the operation needs."""

    status_code = 403
    public_message = "Unauthorized"

    def __init__(self, required_role: str | None = None) -> None:
        super().__init__(self.public_message)
        self.required_role = required_role

    def body(self) -> dict[str, Any]:
        body = {"error": self.public_message}
        if settings.debug and self.required_role:
            body["required_role"] = self.required_role
        return body


class ValidationFailedError(ConsoleError):
    """Payload failed its schema. Carries every offending field."""

    status_code = 400
    public_message = "Validation failed"

    def __init__(self, issues: list[dict[str, str]]) -> None:
        super().__init__(self.public_message)
        self.issues = issues

    def body(self) -> dict[str, Any]:
        return {"error": self.public_message, "details": self.issues}


class AuthenticationFailedError(ConsoleError):
    """The identity service refused the credentials. Message stays generic."""

    status_code = 400
    public_message = "Invalid email or password"


class NotFoundError(ConsoleError):
    status_code = 404
    public_message = "Not found"


class BusinessRuleError(ConsoleError):
    """The request is well-formed but conflicts with current state."""

    status_code = 409
    public_message = "Conflict"


class ForbiddenActionError(BusinessRuleError):
    """The request asks for something this endpoint never performs."""

    status_code = 403
    public_message = "Forbidden"


class UpstreamError(ConsoleError):
    """The managed backend (store or identity service) failed."""

    status_code = 500
    public_message = "Internal server error"

    def __init__(self, operation: str, cause: BaseException | None = None) -> None:
        super().__init__(self.public_message)
        self.operation = operation
        self.cause = cause


class RateLimitedError(ConsoleError):
    status_code = 429
    public_message = "Too many requests"

    def __init__(self, retry_after: int) -> None:
        super().__init__(f"Rate limit exceeded. Try again in {retry_after} seconds.")
        self.retry_after = retry_after

    def body(self) -> dict[str, Any]:
        return {
            "error": self.public_message,
            "message": self.message,
            "retryAfter": self.retry_after,
        }


# ── FastAPI handlers ─────────────────────────────────────────────────


async def _console_error_handler(request: Request, exc: ConsoleError) -> JSONResponse:
    if isinstance(exc, UpstreamError):
        logger.error(
            "Upstream failure during %s on %s %s: %r",
            exc.operation,
            request.method,
            request.url.path,
            exc.cause,
        )
    elif isinstance(exc, UnauthorizedError):
        logger.info("Rejected %s %s: insufficient role", request.method, request.url.path)

    headers = None
    if isinstance(exc, RateLimitedError):
        headers = {"Retry-After": str(exc.retry_after)}
    return JSONResponse(exc.body(), status_code=exc.status_code, headers=headers)


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Query/path parameter errors raised by FastAPI itself."""
    issues = [
        {
            "field": ".".join(str(p) for p in err.get("loc", ())[1:]) or "body",
            "message": err.get("msg", "Invalid value"),
        }
        for err in exc.errors()
    ]
    return JSONResponse(ValidationFailedError(issues).body(), status_code=400)


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse({"error": UpstreamError.public_message}, status_code=500)


def register_error_handlers(app: FastAPI) -> None:
    """Attach the taxonomy handlers to an app (also used by tests)."""
    app.add_exception_handler(ConsoleError, _console_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _request_validation_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _unhandled_error_handler)
