"""FastAPI application entry point: wires everything together.

Usage:
    python -m adminconsole.main

Serves the admin API (/admin), account routes (/auth) and a health check.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI

from adminconsole.accounts.web import router as accounts_router
from adminconsole.admin.web import router as admin_router
from adminconsole.config import settings
from adminconsole.db.engine import db_lifespan, redis_client
from adminconsole.errors import register_error_handlers
from adminconsole.integrations.identity import identity_client
from adminconsole.security.abuse import AbuseGuard, run_sweeper
from adminconsole.security.middleware import SecurityMiddleware

# ── Logging setup ────────────────────────────────────────────────────

logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s %(levelname)-8s %(name)s - %(message)s",
    stream=sys.stdout,
)
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer() if settings.is_production else structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = logging.getLogger(__name__)

# ── FastAPI lifespan ─────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application startup and shutdown lifecycle."""
    logger.info("Starting admin console (env=%s)", settings.environment)

    async with db_lifespan():
        sweeper = asyncio.create_task(
            run_sweeper(app.state.guard, settings.rate_limit.sweep_interval_seconds)
        )
        logger.info(
            "Abuse guard sweeper started (every %ss)", settings.rate_limit.sweep_interval_seconds
        )

        try:
            yield
        finally:
            logger.info("Shutting down admin console...")

            sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper
            logger.info("Sweeper stopped")

            await identity_client.close()
            logger.info("Identity client closed")

    logger.info("Admin console shutdown complete")


# ── FastAPI app ──────────────────────────────────────────────────────


def create_app(guard: AbuseGuard | None = None) -> FastAPI:
    """Build the application. Tests pass their own guard (fresh store, fake clock)."""
    app = FastAPI(
        title="Admin Console API",
        description="Administration API for users, roles, subscriptions and the audit trail",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.guard = guard or AbuseGuard.from_settings(redis_client)
    app.add_middleware(SecurityMiddleware)
    register_error_handlers(app)
    app.include_router(admin_router)
    app.include_router(accounts_router)

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "environment": settings.environment}

    return app


app = create_app()


# ── Entry point ──────────────────────────────────────────────────────

if __name__ == "__main__":
    uvicorn.run(
        "adminconsole.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower(),
    )
