"""Audit recorder: persists one AuditLog row per sensitive action.

Each write uses its own DB session, so it is independent of the primary
action's transaction. Never raises: failures are logged and swallowed,
the audit trail is best-effort and the primary action is authoritative.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from adminconsole.config import settings
from adminconsole.db.engine import async_session_factory
from adminconsole.models.audit import AuditLog
from adminconsole.models.enums import AuditAction
from adminconsole.security.abuse import get_client_ip

logger = logging.getLogger(__name__)


class AuditEntry(BaseModel):
    """A sensitive action about to be written to the audit trail. Immutable."""

    model_config = ConfigDict(frozen=True)

    action: AuditAction
    user_id: uuid.UUID | None = None
    user_email: str | None = None
    resource_type: str | None = None
    resource_id: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    ip_address: str | None = None
    user_agent: str | None = None

    @classmethod
    def for_request(cls, request: Request | None, **fields: Any) -> AuditEntry:
        """Build an entry, filling network origin from the request headers."""
        if request is not None:
            ip = get_client_ip(request)
            fields.setdefault("ip_address", None if ip == "unknown" else ip)
            fields.setdefault("user_agent", request.headers.get("user-agent"))
        return cls(**fields)


class AuditRecorder:
    def __init__(self, session_factory: Callable[[], AsyncSession] = async_session_factory) -> None:
        self._session_factory = session_factory

    async def record(self, entry: AuditEntry) -> bool:
        """Write an entry. Returns False (after logging) if the write failed."""
        try:
            async with self._session_factory() as db:
                db.add(AuditLog(
                    user_id=entry.user_id,
                    user_email=entry.user_email,
                    action=entry.action.value,
                    resource_type=entry.resource_type,
                    resource_id=entry.resource_id,
                    details=entry.details or None,
                    ip_address=entry.ip_address,
                    user_agent=entry.user_agent,
                ))
                await asyncio.wait_for(db.commit(), timeout=settings.db.db_statement_timeout)
        except Exception:
            logger.exception(
                "Failed to persist audit event: %s (user=%s resource=%s)",
                entry.action.value,
                entry.user_id,
                entry.resource_id,
            )
            return False
        logger.debug("Audit event recorded: %s", entry.action.value)
        return True


# Module-level singleton
audit_recorder = AuditRecorder()
