"""AuditLog model: immutable audit trail for every sensitive action.

Rows are never updated. The only delete is the admin-only bulk clear.
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import String, Text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from adminconsole.models.base import Base, CreatedAtMixin


class AuditLog(CreatedAtMixin, Base):
    """Immutable audit trail entry."""

    __tablename__ = "audit_logs"

    # Actor (nullable for system-originated events); email is a snapshot, not a join
    user_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), index=True)
    user_email: Mapped[str | None] = mapped_column(String(255))

    # Event classification
    action: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    resource_type: Mapped[str | None] = mapped_column(String(100), index=True)
    resource_id: Mapped[str | None] = mapped_column(String(255))

    # Action-specific payload
    details: Mapped[dict[str, Any] | None] = mapped_column(JSONB)

    # Network origin
    ip_address: Mapped[str | None] = mapped_column(String(64))
    user_agent: Mapped[str | None] = mapped_column(Text)

    def __repr__(self) -> str:
        return f"<AuditLog action={self.action} user={self.user_id}>"
