"""AgentSession model: read-only here, counted and bucketed by the stats endpoint."""

from __future__ import annotations

import uuid

from sqlalchemy import String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from adminconsole.models.base import Base, CreatedAtMixin


class AgentSession(CreatedAtMixin, Base):
    __tablename__ = "agent_sessions"

    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    agent_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<AgentSession user={self.user_id} agent={self.agent_type}>"
