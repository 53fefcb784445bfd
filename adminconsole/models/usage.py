"""UserUsage model: cumulative per-user consumption counters."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Integer, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from adminconsole.models.base import Base


class UserUsage(Base):
    __tablename__ = "user_usage"

    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True)
    total_credits_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    canvas_creations_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<UserUsage user={self.user_id} credits={self.total_credits_used}>"
