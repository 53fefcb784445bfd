"""Profile model: per-user account data kept beside the identity record."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, String, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from adminconsole.models.base import Base
from adminconsole.models.enums import AccountType


class Profile(Base):
    """Profile row. The primary key is the identity's user id."""

    __tablename__ = "profiles"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True)
    email: Mapped[str | None] = mapped_column(String(255))
    name: Mapped[str | None] = mapped_column(String(100))
    account_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default=AccountType.BASIC.value, comment="basic, premium, enterprise"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<Profile id={self.id} account_type={self.account_type}>"
