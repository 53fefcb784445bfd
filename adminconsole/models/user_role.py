"""UserRole model: the single current console role per identity."""

from __future__ import annotations

import uuid

from sqlalchemy import String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from adminconsole.models.base import Base, TimestampMixin


class UserRole(TimestampMixin, Base):
    """Role assignment. No history; changes are traced by role.updated audit events."""

    __tablename__ = "user_roles"

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False, unique=True, index=True, comment="auth.users id"
    )
    role: Mapped[str] = mapped_column(String(20), nullable=False, comment="Role enum value")

    def __repr__(self) -> str:
        return f"<UserRole user={self.user_id} role={self.role}>"
