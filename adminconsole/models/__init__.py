"""SQLAlchemy ORM models for the admin console.

Importing this package registers every mapped table on Base.metadata.
"""

from __future__ import annotations

from adminconsole.models.agent_session import AgentSession
from adminconsole.models.audit import AuditLog
from adminconsole.models.base import Base
from adminconsole.models.enums import AccountType, AuditAction, PlanTier, Role
from adminconsole.models.profile import Profile
from adminconsole.models.usage import UserUsage
from adminconsole.models.user_role import UserRole

__all__ = [
    # Base
    "Base",
    # Models
    "AgentSession",
    "AuditLog",
    "Profile",
    "UserRole",
    "UserUsage",
    # Enums
    "AccountType",
    "AuditAction",
    "PlanTier",
    "Role",
]
