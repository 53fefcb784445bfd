"""Domain enums used across SQLAlchemy models and Pydantic schemas.

All enums use str mixin for JSON serialization.
"""

from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    """Console role. Totally ordered: user < moderator < admin."""

    USER = "user"
    MODERATOR = "moderator"
    ADMIN = "admin"

    @classmethod
    def _missing_(cls, value: object) -> Role | None:
        # Rows written by older clients spell moderator as "mod"
        if value == "mod":
            return cls.MODERATOR
        return None

    @property
    def rank(self) -> int:
        return ROLE_RANK[self]


ROLE_RANK: dict[Role, int] = {
    Role.USER: 1,
    Role.MODERATOR: 2,
    Role.ADMIN: 3,
}


class AuditAction(str, Enum):
    """Every action tag the audit trail accepts."""

    # User actions
    USER_LOGIN = "user.login"
    USER_LOGOUT = "user.logout"
    USER_SIGNUP = "user.signup"
    USER_PASSWORD_RESET = "user.password_reset"

    # Agent session actions
    SESSION_CREATED = "session.created"
    SESSION_UPDATED = "session.updated"
    SESSION_DELETED = "session.deleted"
    SESSION_RESTORED = "session.restored"

    # Admin actions
    ROLE_UPDATED = "role.updated"
    SUBSCRIPTION_REVOKED = "subscription.revoked"


class AccountType(str, Enum):
    """Plan column as stored on profiles."""

    BASIC = "basic"
    PREMIUM = "premium"
    ENTERPRISE = "enterprise"


class PlanTier(str, Enum):
    """App-level subscription tier derived from AccountType."""

    FREE = "free"
    PREMIUM = "premium"

    @classmethod
    def from_account_type(cls, account_type: str | None) -> PlanTier:
        if account_type in (AccountType.PREMIUM.value, AccountType.ENTERPRISE.value):
            return cls.PREMIUM
        return cls.FREE
