"""Store queries for the admin API and the analytics aggregator.

Reads go through `run_read` (timeout + one retry), writes through
`run_write` (timeout, no retry). Failures surface as UpstreamError.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from adminconsole.db.engine import run_read, run_write
from adminconsole.integrations.identity import IdentityUser
from adminconsole.models.agent_session import AgentSession
from adminconsole.models.audit import AuditLog
from adminconsole.models.enums import AccountType, PlanTier, Role
from adminconsole.models.profile import Profile
from adminconsole.models.usage import UserUsage
from adminconsole.models.user_role import UserRole
from adminconsole.schemas.stats import (
    AdminUser,
    CreditUsageEntry,
    PlanLimits,
    UsageCounters,
)
from adminconsole.schemas.validation import AuditLogFilter

logger = logging.getLogger(__name__)

PLAN_LIMITS: dict[PlanTier, PlanLimits] = {
    PlanTier.FREE: PlanLimits(outputs=10, canvas=3),
    PlanTier.PREMIUM: PlanLimits(outputs=50, canvas=20),
}


# ── Roles ────────────────────────────────────────────────────────────


async def fetch_role(db: AsyncSession, user_id: uuid.UUID) -> str | None:
    """Raw stored role for one user, or None when no row exists."""

    async def _q() -> str | None:
        result = await db.execute(select(UserRole.role).where(UserRole.user_id == user_id))
        return result.scalar_one_or_none()

    return await run_read(db, "roles.fetch", _q)


async def list_roles(db: AsyncSession) -> dict[uuid.UUID, str]:
    async def _q() -> dict[uuid.UUID, str]:
        result = await db.execute(select(UserRole.user_id, UserRole.role))
        return {user_id: role for user_id, role in result.all()}

    return await run_read(db, "roles.list", _q)


async def upsert_user_role(db: AsyncSession, user_id: uuid.UUID, role: Role) -> None:
    """Set the single current role for a user, inserting the row if missing."""

    async def _w() -> None:
        result = await db.execute(select(UserRole).where(UserRole.user_id == user_id))
        existing = result.scalar_one_or_none()
        if existing is None:
            db.add(UserRole(user_id=user_id, role=role.value))
        else:
            existing.role = role.value
        await db.commit()

    await run_write("roles.upsert", _w)


# ── Profiles / subscriptions ─────────────────────────────────────────


async def get_profile(db: AsyncSession, user_id: uuid.UUID) -> Profile | None:
    async def _q() -> Profile | None:
        result = await db.execute(select(Profile).where(Profile.id == user_id))
        return result.scalar_one_or_none()

    return await run_read(db, "profiles.get", _q)


async def list_plan_tiers(db: AsyncSession) -> dict[uuid.UUID, PlanTier]:
    async def _q() -> dict[uuid.UUID, PlanTier]:
        result = await db.execute(select(Profile.id, Profile.account_type))
        return {pid: PlanTier.from_account_type(account) for pid, account in result.all()}

    return await run_read(db, "profiles.plans", _q)


async def downgrade_to_basic(db: AsyncSession, user_id: uuid.UUID) -> None:
    async def _w() -> None:
        await db.execute(
            update(Profile)
            .where(Profile.id == user_id)
            .values(account_type=AccountType.BASIC.value, updated_at=func.now())
        )
        await db.commit()

    await run_write("profiles.downgrade", _w)


# ── Agent sessions ───────────────────────────────────────────────────


async def count_sessions_by_user(db: AsyncSession) -> dict[uuid.UUID, int]:
    async def _q() -> dict[uuid.UUID, int]:
        result = await db.execute(
            select(AgentSession.user_id, func.count(AgentSession.id)).group_by(AgentSession.user_id)
        )
        return {user_id: count for user_id, count in result.all()}

    return await run_read(db, "sessions.by_user", _q)


async def count_agent_sessions(db: AsyncSession) -> int:
    async def _q() -> int:
        result = await db.execute(select(func.count(AgentSession.id)))
        return result.scalar() or 0

    return await run_read(db, "sessions.count", _q)


async def get_agent_type_counts(db: AsyncSession) -> list[tuple[str, int]]:
    """(agent_type, sessions) for every type, ordered by first session created."""

    async def _q() -> list[tuple[str, int]]:
        result = await db.execute(
            select(AgentSession.agent_type, func.count(AgentSession.id))
            .group_by(AgentSession.agent_type)
            .order_by(func.min(AgentSession.created_at))
        )
        return [(agent_type, count) for agent_type, count in result.all()]

    return await run_read(db, "sessions.by_agent", _q)


async def get_session_timestamps_since(db: AsyncSession, since: datetime) -> list[datetime]:
    async def _q() -> list[datetime]:
        result = await db.execute(
            select(AgentSession.created_at)
            .where(AgentSession.created_at >= since)
            .order_by(AgentSession.created_at)
        )
        return list(result.scalars().all())

    return await run_read(db, "sessions.since", _q)


# ── Audit log ────────────────────────────────────────────────────────


async def get_audit_rows_since(db: AsyncSession, since: datetime) -> list[Any]:
    """(action, resource_type, user_email, created_at) rows, oldest first."""

    async def _q() -> list[Any]:
        result = await db.execute(
            select(AuditLog.action, AuditLog.resource_type, AuditLog.user_email, AuditLog.created_at)
            .where(AuditLog.created_at >= since)
            .order_by(AuditLog.created_at)
        )
        return list(result.all())

    return await run_read(db, "audit.since", _q)


async def get_audit_logs(db: AsyncSession, filters: AuditLogFilter) -> tuple[list[AuditLog], int]:
    """Filtered page of audit events, newest first, plus the total match count."""
    conditions = []
    if filters.user_id:
        conditions.append(AuditLog.user_id == filters.user_id)
    if filters.action:
        conditions.append(AuditLog.action == filters.action)
    if filters.resource_type:
        conditions.append(AuditLog.resource_type == filters.resource_type)
    if filters.start_date:
        conditions.append(AuditLog.created_at >= filters.start_date)
    if filters.end_date:
        conditions.append(AuditLog.created_at <= filters.end_date)

    async def _q() -> tuple[list[AuditLog], int]:
        count_result = await db.execute(select(func.count(AuditLog.id)).where(*conditions))
        total = count_result.scalar() or 0
        result = await db.execute(
            select(AuditLog)
            .where(*conditions)
            .order_by(AuditLog.created_at.desc())
            .offset(filters.offset)
            .limit(filters.limit)
        )
        return list(result.scalars().all()), total

    return await run_read(db, "audit.page", _q)


async def clear_audit_logs(db: AsyncSession) -> int:
    """Delete every audit event. Irreversible."""

    async def _w() -> int:
        result = await db.execute(delete(AuditLog))
        await db.commit()
        return result.rowcount or 0  # type: ignore[attr-defined]

    return await run_write("audit.clear", _w)


def serialize_audit_log(log: AuditLog) -> dict[str, Any]:
    return {
        "id": str(log.id),
        "user_id": str(log.user_id) if log.user_id else None,
        "user_email": log.user_email,
        "action": log.action,
        "resource_type": log.resource_type,
        "resource_id": log.resource_id,
        "details": log.details,
        "ip_address": log.ip_address,
        "user_agent": log.user_agent,
        "created_at": log.created_at.isoformat() if log.created_at else None,
    }


# ── Usage ────────────────────────────────────────────────────────────


async def list_usage(db: AsyncSession) -> dict[uuid.UUID, UserUsage]:
    async def _q() -> dict[uuid.UUID, UserUsage]:
        result = await db.execute(select(UserUsage))
        return {row.user_id: row for row in result.scalars().all()}

    return await run_read(db, "usage.list", _q)


# ── Joins ────────────────────────────────────────────────────────────


def build_admin_users(
    users: list[IdentityUser],
    roles: dict[uuid.UUID, str],
    plans: dict[uuid.UUID, PlanTier],
    session_counts: dict[uuid.UUID, int],
) -> list[AdminUser]:
    """Join identity users with role, plan and session count."""
    admin_users = []
    for user in users:
        raw_role = roles.get(user.id)
        try:
            role = Role(raw_role) if raw_role else Role.USER
        except ValueError:
            logger.warning("Unknown stored role %r for user %s, showing as user", raw_role, user.id)
            role = Role.USER
        admin_users.append(AdminUser(
            id=user.id,
            email=user.email or "",
            created_at=user.created_at,
            last_sign_in_at=user.last_sign_in_at,
            role=role,
            session_count=session_counts.get(user.id, 0),
            subscription_type=plans.get(user.id, PlanTier.FREE),
        ))
    return admin_users


def build_credit_usage(
    users: list[IdentityUser],
    usage: dict[uuid.UUID, UserUsage],
    plans: dict[uuid.UUID, PlanTier],
) -> list[CreditUsageEntry]:
    """Join identity users with usage counters and plan limits."""
    entries = []
    for user in users:
        plan = plans.get(user.id, PlanTier.FREE)
        limits = PLAN_LIMITS[plan]
        row = usage.get(user.id)
        credits = (row.total_credits_used or 0) if row else 0
        canvas = (row.canvas_creations_used or 0) if row else 0
        entries.append(CreditUsageEntry(
            id=user.id,
            email=user.email or "",
            plan=plan,
            usage=UsageCounters(
                total_credits_used=credits,
                canvas_creations_used=canvas,
                last_activity=row.updated_at if row else None,
            ),
            limits=limits,
            agent_exhausted=credits >= limits.outputs,
            canvas_exhausted=canvas >= limits.canvas,
        ))
    return entries
