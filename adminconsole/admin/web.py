"""Admin JSON API: user management, audit trail, stats and credit usage.

Every route takes its gate as the first dependency. Handlers read the body
themselves (never as a declared body parameter), so a rejected caller never
has its payload parsed.
"""
# ruff: noqa: B008  Depends() in function defaults is standard FastAPI

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from adminconsole.admin.analytics import collect_admin_stats
from adminconsole.admin.auth import (
    AuthorizedCaller,
    get_caller,
    get_user_role_by_id,
    require_admin,
    resolve_role,
)
from adminconsole.admin.queries import (
    build_admin_users,
    build_credit_usage,
    clear_audit_logs,
    count_sessions_by_user,
    downgrade_to_basic,
    fetch_role,
    get_audit_logs,
    get_profile,
    list_plan_tiers,
    list_roles,
    list_usage,
    serialize_audit_log,
    upsert_user_role,
)
from adminconsole.db.engine import get_session
from adminconsole.errors import (
    BusinessRuleError,
    ForbiddenActionError,
    NotFoundError,
    UnauthorizedError,
    UpstreamError,
    ValidationFailedError,
)
from adminconsole.integrations.identity import identity_client
from adminconsole.models.enums import AccountType, AuditAction, PlanTier, Role
from adminconsole.schemas.validation import (
    AuditLogFilter,
    RevokeSubscriptionRequest,
    UpdateUserRoleRequest,
    format_validation_errors,
    read_json,
    validate_payload,
    validate_user_id,
)
from adminconsole.security.audit import AuditEntry, audit_recorder

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


async def _record(request: Request, authorized: AuthorizedCaller, **fields: Any) -> None:
    await audit_recorder.record(AuditEntry.for_request(
        request,
        user_id=authorized.caller.id,
        user_email=authorized.caller.email,
        **fields,
    ))


# ── Caller ───────────────────────────────────────────────────────────


@router.get("/check")
async def check(
    request: Request,
    db: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    """The caller's own role. Requires authentication only."""
    caller = await get_caller(request)
    if caller is None:
        raise UnauthorizedError()
    resolution = await resolve_role(db, caller)
    return {
        "is_admin": resolution.role is Role.ADMIN,
        "role": resolution.role.value,
        "user_email": caller.email,
    }


# ── Users ────────────────────────────────────────────────────────────


@router.get("/users")
async def list_users(
    authorized: AuthorizedCaller = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    users = await identity_client.list_users()
    roles = await list_roles(db)
    plans = await list_plan_tiers(db)
    session_counts = await count_sessions_by_user(db)
    admin_users = build_admin_users(users, roles, plans, session_counts)
    return {"data": [u.model_dump(mode="json") for u in admin_users]}


@router.get("/users/{user_id}/role")
async def get_user_role(
    user_id: str,
    authorized: AuthorizedCaller = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    target = validate_user_id(user_id)
    resolution = await get_user_role_by_id(db, authorized, target)
    return {"data": {"user_id": str(target), "role": resolution.role.value}}


@router.post("/users/{user_id}/role")
async def update_user_role(
    user_id: str,
    request: Request,
    authorized: AuthorizedCaller = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    target = validate_user_id(user_id)
    payload = validate_payload(UpdateUserRoleRequest, await read_json(request))

    previous = await fetch_role(db, target)
    await upsert_user_role(db, target, payload.role)
    logger.info(
        "Role of %s changed %s -> %s by %s",
        target,
        previous or Role.USER.value,
        payload.role.value,
        authorized.caller.id,
    )

    try:
        target_user = await identity_client.get_user_by_id(target)
    except UpstreamError:
        logger.warning("Could not resolve email for %s after role change", target)
        target_user = None

    await _record(
        request,
        authorized,
        action=AuditAction.ROLE_UPDATED,
        resource_type="user",
        resource_id=str(target),
        details={
            "previous_role": previous or Role.USER.value,
            "new_role": payload.role.value,
            "target_user_email": target_user.email if target_user else None,
        },
    )
    return {
        "message": "User role updated successfully",
        "data": {"user_id": str(target), "role": payload.role.value},
    }


@router.post("/users/{user_id}/subscription")
async def revoke_subscription(
    user_id: str,
    request: Request,
    authorized: AuthorizedCaller = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    """Downgrade a premium user to the free tier. Never promotes."""
    target = validate_user_id(user_id)
    try:
        validate_payload(RevokeSubscriptionRequest, await read_json(request))
    except ValidationFailedError as exc:
        logger.warning(
            "Rejected subscription change for %s: %s",
            target,
            format_validation_errors(exc.issues),
        )
        raise ForbiddenActionError("Only revocation is permitted") from exc

    profile = await get_profile(db, target)
    if profile is None:
        raise NotFoundError("User profile not found")

    previous_account_type = profile.account_type
    if PlanTier.from_account_type(previous_account_type) is not PlanTier.PREMIUM:
        raise BusinessRuleError("User is not on a premium plan")

    await downgrade_to_basic(db, target)
    logger.info("Subscription of %s revoked by %s", target, authorized.caller.id)

    await _record(
        request,
        authorized,
        action=AuditAction.SUBSCRIPTION_REVOKED,
        resource_type="subscription",
        resource_id=str(target),
        details={
            "target_user_email": profile.email,
            "previous_account_type": previous_account_type,
            "new_account_type": AccountType.BASIC.value,
        },
    )
    return {
        "message": "Subscription revoked successfully",
        "data": {"user_id": str(target), "subscription_type": PlanTier.FREE.value},
    }


# ── Audit log ────────────────────────────────────────────────────────


@router.get("/audit-logs")
async def audit_logs(
    request: Request,
    authorized: AuthorizedCaller = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    filters = validate_payload(AuditLogFilter, dict(request.query_params))
    logs, total = await get_audit_logs(db, filters)
    return {
        "data": [serialize_audit_log(log) for log in logs],
        "count": total,
        "limit": filters.limit,
        "offset": filters.offset,
    }


@router.delete("/audit-logs/clear")
async def clear_audit_trail(
    authorized: AuthorizedCaller = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    deleted = await clear_audit_logs(db)
    logger.warning("Audit trail cleared by %s (%d events)", authorized.caller.id, deleted)
    return {"message": "All audit logs cleared successfully", "data": {"deleted": deleted}}


# ── Stats / usage ────────────────────────────────────────────────────


@router.get("/stats")
async def stats(
    authorized: AuthorizedCaller = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    result = await collect_admin_stats(db, identity_client)
    return {"data": result.model_dump(mode="json")}


@router.get("/credit-usage")
async def credit_usage(
    authorized: AuthorizedCaller = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    users = await identity_client.list_users()
    usage = await list_usage(db)
    plans = await list_plan_tiers(db)
    entries = build_credit_usage(users, usage, plans)
    return {"data": [e.model_dump(mode="json") for e in entries]}
