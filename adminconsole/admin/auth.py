"""Authorization gate for the admin API.

The caller is identified by the access token (Authorization: Bearer … or
the access-token cookie) and resolved against the hosted identity service.
The caller's role comes from a single user_roles lookup.

A missing row, a failed lookup, an unreadable stored value and an anonymous
caller all degrade to the lowest role, but the outcome is kept on the
RoleResolution so callers and tests can tell them apart.

Usage:
    @router.get("/stats")
    async def stats(caller: AuthorizedCaller = Depends(require_admin)):
        ...
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from adminconsole.admin.queries import fetch_role
from adminconsole.config import settings
from adminconsole.db.engine import get_session
from adminconsole.errors import UnauthorizedError, UpstreamError
from adminconsole.integrations.identity import IdentityAuthError, identity_client
from adminconsole.models.enums import Role

logger = logging.getLogger(__name__)


class RoleOutcome(str, Enum):
    FOUND = "found"
    MISSING = "missing"
    LOOKUP_ERROR = "lookup_error"
    ANONYMOUS = "anonymous"


@dataclass(frozen=True)
class Caller:
    id: uuid.UUID
    email: str | None
    access_token: str


@dataclass(frozen=True)
class RoleResolution:
    role: Role
    outcome: RoleOutcome

    @property
    def degraded(self) -> bool:
        """True when the role is a fallback rather than a stored value."""
        return self.outcome is not RoleOutcome.FOUND


@dataclass(frozen=True)
class AuthorizedCaller:
    caller: Caller
    resolution: RoleResolution

    @property
    def role(self) -> Role:
        return self.resolution.role


def extract_access_token(request: Request) -> str | None:
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        return token.strip()
    return request.cookies.get(settings.identity.access_token_cookie) or None


async def get_caller(request: Request) -> Caller | None:
    """Resolve the authenticated caller, or None.

    Identity-service failures are logged and treated as anonymous.
    """
    token = extract_access_token(request)
    if not token:
        return None
    try:
        user = await identity_client.get_user(token)
    except (UpstreamError, IdentityAuthError):
        logger.exception("Could not resolve caller from access token")
        return None
    if user is None:
        return None
    return Caller(id=user.id, email=user.email, access_token=token)


async def _lookup_role(db: AsyncSession, user_id: uuid.UUID) -> RoleResolution:
    try:
        raw = await fetch_role(db, user_id)
    except Exception:
        logger.exception("Role lookup failed for user %s", user_id)
        return RoleResolution(Role.USER, RoleOutcome.LOOKUP_ERROR)
    if raw is None:
        return RoleResolution(Role.USER, RoleOutcome.MISSING)
    try:
        return RoleResolution(Role(raw), RoleOutcome.FOUND)
    except ValueError:
        logger.error("Unknown role value %r stored for user %s", raw, user_id)
        return RoleResolution(Role.USER, RoleOutcome.LOOKUP_ERROR)


async def resolve_role(db: AsyncSession, caller: Caller | None) -> RoleResolution:
    """Single role lookup. Never raises; degrades to Role.USER."""
    if caller is None:
        return RoleResolution(Role.USER, RoleOutcome.ANONYMOUS)
    return await _lookup_role(db, caller.id)


def require_role(minimum: Role) -> Callable[..., Awaitable[AuthorizedCaller]]:
    """Build a FastAPI dependency that admits callers ranked >= `minimum`.

    Anonymous callers are always rejected. A rejection raises
    UnauthorizedError before the handler runs, so nothing is read or written.
    """

    async def gate(
        request: Request,
        db: AsyncSession = Depends(get_session),  # noqa: B008
    ) -> AuthorizedCaller:
        caller = await get_caller(request)
        resolution = await resolve_role(db, caller)
        if caller is None or resolution.role.rank < minimum.rank:
            logger.info(
                "Gate %s rejected caller=%s role=%s outcome=%s",
                minimum.value,
                caller.id if caller else None,
                resolution.role.value,
                resolution.outcome.value,
            )
            raise UnauthorizedError(minimum.value)
        return AuthorizedCaller(caller=caller, resolution=resolution)

    gate.__name__ = f"require_{minimum.value}"
    return gate


require_admin = require_role(Role.ADMIN)
require_moderator = require_role(Role.MODERATOR)


async def get_user_role_by_id(
    db: AsyncSession,
    authorized: AuthorizedCaller,
    user_id: uuid.UUID,
) -> RoleResolution:
    """Role of another user. The privilege check runs before the privilege query."""
    if authorized.role.rank < Role.ADMIN.rank:
        raise UnauthorizedError(Role.ADMIN.value)
    return await _lookup_role(db, user_id)
