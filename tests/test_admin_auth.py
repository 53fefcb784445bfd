"""Tests for the authorization gate.

Covers:
- Access token extraction (bearer header, cookie)
- Role resolution outcomes: found / missing / lookup error / anonymous
- Gate ordering: user < moderator < admin, anonymous always rejected
- Role lookups for other users require admin before any query
"""

from __future__ import annotations

import uuid
from unittest.mock import AsyncMock, patch

import pytest
from starlette.requests import Request

from adminconsole.admin.auth import (
    AuthorizedCaller,
    Caller,
    RoleOutcome,
    RoleResolution,
    extract_access_token,
    get_caller,
    get_user_role_by_id,
    require_admin,
    require_moderator,
    resolve_role,
)
from adminconsole.errors import UnauthorizedError, UpstreamError
from adminconsole.integrations.identity import IdentityUser
from adminconsole.models.enums import Role

# ── Helpers ──────────────────────────────────────────────────────────


def _make_request(headers: dict[str, str] | None = None) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/admin/stats",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
    }
    return Request(scope)


def _make_caller() -> Caller:
    return Caller(id=uuid.uuid4(), email="admin@example.com", access_token="tok")


def _make_authorized(role: Role) -> AuthorizedCaller:
    return AuthorizedCaller(caller=_make_caller(), resolution=RoleResolution(role, RoleOutcome.FOUND))


# ── Token / caller ───────────────────────────────────────────────────


class TestExtractAccessToken:
    def test_bearer(self):
        assert extract_access_token(_make_request({"Authorization": "Bearer abc"})) == "abc"

    def test_cookie(self):
        assert extract_access_token(_make_request({"Cookie": "sb-access-token=xyz"})) == "xyz"

    def test_header_wins_over_cookie(self):
        request = _make_request({"Authorization": "Bearer abc", "Cookie": "sb-access-token=xyz"})
        assert extract_access_token(request) == "abc"

    def test_basic_scheme_ignored(self):
        assert extract_access_token(_make_request({"Authorization": "Basic Zm9vOmJhcg=="})) is None

    def test_none(self):
        assert extract_access_token(_make_request()) is None


class TestGetCaller:
    @pytest.mark.asyncio()
    async def test_resolves_user(self):
        user_id = uuid.uuid4()
        with patch("adminconsole.admin.auth.identity_client") as identity:
            identity.get_user = AsyncMock(return_value=IdentityUser(id=user_id, email="a@b.com"))
            caller = await get_caller(_make_request({"Authorization": "Bearer tok"}))

        assert caller == Caller(id=user_id, email="a@b.com", access_token="tok")
        identity.get_user.assert_awaited_once_with("tok")

    @pytest.mark.asyncio()
    async def test_no_token_skips_lookup(self):
        with patch("adminconsole.admin.auth.identity_client") as identity:
            identity.get_user = AsyncMock()
            assert await get_caller(_make_request()) is None
        identity.get_user.assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_invalid_token(self):
        with patch("adminconsole.admin.auth.identity_client") as identity:
            identity.get_user = AsyncMock(return_value=None)
            assert await get_caller(_make_request({"Authorization": "Bearer bad"})) is None

    @pytest.mark.asyncio()
    async def test_identity_outage_is_anonymous(self):
        with patch("adminconsole.admin.auth.identity_client") as identity:
            identity.get_user = AsyncMock(side_effect=UpstreamError("identity.get_user"))
            assert await get_caller(_make_request({"Authorization": "Bearer tok"})) is None


# ── Role resolution ──────────────────────────────────────────────────


class TestResolveRole:
    @pytest.mark.asyncio()
    @pytest.mark.parametrize(
        ("stored", "role", "outcome"),
        [
            ("admin", Role.ADMIN, RoleOutcome.FOUND),
            ("moderator", Role.MODERATOR, RoleOutcome.FOUND),
            ("mod", Role.MODERATOR, RoleOutcome.FOUND),
            ("user", Role.USER, RoleOutcome.FOUND),
            (None, Role.USER, RoleOutcome.MISSING),
            ("superuser", Role.USER, RoleOutcome.LOOKUP_ERROR),
        ],
    )
    async def test_outcomes(self, stored, role, outcome):
        with patch("adminconsole.admin.auth.fetch_role", new_callable=AsyncMock, return_value=stored):
            resolution = await resolve_role(AsyncMock(), _make_caller())
        assert resolution.role is role
        assert resolution.outcome is outcome

    @pytest.mark.asyncio()
    async def test_lookup_error_degrades(self):
        with patch("adminconsole.admin.auth.fetch_role", new_callable=AsyncMock) as fetch:
            fetch.side_effect = UpstreamError("roles.fetch")
            resolution = await resolve_role(AsyncMock(), _make_caller())
        assert resolution.role is Role.USER
        assert resolution.outcome is RoleOutcome.LOOKUP_ERROR
        assert resolution.degraded

    @pytest.mark.asyncio()
    async def test_anonymous_skips_lookup(self):
        with patch("adminconsole.admin.auth.fetch_role", new_callable=AsyncMock) as fetch:
            resolution = await resolve_role(AsyncMock(), None)
        assert resolution.outcome is RoleOutcome.ANONYMOUS
        fetch.assert_not_awaited()

    def test_found_is_not_degraded(self):
        assert not RoleResolution(Role.USER, RoleOutcome.FOUND).degraded


# ── Gate ─────────────────────────────────────────────────────────────


class TestGate:
    @pytest.mark.asyncio()
    @pytest.mark.parametrize(
        ("gate", "stored", "admitted"),
        [
            (require_admin, "admin", True),
            (require_admin, "moderator", False),
            (require_admin, "user", False),
            (require_admin, None, False),
            (require_moderator, "admin", True),
            (require_moderator, "moderator", True),
            (require_moderator, "user", False),
        ],
    )
    async def test_rank_comparison(self, gate, stored, admitted):
        caller = _make_caller()
        with (
            patch("adminconsole.admin.auth.get_caller", new_callable=AsyncMock, return_value=caller),
            patch("adminconsole.admin.auth.fetch_role", new_callable=AsyncMock, return_value=stored),
        ):
            if admitted:
                authorized = await gate(_make_request(), db=AsyncMock())
                assert authorized.caller == caller
            else:
                with pytest.raises(UnauthorizedError):
                    await gate(_make_request(), db=AsyncMock())

    @pytest.mark.asyncio()
    async def test_anonymous_rejected(self):
        with (
            patch("adminconsole.admin.auth.get_caller", new_callable=AsyncMock, return_value=None),
            patch("adminconsole.admin.auth.fetch_role", new_callable=AsyncMock) as fetch,
        ):
            with pytest.raises(UnauthorizedError) as exc_info:
                await require_moderator(_make_request(), db=AsyncMock())
        assert exc_info.value.required_role == "moderator"
        fetch.assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_lookup_error_rejected_from_admin(self):
        with (
            patch("adminconsole.admin.auth.get_caller", new_callable=AsyncMock, return_value=_make_caller()),
            patch("adminconsole.admin.auth.fetch_role", new_callable=AsyncMock) as fetch,
        ):
            fetch.side_effect = UpstreamError("roles.fetch")
            with pytest.raises(UnauthorizedError):
                await require_admin(_make_request(), db=AsyncMock())


class TestRoleOfOtherUser:
    @pytest.mark.asyncio()
    async def test_admin_can_read(self):
        with patch("adminconsole.admin.auth.fetch_role", new_callable=AsyncMock, return_value="moderator"):
            resolution = await get_user_role_by_id(AsyncMock(), _make_authorized(Role.ADMIN), uuid.uuid4())
        assert resolution.role is Role.MODERATOR

    @pytest.mark.asyncio()
    async def test_moderator_rejected_before_query(self):
        with patch("adminconsole.admin.auth.fetch_role", new_callable=AsyncMock) as fetch:
            with pytest.raises(UnauthorizedError):
                await get_user_role_by_id(AsyncMock(), _make_authorized(Role.MODERATOR), uuid.uuid4())
        fetch.assert_not_awaited()
