"""Async httpx client for the hosted identity (auth) REST API.

Endpoints used:
    GET  /user  resolve the caller from an access token
    POST /token?grant_type=password
    POST /signup
    POST /logout
    GET  /admin/users  service-role, paginated
    GET  /admin/users/{id}  service-role

Every call carries an explicit timeout. GETs are retried once on timeout,
transport error or 5xx; POSTs are never retried.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

import httpx

from adminconsole.config import settings
from adminconsole.errors import UpstreamError
from adminconsole.integrations.identity.schemas import AuthSession, IdentityUser

logger = logging.getLogger(__name__)

_USERS_PER_PAGE = 1000


class IdentityAuthError(Exception):
    """The identity service rejected the request (bad credentials, duplicate signup, ...)."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class IdentityClient:
    """Thin async wrapper around the identity provider.

    Holds one pooled httpx.AsyncClient; close it from the app lifespan.
    """

    def __init__(self, http_client: httpx.AsyncClient | None = None) -> None:
        self._anon_key = settings.identity.identity_anon_key
        self._service_key = settings.identity.identity_service_role_key
        self._client = http_client or httpx.AsyncClient(
            base_url=settings.identity.identity_url.rstrip("/"),
            timeout=httpx.Timeout(
                settings.identity.identity_timeout,
                connect=settings.identity.identity_connect_timeout,
            ),
        )

    async def close(self) -> None:
        await self._client.aclose()

    # ── Headers ───────────────────────────────────────────────────────

    def _user_headers(self, access_token: str | None = None) -> dict[str, str]:
        headers = {"apikey": self._anon_key}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        return headers

    def _service_headers(self) -> dict[str, str]:
        if not self._service_key:
            raise UpstreamError("identity.admin", RuntimeError("service role key not configured"))
        return {"apikey": self._service_key, "Authorization": f"Bearer {self._service_key}"}

    # ── Transport ─────────────────────────────────────────────────────

    async def _get(self, operation: str, path: str, **kwargs: Any) -> httpx.Response:
        """GET with one retry on timeout, transport error or 5xx."""
        for attempt in (1, 2):
            try:
                response = await self._client.get(path, **kwargs)
            except httpx.TransportError as exc:
                if attempt == 1:
                    logger.warning("Identity %s failed (%r), retrying once", operation, exc)
                    continue
                raise UpstreamError(operation, exc) from exc

            if response.status_code >= 500 and attempt == 1:
                logger.warning("Identity %s returned %d, retrying once", operation, response.status_code)
                continue
            return response
        raise AssertionError("unreachable")

    async def _post(self, operation: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._client.post(path, **kwargs)
        except httpx.TransportError as exc:
            raise UpstreamError(operation, exc) from exc

    @staticmethod
    def _raise_for_status(operation: str, response: httpx.Response) -> None:
        if response.status_code >= 500:
            raise UpstreamError(operation, RuntimeError(f"HTTP {response.status_code}"))
        if response.status_code >= 400:
            raise IdentityAuthError(response.status_code, _error_message(response))

    # ── User-scoped calls ─────────────────────────────────────────────

    async def get_user(self, access_token: str) -> IdentityUser | None:
        """Resolve the caller behind an access token. None if the token is not valid."""
        response = await self._get("identity.get_user", "/user", headers=self._user_headers(access_token))
        if response.status_code in (401, 403, 404):
            return None
        self._raise_for_status("identity.get_user", response)
        return IdentityUser.model_validate(response.json())

    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        response = await self._post(
            "identity.sign_in",
            "/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
            headers=self._user_headers(),
        )
        self._raise_for_status("identity.sign_in", response)
        return AuthSession.model_validate(response.json())

    async def sign_up(self, email: str, password: str, name: str) -> AuthSession:
        response = await self._post(
            "identity.sign_up",
            "/signup",
            json={"email": email, "password": password, "data": {"name": name}},
            headers=self._user_headers(),
        )
        self._raise_for_status("identity.sign_up", response)
        payload: dict[str, Any] = response.json()
        # Without auto-confirm the service returns the bare user, not a session
        if "access_token" not in payload and "id" in payload:
            return AuthSession(user=IdentityUser.model_validate(payload))
        return AuthSession.model_validate(payload)

    async def sign_out(self, access_token: str) -> None:
        response = await self._post(
            "identity.sign_out", "/logout", headers=self._user_headers(access_token)
        )
        self._raise_for_status("identity.sign_out", response)

    # ── Service-role calls ────────────────────────────────────────────

    async def list_users(self) -> list[IdentityUser]:
        """Return every user, walking all pages."""
        users: list[IdentityUser] = []
        page = 1
        while True:
            response = await self._get(
                "identity.list_users",
                "/admin/users",
                params={"page": page, "per_page": _USERS_PER_PAGE},
                headers=self._service_headers(),
            )
            if response.status_code >= 400:
                raise UpstreamError("identity.list_users", RuntimeError(_error_message(response)))
            batch = response.json().get("users", [])
            users.extend(IdentityUser.model_validate(u) for u in batch)
            if len(batch) < _USERS_PER_PAGE:
                return users
            page += 1

    async def get_user_by_id(self, user_id: uuid.UUID) -> IdentityUser | None:
        response = await self._get(
            "identity.get_user_by_id", f"/admin/users/{user_id}", headers=self._service_headers()
        )
        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise UpstreamError("identity.get_user_by_id", RuntimeError(_error_message(response)))
        return IdentityUser.model_validate(response.json())


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return f"HTTP {response.status_code}"
    if isinstance(payload, dict):
        for key in ("error_description", "msg", "message", "error"):
            if payload.get(key):
                return str(payload[key])
    return f"HTTP {response.status_code}"


# Module-level singleton
identity_client = IdentityClient()
