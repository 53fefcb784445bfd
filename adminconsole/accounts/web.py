"""Account routes: login, registration and logout via the identity service.

Failed logins feed the abuse guard's tracker (keyed by ip:email); enough of
them from one address blocks it. Successful login, signup and logout each
write one audit event.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from adminconsole.admin.auth import get_caller
from adminconsole.config import settings
from adminconsole.errors import AuthenticationFailedError
from adminconsole.integrations.identity import AuthSession, IdentityAuthError, identity_client
from adminconsole.models.enums import AuditAction
from adminconsole.schemas.validation import (
    LoginRequest,
    RegisterRequest,
    read_json,
    validate_payload,
)
from adminconsole.security.abuse import AbuseGuard, get_client_ip
from adminconsole.security.audit import AuditEntry, audit_recorder
from adminconsole.security.sanitize import sanitize_email, sanitize_text

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


def _session_response(session: AuthSession) -> JSONResponse:
    response = JSONResponse({"data": session.model_dump(mode="json")})
    if session.access_token:
        response.set_cookie(
            settings.identity.access_token_cookie,
            session.access_token,
            max_age=session.expires_in,
            httponly=True,
            secure=settings.is_production,
            samesite="lax",
        )
    return response


@router.post("/login")
async def login(request: Request) -> JSONResponse:
    payload = validate_payload(LoginRequest, await read_json(request))
    email = sanitize_email(payload.email)
    guard: AbuseGuard = request.app.state.guard
    ip = get_client_ip(request)

    try:
        session = await identity_client.sign_in_with_password(email, payload.password)
    except IdentityAuthError as exc:
        entry = guard.failed_logins.record_failure(ip, email)
        logger.info(
            "Failed login for %s from %s (%d attempts): %s", email, ip, entry.count, exc.message
        )
        raise AuthenticationFailedError() from exc

    guard.failed_logins.clear(ip, email)
    user = session.user
    await audit_recorder.record(AuditEntry.for_request(
        request,
        action=AuditAction.USER_LOGIN,
        user_id=user.id if user else None,
        user_email=user.email if user else email,
        resource_type="user",
        resource_id=str(user.id) if user else None,
        details={"email": email},
    ))
    return _session_response(session)


@router.post("/register")
async def register(request: Request) -> JSONResponse:
    payload = validate_payload(RegisterRequest, await read_json(request))
    email = sanitize_email(payload.email)
    name = sanitize_text(payload.name)

    try:
        session = await identity_client.sign_up(email, payload.password, name)
    except IdentityAuthError as exc:
        logger.info("Registration rejected for %s: %s", email, exc.message)
        raise AuthenticationFailedError("Registration failed") from exc

    user = session.user
    if user is not None:
        await audit_recorder.record(AuditEntry.for_request(
            request,
            action=AuditAction.USER_SIGNUP,
            user_id=user.id,
            user_email=user.email,
            resource_type="user",
            resource_id=str(user.id),
            details={"email": user.email, "name": name},
        ))
    return _session_response(session)


@router.post("/logout")
async def logout(request: Request) -> JSONResponse:
    caller = await get_caller(request)
    if caller is not None:
        await audit_recorder.record(AuditEntry.for_request(
            request,
            action=AuditAction.USER_LOGOUT,
            user_id=caller.id,
            user_email=caller.email,
            resource_type="user",
            resource_id=str(caller.id),
            details={"email": caller.email},
        ))
        try:
            await identity_client.sign_out(caller.access_token)
        except IdentityAuthError as exc:
            # Token already revoked upstream; the cookie is still cleared below
            logger.info("Sign-out rejected for %s: %s", caller.id, exc.message)

    response = JSONResponse({"success": True})
    response.delete_cookie(settings.identity.access_token_cookie)
    return response
