"""Request schemas for every mutating or filtered endpoint.

All models forbid unknown fields: a payload with an unrecognized key is
rejected as a whole. `validate_payload` reports every offending field at
once, never just the first.
"""

from __future__ import annotations

import json
import re
import uuid
from typing import Annotated, Any, Literal, TypeVar

from fastapi import Request
from pydantic import (
    AfterValidator,
    AwareDatetime,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from adminconsole.errors import ValidationFailedError
from adminconsole.models.enums import Role
from adminconsole.security.sanitize import sanitize_email

M = TypeVar("M", bound=BaseModel)

_PASSWORD_STRENGTH = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)")


class StrictModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


# ── Auth ─────────────────────────────────────────────────────────────


def _check_email(v: str) -> str:
    if not sanitize_email(v):
        raise ValueError("Invalid email address")
    return v


Email = Annotated[str, Field(max_length=255), AfterValidator(_check_email)]


class LoginRequest(StrictModel):
    email: Email
    password: str = Field(min_length=8, max_length=128)


class RegisterRequest(StrictModel):
    email: Email
    password: str = Field(min_length=8, max_length=128)
    name: str = Field(min_length=2, max_length=100)

    @field_validator("password")
    @classmethod
    def password_strength(cls, v: str) -> str:
        if not _PASSWORD_STRENGTH.match(v):
            raise ValueError("Password must contain uppercase, lowercase, and number")
        return v


# ── Admin ────────────────────────────────────────────────────────────


class UpdateUserRoleRequest(StrictModel):
    role: Role


class RevokeSubscriptionRequest(StrictModel):
    """Only revocation exists; this endpoint can never promote a user."""

    action: Literal["revoke"]


class AuditLogFilter(StrictModel):
    user_id: uuid.UUID | None = None
    action: str | None = Field(default=None, max_length=100)
    resource_type: str | None = Field(default=None, max_length=100)
    start_date: AwareDatetime | None = None
    end_date: AwareDatetime | None = None
    limit: int = Field(default=50, ge=1, le=1000)
    offset: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def check_range(self) -> AuditLogFilter:
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


# ── Helpers ──────────────────────────────────────────────────────────


def _issues(exc: ValidationError) -> list[dict[str, str]]:
    issues = []
    for err in exc.errors():
        field = ".".join(str(part) for part in err.get("loc", ()))
        message = err.get("msg", "Invalid value")
        # Pydantic prefixes custom ValueError messages
        message = message.removeprefix("Value error, ")
        issues.append({"field": field or "body", "message": message})
    return issues


def validate_payload(model: type[M], data: Any) -> M:
    """Validate `data` against `model` or raise ValidationFailedError with all issues."""
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise ValidationFailedError(_issues(exc)) from exc


async def read_json(request: Request) -> Any:
    """Parse the request body, reporting malformed JSON as a validation failure."""
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ValidationFailedError([{"field": "body", "message": "Invalid JSON"}]) from exc


def validate_user_id(raw: str) -> uuid.UUID:
    try:
        return uuid.UUID(raw)
    except (ValueError, TypeError) as exc:
        raise ValidationFailedError([{"field": "user_id", "message": "Invalid user ID format"}]) from exc


def format_validation_errors(issues: list[dict[str, str]]) -> str:
    """One-line rendering for logs: `field: message, field: message`."""
    return ", ".join(f"{i['field']}: {i['message']}" for i in issues)
