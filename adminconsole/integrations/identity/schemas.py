"""Pydantic schemas for the hosted identity API responses."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class IdentityUser(BaseModel):
    """A user record as returned by the identity service."""

    model_config = ConfigDict(extra="ignore")

    id: uuid.UUID
    email: str | None = None
    created_at: datetime | None = None
    last_sign_in_at: datetime | None = None
    user_metadata: dict[str, Any] = Field(default_factory=dict)


class AuthSession(BaseModel):
    """Token grant returned by password sign-in (and sign-up when auto-confirmed)."""

    model_config = ConfigDict(extra="ignore")

    access_token: str | None = None
    refresh_token: str | None = None
    expires_in: int | None = None
    token_type: str | None = None
    user: IdentityUser | None = None
