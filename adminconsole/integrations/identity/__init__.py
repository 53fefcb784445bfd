"""Hosted identity provider client."""

from adminconsole.integrations.identity.client import IdentityAuthError, IdentityClient, identity_client
from adminconsole.integrations.identity.schemas import AuthSession, IdentityUser

__all__ = ["AuthSession", "IdentityAuthError", "IdentityClient", "IdentityUser", "identity_client"]
