"""Security module: input cleaning and abuse protection, plus the audit recorder."""

from adminconsole.security.abuse import AbuseGuard
from adminconsole.security.audit import audit_recorder

__all__ = ["AbuseGuard", "audit_recorder"]
