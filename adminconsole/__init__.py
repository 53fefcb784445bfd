"""Admin console API for a multi-tenant SaaS backend."""
