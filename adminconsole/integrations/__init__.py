"""Clients for the managed backend's hosted services."""
