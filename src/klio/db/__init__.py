"""Klio database access (Supabase)."""

from .client import get_authenticated_client, get_service_client

__all__ = ["get_authenticated_client", "get_service_client"]
