"""
Klio - Supabase Client.

Low-level database access. All queries go through here.
"""

from dataclasses import dataclass
from datetime import datetime, timezone

from supabase import Client, create_client

from klio.config import settings

# Singleton client instance
_service_client: Client | None = None


def get_service_client() -> Client:
    """
    Get the service-role Supabase client.

    Used for token validation and catalog reads. Uses singleton pattern to
    reuse connection.
    """
    global _service_client

    if _service_client is None:
        _service_client = create_client(
            settings.supabase_url,
            settings.supabase_service_role_key,
        )

    return _service_client


def get_authenticated_client(access_token: str) -> Client:
    """
    Get a Supabase client that acts as the given user.

    Row-level security applies to every query made through it.
    """
    client = create_client(settings.supabase_url, settings.supabase_anon_key)
    client.postgrest.auth(access_token)
    return client


@dataclass(frozen=True)
class SelectionTable:
    """Join table holding one user's selections for a catalog."""
    table: str         # e.g. user_interests
    id_column: str     # e.g. interest_id
    catalog: str       # e.g. interests


# =============================================================================
# Selection Operations
# =============================================================================


async def get_selection_ids(client: Client, link: SelectionTable, user_id: str) -> list[str]:
    """Get the IDs a user has selected for one catalog."""
    response = client.table(link.table).select(link.id_column).eq("user_id", user_id).execute()
    return [row[link.id_column] for row in response.data or []]


async def find_known_ids(client: Client, catalog: str, ids: list[str]) -> set[str]:
    """Return the subset of `ids` that exist in the catalog table."""
    if not ids:
        return set()
    response = client.table(catalog).select("id").in_("id", ids).execute()
    return {row["id"] for row in response.data or []}


async def replace_selection_ids(
    client: Client, link: SelectionTable, user_id: str, ids: list[str]
) -> None:
    """
    Replace a user's whole selection set.

    Delete then insert. An empty `ids` clears the set.
    """
    client.table(link.table).delete().eq("user_id", user_id).execute()

    if ids:
        now = datetime.now(timezone.utc).isoformat()
        rows = [{"user_id": user_id, link.id_column: item_id, "created_at": now} for item_id in ids]
        client.table(link.table).insert(rows).execute()


# =============================================================================
# Profile Operations
# =============================================================================


async def get_profile(client: Client, user_id: str) -> dict | None:
    """Get a user's profile row."""
    response = client.table("profiles").select("*").eq("user_id", user_id).execute()
    return response.data[0] if response.data else None


async def upsert_profile(client: Client, user_id: str, updates: dict) -> dict:
    """
    Create or update a user's profile in a single write.

    All fields in `updates` land atomically.
    """
    data = {
        "user_id": user_id,
        **updates,
        "updated_at": datetime.now(timezone.utc).isoformat(),
    }
    response = client.table("profiles").upsert(data, on_conflict="user_id").execute()
    return response.data[0] if response.data else data


# =============================================================================
# Catalog Operations
# =============================================================================


async def list_catalog(
    client: Client,
    table: str,
    columns: str,
    order: str,
    parent_column: str | None = None,
    parent_ids: list[str] | None = None,
) -> list[dict]:
    """List catalog rows, optionally restricted to some parents."""
    query = client.table(table).select(columns)

    if parent_column and parent_ids:
        query = query.in_(parent_column, parent_ids)

    response = query.order(order).execute()
    return response.data or []
