"""Supabase client initialization and helper methods."""

from __future__ import annotations

from functools import lru_cache
from typing import Any

import structlog
from supabase import Client, create_client

from poiesis.config import get_settings

logger = structlog.get_logger()


class SupabaseClient:
    """Wrapper around the Supabase client with convenience methods."""

    def __init__(self, client: Client) -> None:
        self._client = client

    @property
    def client(self) -> Client:
        """Access the raw Supabase client."""
        return self._client

    def insert(self, table: str, data: dict[str, Any]) -> dict[str, Any]:
        """Insert a record and return the created row."""
        result = self._client.table(table).insert(data).execute()
        return result.data[0]

    def upsert(self, table: str, data: dict[str, Any], on_conflict: str) -> dict[str, Any]:
        """Insert or update a record keyed by the ``on_conflict`` columns."""
        result = self._client.table(table).upsert(data, on_conflict=on_conflict).execute()
        return result.data[0]

    def select(
        self,
        table: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
        ascending: bool = True,
        limit: int | None = None,
        gte: dict[str, Any] | None = None,
        gt: dict[str, Any] | None = None,
        lt: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """Select records with optional filters, range bounds, ordering, and limit."""
        query = self._client.table(table).select("*")

        if filters:
            for key, value in filters.items():
                query = query.eq(key, value)
        for key, value in (gte or {}).items():
            query = query.gte(key, value)
        for key, value in (gt or {}).items():
            query = query.gt(key, value)
        for key, value in (lt or {}).items():
            query = query.lt(key, value)

        if order_by:
            query = query.order(order_by, desc=not ascending)

        if limit:
            query = query.limit(limit)

        result = query.execute()
        return result.data

    def update(self, table: str, id: str, data: dict[str, Any]) -> dict[str, Any] | None:
        """Update a record by ID. Returns None when no row matched."""
        result = self._client.table(table).update(data).eq("id", id).execute()
        return result.data[0] if result.data else None

    def delete(self, table: str, id: str) -> dict[str, Any] | None:
        """Delete a record by ID and return it, or None when no row matched."""
        result = self._client.table(table).delete().eq("id", id).execute()
        return result.data[0] if result.data else None

    def delete_where(
        self,
        table: str,
        filters: dict[str, Any],
        in_: dict[str, list[Any]] | None = None,
    ) -> list[dict[str, Any]]:
        """Delete every record matching the equality and membership filters."""
        query = self._client.table(table).delete()
        for key, value in filters.items():
            query = query.eq(key, value)
        for key, values in (in_ or {}).items():
            query = query.in_(key, values)
        return query.execute().data

    def rpc(self, function: str, params: dict[str, Any]) -> Any:
        """Call a Postgres function; runs in a single database transaction."""
        return self._client.rpc(function, params).execute().data


@lru_cache
def get_supabase_client() -> SupabaseClient:
    """Get cached Supabase client instance."""
    settings = get_settings()
    client = create_client(settings.supabase_url, settings.supabase_key)
    logger.info("supabase.connected", url=settings.supabase_url)
    return SupabaseClient(client)
