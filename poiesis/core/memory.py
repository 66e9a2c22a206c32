"""Memory Store — per-user retrieval over embedded past turns (pgvector)."""

from __future__ import annotations

from datetime import datetime, timezone
from functools import lru_cache

import structlog

from poiesis.config import get_settings
from poiesis.core.llm import ModelProvider, get_model_provider
from poiesis.core.outcome import Outcome
from poiesis.db.client import SupabaseClient, get_supabase_client
from poiesis.db.models import MemoryRow

logger = structlog.get_logger()


class MemoryStore:
    """Writes memory fragments and recalls the nearest ones for a user.

    Both paths are best-effort: they report an ``Outcome`` instead of raising,
    so a failing embedding service never breaks a chat turn.
    """

    def __init__(self, db: SupabaseClient, provider: ModelProvider, recall_limit: int = 5) -> None:
        self.db = db
        self.provider = provider
        self.recall_limit = recall_limit

    async def remember(self, user_id: str, text: str) -> Outcome:
        if not text.strip():
            return Outcome.skipped()

        try:
            embedding = await self.provider.embed(text)
            row = self.db.insert(
                "memories",
                {
                    "user_id": user_id,
                    "content": text,
                    "embedding": embedding,
                    "created_at": datetime.now(timezone.utc).isoformat(),
                },
            )
        except Exception as e:
            logger.warning("memory.write_failed", user_id=user_id, error=str(e))
            return Outcome.failed(e)

        logger.debug("memory.written", user_id=user_id, id=row.get("id"))
        return Outcome.succeeded(row)

    async def recall(self, user_id: str, query: str, limit: int | None = None) -> Outcome:
        """Nearest fragments for the user, ascending by distance."""
        if not query.strip():
            return Outcome.succeeded([])

        try:
            embedding = await self.provider.embed(query)
            rows = self.db.rpc(
                "match_memories",
                {
                    "query_embedding": embedding,
                    "match_user_id": user_id,
                    "match_count": limit or self.recall_limit,
                },
            )
            fragments = [MemoryRow(**row) for row in rows or []]
        except Exception as e:
            logger.warning("memory.recall_failed", user_id=user_id, error=str(e))
            return Outcome.failed(e)

        fragments.sort(key=lambda f: f.distance if f.distance is not None else float("inf"))
        return Outcome.succeeded(fragments)


@lru_cache
def get_memory_store() -> MemoryStore:
    """Get cached memory store instance."""
    return MemoryStore(
        get_supabase_client(),
        get_model_provider(),
        recall_limit=get_settings().memory_recall_limit,
    )
