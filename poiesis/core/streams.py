"""Stream Registry — durable record of generation stream ids per chat."""

from __future__ import annotations

from datetime import datetime, timezone
from functools import lru_cache
from uuid import uuid4

import structlog

from poiesis.db.client import SupabaseClient, get_supabase_client
from poiesis.db.models import StreamRow

logger = structlog.get_logger()


class StreamRegistry:
    """Append-only list of stream handles; ordering is creation order."""

    def __init__(self, db: SupabaseClient) -> None:
        self.db = db

    def create_handle(self, chat_id: str) -> str:
        stream_id = str(uuid4())
        self.db.insert(
            "streams",
            {
                "id": stream_id,
                "chat_id": chat_id,
                "created_at": datetime.now(timezone.utc).isoformat(),
            },
        )
        logger.info("streams.created", chat_id=chat_id, stream_id=stream_id)
        return stream_id

    def list_ids(self, chat_id: str) -> list[str]:
        rows = self.db.select(
            "streams", filters={"chat_id": chat_id}, order_by="created_at", ascending=True
        )
        return [str(StreamRow(**row).id) for row in rows]

    def latest(self, chat_id: str) -> str | None:
        ids = self.list_ids(chat_id)
        return ids[-1] if ids else None


@lru_cache
def get_stream_registry() -> StreamRegistry:
    """Get cached stream registry instance."""
    return StreamRegistry(get_supabase_client())
