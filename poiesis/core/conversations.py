"""Conversation store — chats, messages and votes."""

from __future__ import annotations

from datetime import datetime, timezone
from functools import lru_cache
from typing import Any

import structlog

from poiesis.core.errors import Forbidden, InvalidRequest, NotFound
from poiesis.db.client import SupabaseClient, get_supabase_client
from poiesis.db.models import ChatRow, MessageRow, VoteRow

logger = structlog.get_logger()

VISIBILITIES = ("public", "private")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ConversationStore:
    """Queries over the chats, messages, votes and streams tables."""

    def __init__(self, db: SupabaseClient) -> None:
        self.db = db

    # --- Chats ---

    def get_chat(self, chat_id: str) -> ChatRow | None:
        rows = self.db.select("chats", filters={"id": chat_id}, limit=1)
        return ChatRow(**rows[0]) if rows else None

    def save_chat(
        self, chat_id: str, user_id: str, title: str, visibility: str = "private"
    ) -> ChatRow:
        if visibility not in VISIBILITIES:
            raise InvalidRequest(f"Invalid visibility '{visibility}'")
        row = self.db.insert(
            "chats",
            {
                "id": chat_id,
                "user_id": user_id,
                "title": title,
                "visibility": visibility,
                "created_at": _now(),
            },
        )
        logger.info("chat.created", chat_id=chat_id, user_id=user_id)
        return ChatRow(**row)

    def get_owned_chat(self, chat_id: str, user_id: str) -> ChatRow:
        """The chat if ``user_id`` owns it; NotFound or Forbidden otherwise."""
        chat = self.get_chat(chat_id)
        if chat is None:
            raise NotFound(f"Chat '{chat_id}' not found")
        if chat.user_id != user_id:
            raise Forbidden()
        return chat

    def get_readable_chat(self, chat_id: str, user_id: str) -> ChatRow:
        """Like ``get_owned_chat`` but public chats are readable by anyone."""
        chat = self.get_chat(chat_id)
        if chat is None:
            raise NotFound(f"Chat '{chat_id}' not found")
        if chat.visibility == "private" and chat.user_id != user_id:
            raise Forbidden()
        return chat

    def delete_chat(self, chat_id: str) -> ChatRow | None:
        """Delete a chat with its votes, messages and stream handles."""
        self.db.delete_where("votes", {"chat_id": chat_id})
        self.db.delete_where("messages", {"chat_id": chat_id})
        self.db.delete_where("streams", {"chat_id": chat_id})
        deleted = self.db.delete("chats", chat_id)
        if deleted:
            logger.info("chat.deleted", chat_id=chat_id)
        return ChatRow(**deleted) if deleted else None

    def list_chats(
        self,
        user_id: str,
        limit: int = 20,
        starting_after: str | None = None,
        ending_before: str | None = None,
    ) -> tuple[list[ChatRow], bool]:
        """Newest-first page of a user's chats and whether more exist.

        ``starting_after`` returns chats newer than the given chat,
        ``ending_before`` chats older than it.
        """
        if starting_after and ending_before:
            raise InvalidRequest("Only one of starting_after or ending_before can be provided")

        gt: dict[str, Any] = {}
        lt: dict[str, Any] = {}
        cursor_id = starting_after or ending_before
        if cursor_id:
            cursor = self.get_chat(cursor_id)
            if cursor is None:
                raise NotFound(f"Chat with id {cursor_id} not found")
            bound = {"created_at": cursor.created_at.isoformat()}
            if starting_after:
                gt = bound
            else:
                lt = bound

        rows = self.db.select(
            "chats",
            filters={"user_id": user_id},
            order_by="created_at",
            ascending=False,
            limit=limit + 1,
            gt=gt,
            lt=lt,
        )
        has_more = len(rows) > limit
        return [ChatRow(**row) for row in rows[:limit]], has_more

    def update_visibility(self, chat_id: str, visibility: str) -> ChatRow:
        if visibility not in VISIBILITIES:
            raise InvalidRequest(f"Invalid visibility '{visibility}'")
        row = self.db.update("chats", chat_id, {"visibility": visibility})
        if row is None:
            raise NotFound(f"Chat '{chat_id}' not found")
        return ChatRow(**row)

    # --- Messages ---

    def save_messages(self, messages: list[dict[str, Any]]) -> list[MessageRow]:
        saved = []
        for message in messages:
            row = self.db.insert("messages", {"created_at": _now(), **message})
            saved.append(MessageRow(**row))
        return saved

    def get_messages(self, chat_id: str) -> list[MessageRow]:
        rows = self.db.select(
            "messages", filters={"chat_id": chat_id}, order_by="created_at", ascending=True
        )
        return [MessageRow(**row) for row in rows]

    def get_message(self, message_id: str) -> MessageRow | None:
        rows = self.db.select("messages", filters={"id": message_id}, limit=1)
        return MessageRow(**rows[0]) if rows else None

    def last_message(self, chat_id: str) -> MessageRow | None:
        rows = self.db.select(
            "messages",
            filters={"chat_id": chat_id},
            order_by="created_at",
            ascending=False,
            limit=1,
        )
        return MessageRow(**rows[0]) if rows else None

    def delete_messages_after(self, chat_id: str, timestamp: datetime) -> int:
        """Delete messages created at or after ``timestamp`` together with their votes."""
        rows = self.db.select(
            "messages",
            filters={"chat_id": chat_id},
            gte={"created_at": timestamp.isoformat()},
        )
        message_ids = [row["id"] for row in rows]
        if not message_ids:
            return 0

        self.db.delete_where("votes", {"chat_id": chat_id}, in_={"message_id": message_ids})
        self.db.delete_where("messages", {"chat_id": chat_id}, in_={"id": message_ids})
        logger.info("messages.truncated", chat_id=chat_id, count=len(message_ids))
        return len(message_ids)

    # --- Votes ---

    def vote_message(self, chat_id: str, message_id: str, upvoted: bool) -> VoteRow:
        row = self.db.upsert(
            "votes",
            {"chat_id": chat_id, "message_id": message_id, "is_upvoted": upvoted},
            on_conflict="chat_id,message_id",
        )
        return VoteRow(**row)

    def get_votes(self, chat_id: str) -> list[VoteRow]:
        return [VoteRow(**row) for row in self.db.select("votes", filters={"chat_id": chat_id})]


@lru_cache
def get_conversation_store() -> ConversationStore:
    """Get cached conversation store instance."""
    return ConversationStore(get_supabase_client())
