"""Database models / type definitions.

These mirror the Supabase tables for type safety in Python code.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class ChatRow(BaseModel):
    """Row from the chats table."""

    id: UUID
    user_id: str
    title: str
    visibility: str = "private"
    created_at: datetime


class MessageRow(BaseModel):
    """Row from the messages table."""

    id: UUID
    chat_id: UUID
    role: str
    parts: list[dict[str, Any]]
    attachments: list[dict[str, Any]] = Field(default_factory=list)
    created_at: datetime

    def text(self) -> str:
        """Concatenated text parts, newline separated."""
        return "\n".join(
            part.get("text") or "" for part in self.parts if part.get("type") == "text"
        )


class VoteRow(BaseModel):
    """Row from the votes table."""

    chat_id: UUID
    message_id: UUID
    is_upvoted: bool


class StreamRow(BaseModel):
    """Row from the streams table."""

    id: UUID
    chat_id: UUID
    created_at: datetime


class TokenUsageRow(BaseModel):
    """Row from the token_usage table."""

    id: UUID
    user_id: str
    chat_id: UUID | None = None
    prompt_tokens: int = Field(default=0, ge=0)
    completion_tokens: int = Field(default=0, ge=0)
    created_at: datetime

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class AdminPromptRow(BaseModel):
    """Row from the admin_prompts table."""

    id: UUID
    text: str
    active: bool
    version: int = Field(ge=1)
    created_by: str | None = None
    created_at: datetime


class MemoryRow(BaseModel):
    """Row returned by the match_memories function."""

    id: UUID
    user_id: str
    content: str
    distance: float | None = None
    created_at: datetime | None = None
