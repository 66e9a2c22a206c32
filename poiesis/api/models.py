"""Pydantic request/response models for the API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, Field, StrictBool

from poiesis.core.entitlements import CHAT_MODEL


# --- Chat ---


class MessagePart(BaseModel):
    type: str
    text: str | None = None


class IncomingMessage(BaseModel):
    """The user turn being submitted."""

    id: UUID
    role: Literal["user"] = "user"
    parts: list[MessagePart] = Field(..., min_length=1)
    attachments: list[dict[str, Any]] = Field(default_factory=list)


class ChatRequest(BaseModel):
    id: UUID
    message: IncomingMessage
    selected_chat_model: Literal["chat-model", "chat-model-reasoning"] = CHAT_MODEL
    selected_visibility_type: Literal["public", "private"] = "private"


class ChatResponse(BaseModel):
    id: UUID
    user_id: str
    title: str
    visibility: str
    created_at: datetime


class HistoryResponse(BaseModel):
    chats: list[ChatResponse]
    has_more: bool


class VisibilityUpdate(BaseModel):
    visibility: Literal["public", "private"]


class MessageResponse(BaseModel):
    id: UUID
    chat_id: UUID
    role: str
    parts: list[dict[str, Any]]
    attachments: list[dict[str, Any]] = Field(default_factory=list)
    created_at: datetime


class TruncateResponse(BaseModel):
    deleted: int


class VoteRequest(BaseModel):
    chat_id: UUID
    message_id: UUID
    type: Literal["up", "down"]


class VoteResponse(BaseModel):
    chat_id: UUID
    message_id: UUID
    is_upvoted: bool


# --- Admin prompts ---


class AdminPromptCreate(BaseModel):
    """Create a new prompt version; optionally make it the active one."""

    text: str = Field(..., min_length=1)
    active: StrictBool = False


class AdminPromptUpdate(BaseModel):
    """Partial update. Supplying text bumps the version."""

    text: str | None = None
    active: StrictBool | None = None


class AdminPromptResponse(BaseModel):
    id: UUID
    text: str
    active: bool
    version: int
    created_by: str | None = None
    created_at: datetime


# --- Tokens ---


class UserTokenUsage(BaseModel):
    user_id: str
    total_prompt_tokens: int
    total_completion_tokens: int
    total_tokens: int


class TokenUsageReport(BaseModel):
    date: str
    users: list[UserTokenUsage]

