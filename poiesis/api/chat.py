"""Chat endpoints: submit, reconnect, delete, history, visibility, votes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from fastapi.responses import StreamingResponse

from poiesis.api.deps import get_current_user, get_request_hints, http_error
from poiesis.api.models import (
    ChatRequest,
    ChatResponse,
    HistoryResponse,
    MessageResponse,
    TruncateResponse,
    VisibilityUpdate,
    VoteRequest,
    VoteResponse,
)
from poiesis.core.assembler import RequestHints
from poiesis.core.auth import User
from poiesis.core.conversations import ConversationStore, get_conversation_store
from poiesis.core.errors import ChatError
from poiesis.core.pipeline import ChatPipeline, get_pipeline

router = APIRouter()

EVENT_STREAM = "text/event-stream"


@router.post("/chat")
async def submit_chat(
    data: ChatRequest,
    user: User = Depends(get_current_user),
    hints: RequestHints = Depends(get_request_hints),
    pipeline: ChatPipeline = Depends(get_pipeline),
) -> StreamingResponse:
    """Submit a user turn and stream the assistant reply."""
    try:
        submission = await pipeline.submit(
            user,
            chat_id=str(data.id),
            message=data.message.model_dump(mode="json"),
            model_variant=data.selected_chat_model,
            visibility=data.selected_visibility_type,
            hints=hints,
        )
    except ChatError as e:
        raise http_error(e)

    return StreamingResponse(
        submission.events,
        media_type=EVENT_STREAM,
        headers={"X-Stream-ID": submission.stream_id},
    )


@router.get("/chat")
async def resume_chat(
    chat_id: str = Query(...),
    user: User = Depends(get_current_user),
    pipeline: ChatPipeline = Depends(get_pipeline),
) -> Response:
    """Reconnect to the chat's latest generation."""
    try:
        events = await pipeline.resume(user, chat_id)
    except ChatError as e:
        raise http_error(e)

    if events is None:
        return Response(status_code=204)
    return StreamingResponse(events, media_type=EVENT_STREAM)


@router.delete("/chat", response_model=ChatResponse)
async def delete_chat(
    id: str = Query(...),
    user: User = Depends(get_current_user),
    conversations: ConversationStore = Depends(get_conversation_store),
) -> ChatResponse:
    """Delete a chat with its messages, votes and streams."""
    try:
        chat = conversations.get_owned_chat(id, user.id)
    except ChatError as e:
        raise http_error(e)
    conversations.delete_chat(id)
    return ChatResponse(**chat.model_dump())


@router.get("/history", response_model=HistoryResponse)
async def chat_history(
    limit: int = Query(default=10, ge=1, le=100),
    starting_after: str | None = None,
    ending_before: str | None = None,
    user: User = Depends(get_current_user),
    conversations: ConversationStore = Depends(get_conversation_store),
) -> HistoryResponse:
    """Page through the caller's chats, newest first."""
    try:
        chats, has_more = conversations.list_chats(
            user.id,
            limit=limit,
            starting_after=starting_after,
            ending_before=ending_before,
        )
    except ChatError as e:
        raise http_error(e)
    return HistoryResponse(
        chats=[ChatResponse(**chat.model_dump()) for chat in chats],
        has_more=has_more,
    )


@router.patch("/chat/{chat_id}/visibility", response_model=ChatResponse)
async def update_visibility(
    chat_id: str,
    data: VisibilityUpdate,
    user: User = Depends(get_current_user),
    conversations: ConversationStore = Depends(get_conversation_store),
) -> ChatResponse:
    try:
        conversations.get_owned_chat(chat_id, user.id)
        chat = conversations.update_visibility(chat_id, data.visibility)
    except ChatError as e:
        raise http_error(e)
    return ChatResponse(**chat.model_dump())


@router.get("/chat/{chat_id}/messages", response_model=list[MessageResponse])
async def list_messages(
    chat_id: str,
    user: User = Depends(get_current_user),
    conversations: ConversationStore = Depends(get_conversation_store),
) -> list[MessageResponse]:
    """Messages of a chat, oldest first."""
    try:
        conversations.get_readable_chat(chat_id, user.id)
    except ChatError as e:
        raise http_error(e)
    return [MessageResponse(**m.model_dump()) for m in conversations.get_messages(chat_id)]


@router.delete("/messages/{message_id}/trailing", response_model=TruncateResponse)
async def delete_trailing_messages(
    message_id: str,
    user: User = Depends(get_current_user),
    conversations: ConversationStore = Depends(get_conversation_store),
) -> TruncateResponse:
    """Drop a message and everything after it, ahead of an edit-and-resubmit."""
    message = conversations.get_message(message_id)
    if message is None:
        raise HTTPException(status_code=404, detail=f"Message '{message_id}' not found")

    try:
        conversations.get_owned_chat(str(message.chat_id), user.id)
    except ChatError as e:
        raise http_error(e)

    deleted = conversations.delete_messages_after(str(message.chat_id), message.created_at)
    return TruncateResponse(deleted=deleted)


@router.get("/vote", response_model=list[VoteResponse])
async def get_votes(
    chat_id: str = Query(...),
    user: User = Depends(get_current_user),
    conversations: ConversationStore = Depends(get_conversation_store),
) -> list[VoteResponse]:
    try:
        conversations.get_owned_chat(chat_id, user.id)
    except ChatError as e:
        raise http_error(e)
    return [VoteResponse(**vote.model_dump()) for vote in conversations.get_votes(chat_id)]


@router.patch("/vote", response_model=VoteResponse)
async def vote_message(
    data: VoteRequest,
    user: User = Depends(get_current_user),
    conversations: ConversationStore = Depends(get_conversation_store),
) -> VoteResponse:
    try:
        conversations.get_owned_chat(str(data.chat_id), user.id)
    except ChatError as e:
        raise http_error(e)
    vote = conversations.vote_message(
        str(data.chat_id), str(data.message_id), upvoted=data.type == "up"
    )
    return VoteResponse(**vote.model_dump())
