"""Admin endpoints: system prompt versions and daily token usage."""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException

from poiesis.api.deps import get_admin_user, http_error
from poiesis.api.models import (
    AdminPromptCreate,
    AdminPromptResponse,
    AdminPromptUpdate,
    TokenUsageReport,
    UserTokenUsage,
)
from poiesis.core.auth import User
from poiesis.core.errors import ChatError
from poiesis.core.prompts import ActivePromptStore, get_prompt_store
from poiesis.core.usage import UsageLedger, get_usage_ledger

router = APIRouter()


@router.get("/prompts", response_model=list[AdminPromptResponse])
async def list_prompts(
    admin: User = Depends(get_admin_user),
    store: ActivePromptStore = Depends(get_prompt_store),
) -> list[AdminPromptResponse]:
    """All prompt versions, newest first."""
    return [AdminPromptResponse(**p.model_dump()) for p in store.list()]


@router.post("/prompts", response_model=AdminPromptResponse, status_code=201)
async def create_prompt(
    data: AdminPromptCreate,
    admin: User = Depends(get_admin_user),
    store: ActivePromptStore = Depends(get_prompt_store),
) -> AdminPromptResponse:
    try:
        prompt = store.create(data.text, creator_id=admin.id, make_active=data.active)
    except ChatError as e:
        raise http_error(e)
    return AdminPromptResponse(**prompt.model_dump())


@router.get("/prompts/active", response_model=AdminPromptResponse)
async def get_active_prompt(
    admin: User = Depends(get_admin_user),
    store: ActivePromptStore = Depends(get_prompt_store),
) -> AdminPromptResponse:
    prompt = store.get_active()
    if prompt is None:
        raise HTTPException(status_code=404, detail="No active prompt")
    return AdminPromptResponse(**prompt.model_dump())


@router.get("/prompts/{prompt_id}", response_model=AdminPromptResponse)
async def get_prompt(
    prompt_id: str,
    admin: User = Depends(get_admin_user),
    store: ActivePromptStore = Depends(get_prompt_store),
) -> AdminPromptResponse:
    prompt = store.get(prompt_id)
    if prompt is None:
        raise HTTPException(status_code=404, detail=f"Prompt '{prompt_id}' not found")
    return AdminPromptResponse(**prompt.model_dump())


@router.put("/prompts/{prompt_id}", response_model=AdminPromptResponse)
async def update_prompt(
    prompt_id: str,
    data: AdminPromptUpdate,
    admin: User = Depends(get_admin_user),
    store: ActivePromptStore = Depends(get_prompt_store),
) -> AdminPromptResponse:
    """Change text (new version) and/or the active flag."""
    try:
        prompt = store.update(prompt_id, text=data.text, active=data.active)
    except ChatError as e:
        raise http_error(e)
    return AdminPromptResponse(**prompt.model_dump())


@router.delete("/prompts/{prompt_id}", status_code=204)
async def delete_prompt(
    prompt_id: str,
    admin: User = Depends(get_admin_user),
    store: ActivePromptStore = Depends(get_prompt_store),
) -> None:
    try:
        store.delete(prompt_id)
    except ChatError as e:
        raise http_error(e)


@router.get("/tokens", response_model=TokenUsageReport)
async def token_usage_today(
    admin: User = Depends(get_admin_user),
    ledger: UsageLedger = Depends(get_usage_ledger),
) -> TokenUsageReport:
    """Per-user token totals for the current UTC day."""
    now = datetime.now(timezone.utc)
    rows = ledger.usage_per_user_today(now)
    return TokenUsageReport(
        date=now.date().isoformat(),
        users=[UserTokenUsage(**row) for row in rows],
    )
