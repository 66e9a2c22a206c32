"""Active-Prompt Store — versioned system instructions with a single active row.

Every mutation that can set ``active = true`` runs as one store-side function
(``create_admin_prompt`` / ``update_admin_prompt``) that first clears the flag
on all other rows, so concurrent activations serialize in the database.
"""

from __future__ import annotations

import threading
from functools import lru_cache
from typing import Callable

import structlog

from poiesis.core.errors import InvalidRequest, NotFound
from poiesis.db.client import SupabaseClient, get_supabase_client
from poiesis.db.models import AdminPromptRow

logger = structlog.get_logger()


class ActivePromptCache:
    """Process-wide single-slot cache of the active prompt.

    ``None`` (no active prompt) is a cacheable value. A load that races with an
    ``invalidate()`` is discarded instead of being stored.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._generation = 0
        self._loaded = False
        self._value: AdminPromptRow | None = None

    def get(self, loader: Callable[[], AdminPromptRow | None]) -> AdminPromptRow | None:
        with self._lock:
            if self._loaded:
                return self._value
            generation = self._generation

        value = loader()

        with self._lock:
            if generation == self._generation:
                self._value = value
                self._loaded = True
        return value

    def invalidate(self) -> None:
        with self._lock:
            self._generation += 1
            self._loaded = False
            self._value = None
        logger.debug("prompt_cache.invalidated")


class ActivePromptStore:
    """CRUD over the admin_prompts table, invariant: at most one active row."""

    def __init__(self, db: SupabaseClient, cache: ActivePromptCache) -> None:
        self.db = db
        self.cache = cache

    def create(self, text: str, creator_id: str | None, make_active: bool = False) -> AdminPromptRow:
        text = text.strip()
        if not text:
            raise InvalidRequest("Prompt text is required")

        rows = self.db.rpc(
            "create_admin_prompt",
            {"p_text": text, "p_created_by": creator_id, "p_active": make_active},
        )
        prompt = AdminPromptRow(**rows[0])
        logger.info("prompt.created", id=str(prompt.id), active=prompt.active)

        if make_active:
            self.cache.invalidate()
        return prompt

    def update(
        self,
        prompt_id: str,
        text: str | None = None,
        active: bool | None = None,
    ) -> AdminPromptRow:
        """Apply text and/or active changes; supplying text bumps the version."""
        if text is None and active is None:
            raise InvalidRequest("No update fields provided (text or active)")
        if text is not None:
            text = text.strip()
            if not text:
                raise InvalidRequest("Prompt text cannot be empty")

        rows = self.db.rpc(
            "update_admin_prompt",
            {"p_id": prompt_id, "p_text": text, "p_active": active},
        )
        if not rows:
            raise NotFound(f"Prompt '{prompt_id}' not found")

        prompt = AdminPromptRow(**rows[0])
        logger.info(
            "prompt.updated",
            id=prompt_id,
            version=prompt.version,
            active=prompt.active,
            text_changed=text is not None,
        )

        # A text edit of the active row changes what the assembler must serve.
        if active is not None or prompt.active:
            self.cache.invalidate()
        return prompt

    def delete(self, prompt_id: str) -> AdminPromptRow:
        """Delete a prompt. Deleting the active one leaves no active prompt."""
        deleted = self.db.delete("admin_prompts", prompt_id)
        if not deleted:
            raise NotFound(f"Prompt '{prompt_id}' not found")

        prompt = AdminPromptRow(**deleted)
        logger.info("prompt.deleted", id=prompt_id, was_active=prompt.active)
        self.cache.invalidate()
        return prompt

    def get(self, prompt_id: str) -> AdminPromptRow | None:
        rows = self.db.select("admin_prompts", filters={"id": prompt_id}, limit=1)
        return AdminPromptRow(**rows[0]) if rows else None

    def list(self) -> list[AdminPromptRow]:
        """All prompt versions, newest first."""
        rows = self.db.select("admin_prompts", order_by="created_at", ascending=False)
        return [AdminPromptRow(**row) for row in rows]

    def get_active(self) -> AdminPromptRow | None:
        """Most recently created active row; tolerates more than one active."""
        rows = self.db.select(
            "admin_prompts",
            filters={"active": True},
            order_by="created_at",
            ascending=False,
            limit=1,
        )
        return AdminPromptRow(**rows[0]) if rows else None

    def get_active_cached(self) -> AdminPromptRow | None:
        """Cached accessor used by the prompt assembler."""
        return self.cache.get(self.get_active)


@lru_cache
def get_prompt_cache() -> ActivePromptCache:
    """The process-wide active prompt cache."""
    return ActivePromptCache()


@lru_cache
def get_prompt_store() -> ActivePromptStore:
    """Get cached prompt store instance."""
    return ActivePromptStore(get_supabase_client(), get_prompt_cache())
