"""Prompt Assembler — composes the per-request system instruction.

Order of the composed instruction:
    active prompt (or fallback)
    request hints block
    artifact-authoring instructions (non-reasoning variants only)
    relevant past conversations (only when recall found something)

Sections are separated by a blank line. The composed string is never cached;
only the active prompt read goes through the prompt cache.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

import structlog

from poiesis.core.entitlements import REASONING_MODEL
from poiesis.core.memory import MemoryStore, get_memory_store
from poiesis.core.prompts import ActivePromptStore, get_prompt_store

logger = structlog.get_logger()

FALLBACK_PROMPT = "You are a friendly assistant! Keep your responses concise and helpful."

ARTIFACTS_PROMPT = """\
Artifacts are a side panel next to the conversation where longer content is \
written and edited, such as documents, code, or spreadsheets. Changes made \
there are shown to the user in real time.

Use an artifact for substantial self-contained content (roughly more than ten \
lines) or content the user is likely to save or reuse. Keep explanations, \
short answers and conversational replies in the chat itself.

When writing code, use fenced code blocks and state the language. Do not \
update an artifact immediately after creating it; wait for the user's \
feedback or an explicit request."""

MEMORY_HEADER = "Relevant past conversations (ignore if not relevant to the current query):"


@dataclass(frozen=True)
class RequestHints:
    """Coarse origin of the request, supplied by the edge."""

    latitude: str | None = None
    longitude: str | None = None
    city: str | None = None
    country: str | None = None

    def render(self) -> str:
        return (
            "About the origin of user's request:\n"
            f"- lat: {self.latitude or ''}\n"
            f"- lon: {self.longitude or ''}\n"
            f"- city: {self.city or ''}\n"
            f"- country: {self.country or ''}"
        )


class PromptAssembler:
    def __init__(self, prompts: ActivePromptStore, memory: MemoryStore) -> None:
        self.prompts = prompts
        self.memory = memory

    def base_prompt(self) -> str:
        """Active prompt text, or the fallback when none is active or the read fails."""
        try:
            active = self.prompts.get_active_cached()
        except Exception as e:
            logger.error("assembler.active_prompt_failed", error=str(e))
            return FALLBACK_PROMPT

        if active is None or not active.text.strip():
            logger.warning("assembler.no_active_prompt")
            return FALLBACK_PROMPT
        return active.text

    async def memory_block(self, user_id: str | None, query_text: str | None) -> str | None:
        if not user_id or not query_text or not query_text.strip():
            return None

        outcome = await self.memory.recall(user_id, query_text)
        if not outcome.ok or not outcome.value:
            return None

        lines = "\n".join(f"- {fragment.content}" for fragment in outcome.value)
        return f"{MEMORY_HEADER}\n{lines}"

    async def assemble(
        self,
        model_variant: str,
        hints: RequestHints,
        user_id: str | None = None,
        query_text: str | None = None,
    ) -> str:
        sections = [self.base_prompt(), hints.render()]

        if model_variant != REASONING_MODEL:
            sections.append(ARTIFACTS_PROMPT)

        block = await self.memory_block(user_id, query_text)
        if block:
            sections.append(block)

        return "\n\n".join(sections)


@lru_cache
def get_prompt_assembler() -> PromptAssembler:
    """Get cached prompt assembler instance."""
    return PromptAssembler(get_prompt_store(), get_memory_store())
