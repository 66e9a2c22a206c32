"""Completion Finalizer — persists the assistant turn and records usage."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

import structlog

from poiesis.core.conversations import ConversationStore, get_conversation_store
from poiesis.core.errors import PersistenceFailure
from poiesis.core.llm import TokenUsage
from poiesis.core.outcome import Outcome
from poiesis.core.usage import UsageLedger, get_usage_ledger

logger = structlog.get_logger()


@dataclass(frozen=True)
class FinalizeResult:
    message_saved: bool
    usage: Outcome


class CompletionFinalizer:
    """Runs once at the end of every producer, whatever way the stream ended.

    The two steps are independent: a failed message write does not prevent
    the usage record, and neither failure is raised or retried.
    """

    def __init__(self, conversations: ConversationStore, ledger: UsageLedger) -> None:
        self.conversations = conversations
        self.ledger = ledger

    def finalize(
        self,
        user_id: str,
        chat_id: str,
        message_id: str,
        text: str,
        usage: TokenUsage | None,
    ) -> FinalizeResult:
        message_saved = self._persist(chat_id, message_id, text)

        if usage is None:
            logger.warning("finalizer.usage_missing", chat_id=chat_id, message_id=message_id)
            usage_outcome = Outcome.skipped()
        else:
            usage_outcome = self.ledger.record(
                user_id,
                usage.prompt_tokens,
                usage.completion_tokens,
                chat_id=chat_id,
            )
            if not usage_outcome.ok:
                logger.warning(
                    "finalizer.usage_failed", chat_id=chat_id, error=usage_outcome.error
                )

        return FinalizeResult(message_saved=message_saved, usage=usage_outcome)

    def _persist(self, chat_id: str, message_id: str, text: str) -> bool:
        if not text:
            return False
        try:
            self.conversations.save_messages(
                [
                    {
                        "id": message_id,
                        "chat_id": chat_id,
                        "role": "assistant",
                        "parts": [{"type": "text", "text": text}],
                        "attachments": [],
                    }
                ]
            )
        except Exception as e:
            failure = PersistenceFailure(f"Failed to save assistant message: {e}")
            logger.error(
                "finalizer.persist_failed",
                chat_id=chat_id,
                message_id=message_id,
                error=str(failure),
            )
            return False
        return True


@lru_cache
def get_finalizer() -> CompletionFinalizer:
    """Get cached finalizer instance."""
    return CompletionFinalizer(get_conversation_store(), get_usage_ledger())
