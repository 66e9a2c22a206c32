"""Usage Ledger — append-only record of tokens consumed per user per exchange."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any

import structlog

from poiesis.core.outcome import Outcome
from poiesis.db.client import SupabaseClient, get_supabase_client
from poiesis.db.models import TokenUsageRow

logger = structlog.get_logger()

USAGE_WINDOW = timedelta(hours=24)


class UsageLedger:
    """Records token usage and answers trailing-window consumption queries."""

    def __init__(self, db: SupabaseClient) -> None:
        self.db = db

    def record(
        self,
        user_id: str,
        prompt_tokens: int,
        completion_tokens: int,
        chat_id: str | None = None,
    ) -> Outcome:
        """Append a usage record. Failures are reported, never raised."""
        try:
            row = self.db.insert(
                "token_usage",
                {
                    "user_id": user_id,
                    "chat_id": chat_id,
                    "prompt_tokens": max(0, int(prompt_tokens)),
                    "completion_tokens": max(0, int(completion_tokens)),
                    "created_at": datetime.now(timezone.utc).isoformat(),
                },
            )
        except Exception as e:
            return Outcome.failed(e)

        logger.info(
            "usage.recorded",
            user_id=user_id,
            chat_id=chat_id,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
        )
        return Outcome.succeeded(row)

    def tokens_used_since(self, user_id: str, since: datetime) -> int:
        """Sum of prompt+completion tokens recorded for a user at or after ``since``."""
        rows = self.db.select(
            "token_usage",
            filters={"user_id": user_id},
            gte={"created_at": since.isoformat()},
        )
        return sum(TokenUsageRow(**row).total_tokens for row in rows)

    def tokens_used_last_24h(self, user_id: str, now: datetime | None = None) -> int:
        """Sliding-window consumption; not aligned to calendar days."""
        now = now or datetime.now(timezone.utc)
        return self.tokens_used_since(user_id, now - USAGE_WINDOW)

    def usage_per_user_today(self, now: datetime | None = None) -> list[dict[str, Any]]:
        """Per-user totals for the current UTC calendar day, heaviest users first."""
        now = now or datetime.now(timezone.utc)
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        rows = self.db.select(
            "token_usage",
            gte={"created_at": start_of_day.isoformat()},
            lt={"created_at": (start_of_day + timedelta(days=1)).isoformat()},
        )

        by_user: dict[str, dict[str, Any]] = {}
        for raw in rows:
            row = TokenUsageRow(**raw)
            totals = by_user.setdefault(
                row.user_id,
                {
                    "user_id": row.user_id,
                    "total_prompt_tokens": 0,
                    "total_completion_tokens": 0,
                    "total_tokens": 0,
                },
            )
            totals["total_prompt_tokens"] += row.prompt_tokens
            totals["total_completion_tokens"] += row.completion_tokens
            totals["total_tokens"] += row.total_tokens

        return sorted(by_user.values(), key=lambda r: r["total_tokens"], reverse=True)


@lru_cache
def get_usage_ledger() -> UsageLedger:
    """Get cached usage ledger instance."""
    return UsageLedger(get_supabase_client())
