"""Per-user-class entitlements: daily token quota and available model variants."""

from __future__ import annotations

from dataclasses import dataclass

CHAT_MODEL = "chat-model"
REASONING_MODEL = "chat-model-reasoning"

USER_CLASSES = ("student", "regular", "admin")


@dataclass(frozen=True)
class Entitlements:
    max_tokens_per_day: int
    available_chat_models: tuple[str, ...]


ENTITLEMENTS_BY_USER_CLASS: dict[str, Entitlements] = {
    # Users without an account
    "student": Entitlements(
        max_tokens_per_day=1_000,
        available_chat_models=(CHAT_MODEL, REASONING_MODEL),
    ),
    "regular": Entitlements(
        max_tokens_per_day=20_000,
        available_chat_models=(CHAT_MODEL, REASONING_MODEL),
    ),
    # Effectively unlimited
    "admin": Entitlements(
        max_tokens_per_day=100_000_000,
        available_chat_models=(CHAT_MODEL, REASONING_MODEL),
    ),
}


def entitlements_for(user_class: str) -> Entitlements:
    """Look up entitlements; unknown classes raise ValueError."""
    try:
        return ENTITLEMENTS_BY_USER_CLASS[user_class]
    except KeyError:
        raise ValueError(f"Unknown user class '{user_class}'") from None


def quota_for(user_class: str) -> int:
    return entitlements_for(user_class).max_tokens_per_day
