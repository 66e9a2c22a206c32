"""Result type for best-effort side paths (memory writes, recall, usage recording)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class Outcome:
    """Whether a best-effort operation succeeded, and its value or error."""

    ok: bool
    value: Any = None
    error: str | None = None

    @classmethod
    def succeeded(cls, value: Any = None) -> Outcome:
        return cls(ok=True, value=value)

    @classmethod
    def failed(cls, exc: BaseException | str) -> Outcome:
        return cls(ok=False, error=str(exc))

    @classmethod
    def skipped(cls) -> Outcome:
        """Nothing to do; treated as success with no value."""
        return cls(ok=True)
