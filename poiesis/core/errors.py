"""Error taxonomy for the chat pipeline.

Core components raise these; the API layer turns them into HTTP responses.
"""

from __future__ import annotations


class ChatError(Exception):
    """Base class for pipeline errors that map onto an HTTP status."""

    status_code = 500


class Unauthorized(ChatError):
    status_code = 401

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message)


class Forbidden(ChatError):
    status_code = 403

    def __init__(self, message: str = "Forbidden") -> None:
        super().__init__(message)


class QuotaExceeded(ChatError):
    """The user's trailing-24h token consumption reached their quota."""

    status_code = 429

    def __init__(self, quota: int, used: int) -> None:
        self.quota = quota
        self.used = used
        super().__init__(
            f"You have exceeded your daily token limit ({quota} tokens). "
            "Please try again later."
        )


class InvalidRequest(ChatError):
    status_code = 400


class NotFound(ChatError):
    status_code = 404


class UpstreamFailure(ChatError):
    """The model or embedding service failed or timed out."""

    status_code = 502


class PersistenceFailure(ChatError):
    status_code = 500
