"""Stream event encoding — one ``data: <json>`` line per event."""

from __future__ import annotations

import json
from typing import Any

GENERIC_ERROR_TEXT = "Oops, an error occurred!"

START = "start"
TEXT_DELTA = "text-delta"
FINISH = "finish"
ERROR = "error"
APPEND_MESSAGE = "append-message"

EVENT_TYPES = (START, TEXT_DELTA, FINISH, ERROR, APPEND_MESSAGE)


def encode_event(event_type: str, **payload: Any) -> str:
    if event_type not in EVENT_TYPES:
        raise ValueError(f"Unknown stream event type '{event_type}'")
    return f"data: {json.dumps({'type': event_type, **payload}, default=str)}\n\n"


def decode_event(chunk: str) -> dict[str, Any]:
    """Inverse of ``encode_event``; used by tests and the CLI."""
    line = chunk.strip()
    if not line.startswith("data:"):
        raise ValueError(f"Not a stream event: {chunk!r}")
    return json.loads(line[len("data:"):].strip())


def start(message_id: str) -> str:
    return encode_event(START, messageId=message_id)


def text_delta(delta: str) -> str:
    return encode_event(TEXT_DELTA, delta=delta)


def finish(prompt_tokens: int, completion_tokens: int) -> str:
    return encode_event(
        FINISH,
        usage={"promptTokens": prompt_tokens, "completionTokens": completion_tokens},
    )


def error(text: str = GENERIC_ERROR_TEXT) -> str:
    return encode_event(ERROR, errorText=text)


def append_message(message: dict[str, Any]) -> str:
    return encode_event(APPEND_MESSAGE, message=message)


def iter_events(body: str) -> list[dict[str, Any]]:
    """Split a full response body into decoded events."""
    return [decode_event(block) for block in body.split("\n\n") if block.strip()]
