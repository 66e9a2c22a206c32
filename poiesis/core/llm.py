"""Model and embedding provider — OpenAI-compatible HTTP gateway client."""

from __future__ import annotations

import json
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, AsyncIterator

import httpx
import structlog

from poiesis.config import get_settings
from poiesis.core.entitlements import CHAT_MODEL, REASONING_MODEL
from poiesis.core.errors import InvalidRequest, UpstreamFailure

logger = structlog.get_logger()

TITLE_MAX_LENGTH = 80

TITLE_SYSTEM_PROMPT = """\
- you will generate a short title based on the first message a user begins a conversation with
- ensure it is not more than 80 characters long
- the title should be a summary of the user's message
- do not use quotes or colons"""


@dataclass(frozen=True)
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass(frozen=True)
class ModelChunk:
    """One increment of a model stream: a text delta and/or the final usage."""

    text: str = ""
    usage: TokenUsage | None = None


class ModelProvider:
    """Streams completions and computes embeddings through the LLM gateway."""

    def __init__(
        self,
        gateway_url: str,
        api_key: str = "",
        models: dict[str, str] | None = None,
        title_model: str = "",
        embedding_model: str = "",
        embedding_dimensions: int = 1536,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.gateway_url = gateway_url.rstrip("/")
        self.api_key = api_key
        self.models = models or {}
        self.title_model = title_model
        self.embedding_model = embedding_model
        self.embedding_dimensions = embedding_dimensions
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        return httpx.AsyncClient(
            base_url=self.gateway_url,
            headers=headers,
            timeout=self.timeout,
            transport=self._transport,
        )

    def resolve_model(self, model_variant: str) -> str:
        try:
            return self.models[model_variant]
        except KeyError:
            raise InvalidRequest(f"Unknown model variant '{model_variant}'") from None

    async def stream_chat(
        self,
        model_variant: str,
        system: str,
        messages: list[dict[str, str]],
    ) -> AsyncIterator[ModelChunk]:
        """Stream a completion as text deltas, ending with a usage-only chunk."""
        payload = {
            "model": self.resolve_model(model_variant),
            "messages": [{"role": "system", "content": system}, *messages],
            "stream": True,
            "stream_options": {"include_usage": True},
        }

        try:
            async with self._client() as client:
                async with client.stream("POST", "/v1/chat/completions", json=payload) as resp:
                    resp.raise_for_status()
                    async for line in resp.aiter_lines():
                        chunk = _parse_sse_line(line)
                        if chunk is None:
                            continue
                        if chunk is _DONE:
                            break
                        yield chunk
        except httpx.HTTPError as e:
            logger.warning("llm.stream_failed", model=payload["model"], error=str(e))
            raise UpstreamFailure(f"Model stream failed: {e}") from e

    async def complete(self, model: str, system: str, user_message: str) -> str:
        """Single non-streaming completion."""
        try:
            async with self._client() as client:
                resp = await client.post(
                    "/v1/chat/completions",
                    json={
                        "model": model,
                        "messages": [
                            {"role": "system", "content": system},
                            {"role": "user", "content": user_message},
                        ],
                    },
                )
                resp.raise_for_status()
                data = resp.json()
                return data["choices"][0]["message"]["content"] or ""
        except (httpx.HTTPError, KeyError, IndexError, ValueError) as e:
            raise UpstreamFailure(f"Completion failed: {e}") from e

    async def embed(self, text: str) -> list[float]:
        try:
            async with self._client() as client:
                resp = await client.post(
                    "/v1/embeddings",
                    json={"model": self.embedding_model, "input": text},
                )
                resp.raise_for_status()
                embedding = resp.json()["data"][0]["embedding"]
        except (httpx.HTTPError, KeyError, IndexError, ValueError) as e:
            raise UpstreamFailure(f"Embedding failed: {e}") from e

        if len(embedding) != self.embedding_dimensions:
            raise UpstreamFailure(
                f"Embedding has {len(embedding)} dimensions, "
                f"expected {self.embedding_dimensions}"
            )
        return embedding

    async def generate_title(self, message_text: str) -> str:
        """Short chat title; falls back to the truncated message on failure."""
        try:
            title = await self.complete(self.title_model, TITLE_SYSTEM_PROMPT, message_text)
        except UpstreamFailure as e:
            logger.warning("llm.title_failed", error=str(e))
            title = ""

        title = title.strip().strip('"')
        if not title:
            title = message_text.strip() or "New chat"
        return title[:TITLE_MAX_LENGTH]


_DONE = ModelChunk()


def _parse_sse_line(line: str) -> ModelChunk | None:
    """Decode one ``data:`` line of an OpenAI-style stream."""
    if not line.startswith("data:"):
        return None
    data = line[len("data:"):].strip()
    if not data:
        return None
    if data == "[DONE]":
        return _DONE

    try:
        event: dict[str, Any] = json.loads(data)
    except json.JSONDecodeError:
        logger.debug("llm.sse_parse_skipped", line=line[:200])
        return None

    text = ""
    for choice in event.get("choices") or []:
        text += (choice.get("delta") or {}).get("content") or ""

    usage = None
    if event.get("usage"):
        usage = TokenUsage(
            prompt_tokens=event["usage"].get("prompt_tokens") or 0,
            completion_tokens=event["usage"].get("completion_tokens") or 0,
        )

    if not text and usage is None:
        return None
    return ModelChunk(text=text, usage=usage)


@lru_cache
def get_model_provider() -> ModelProvider:
    """Get cached model provider instance."""
    settings = get_settings()
    return ModelProvider(
        gateway_url=settings.llm_gateway,
        api_key=settings.llm_api_key,
        models={
            CHAT_MODEL: settings.chat_model,
            REASONING_MODEL: settings.reasoning_model,
        },
        title_model=settings.title_model,
        embedding_model=settings.embedding_model,
        embedding_dimensions=settings.embedding_dimensions,
        timeout=settings.max_generation_seconds,
    )
