"""Chat pipeline — orchestrates one user turn from admission to finalization.

    submit: admit -> chat lookup/creation -> history -> save user turn
            -> spawn memory write -> stream handle -> assemble instruction
            -> attach producer -> consumer for the caller
    resume: stream lookup -> attach consumer, or the fresh-message fallback
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, AsyncIterator, Awaitable
from uuid import uuid4

import structlog

from poiesis.config import get_settings
from poiesis.core import datastream
from poiesis.core.admission import AdmissionController, get_admission_controller
from poiesis.core.assembler import PromptAssembler, RequestHints, get_prompt_assembler
from poiesis.core.auth import User
from poiesis.core.broker import BrokerUnavailable
from poiesis.core.conversations import ConversationStore, get_conversation_store
from poiesis.core.entitlements import entitlements_for
from poiesis.core.errors import (
    ChatError,
    Forbidden,
    InvalidRequest,
    PersistenceFailure,
    UpstreamFailure,
)
from poiesis.core.finalizer import CompletionFinalizer, get_finalizer
from poiesis.core.llm import ModelProvider, TokenUsage, get_model_provider
from poiesis.core.memory import MemoryStore, get_memory_store
from poiesis.core.multiplexer import GenerationMultiplexer, get_multiplexer
from poiesis.core.streams import StreamRegistry, get_stream_registry
from poiesis.utils.logging import bind_request_context

logger = structlog.get_logger()


@dataclass(frozen=True)
class Submission:
    chat_id: str
    stream_id: str
    events: AsyncIterator[str]


def message_text(parts: list[dict[str, Any]]) -> str:
    """Concatenated text parts of a turn, newline separated."""
    return "\n".join(part.get("text") or "" for part in parts if part.get("type") == "text")


async def _empty() -> AsyncIterator[str]:
    return
    yield


async def _single(chunk: str) -> AsyncIterator[str]:
    yield chunk


class ChatPipeline:
    def __init__(
        self,
        admission: AdmissionController,
        conversations: ConversationStore,
        streams: StreamRegistry,
        assembler: PromptAssembler,
        memory: MemoryStore,
        provider: ModelProvider,
        multiplexer: GenerationMultiplexer,
        finalizer: CompletionFinalizer,
        max_generation_seconds: float = 60.0,
        resume_freshness_seconds: float = 15.0,
    ) -> None:
        self.admission = admission
        self.conversations = conversations
        self.streams = streams
        self.assembler = assembler
        self.memory = memory
        self.provider = provider
        self.multiplexer = multiplexer
        self.finalizer = finalizer
        self.max_generation_seconds = max_generation_seconds
        self.resume_freshness_seconds = resume_freshness_seconds
        self._background: set[asyncio.Task] = set()

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def submit(
        self,
        user: User,
        chat_id: str,
        message: dict[str, Any],
        model_variant: str,
        visibility: str = "private",
        hints: RequestHints | None = None,
    ) -> Submission:
        bind_request_context(user_id=user.id, chat_id=chat_id)

        # Nothing is persisted and no model is called for a denied request.
        self.admission.require(user.id, user.user_class)
        if model_variant not in entitlements_for(user.user_class).available_chat_models:
            raise InvalidRequest(f"Model '{model_variant}' is not available for this user")

        text = message_text(message.get("parts") or [])
        if not text.strip():
            raise InvalidRequest("Message text is required")

        chat = self.conversations.get_chat(chat_id)
        if chat is None:
            title = await self.provider.generate_title(text)
            self.conversations.save_chat(chat_id, user.id, title, visibility)
        elif chat.user_id != user.id:
            raise Forbidden()

        history = self.conversations.get_messages(chat_id)
        try:
            self.conversations.save_messages(
                [
                    {
                        "id": message["id"],
                        "chat_id": chat_id,
                        "role": "user",
                        "parts": message.get("parts") or [],
                        "attachments": message.get("attachments") or [],
                    }
                ]
            )
        except ChatError:
            raise
        except Exception as e:
            raise PersistenceFailure(f"Failed to save message: {e}") from e

        self._spawn(self.memory.remember(user.id, text))

        stream_id = self.streams.create_handle(chat_id)
        bind_request_context(user_id=user.id, chat_id=chat_id, stream_id=stream_id)

        system = await self.assembler.assemble(
            model_variant, hints or RequestHints(), user_id=user.id, query_text=text
        )
        model_messages = [
            {"role": m.role, "content": m.text()} for m in history
        ] + [{"role": "user", "content": text}]

        producer = self._produce(user.id, chat_id, model_variant, system, model_messages)
        events = await self.multiplexer.attach_producer(stream_id, producer)
        logger.info("pipeline.submitted", model=model_variant, history=len(history))
        return Submission(chat_id=chat_id, stream_id=stream_id, events=events)

    async def _produce(
        self,
        user_id: str,
        chat_id: str,
        model_variant: str,
        system: str,
        messages: list[dict[str, str]],
    ) -> AsyncIterator[str]:
        """Model stream under the wall-time ceiling; always ends with finish or error."""
        message_id = str(uuid4())
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.max_generation_seconds
        text_parts: list[str] = []
        usage: TokenUsage | None = None
        failed = False

        yield datastream.start(message_id)

        stream = self.provider.stream_chat(model_variant, system, messages)
        try:
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise TimeoutError
                try:
                    chunk = await asyncio.wait_for(anext(stream), remaining)
                except StopAsyncIteration:
                    break
                if chunk.text:
                    text_parts.append(chunk.text)
                    yield datastream.text_delta(chunk.text)
                if chunk.usage is not None:
                    usage = chunk.usage
        except (UpstreamFailure, TimeoutError) as e:
            failed = True
            logger.warning(
                "pipeline.generation_failed",
                chat_id=chat_id,
                timeout=isinstance(e, TimeoutError),
                error=str(e),
            )
        except Exception as e:
            failed = True
            logger.error("pipeline.generation_error", chat_id=chat_id, error=str(e), exc_info=True)
        finally:
            await stream.aclose()

        result = self.finalizer.finalize(
            user_id=user_id,
            chat_id=chat_id,
            message_id=message_id,
            text="".join(text_parts),
            usage=usage,
        )
        logger.info(
            "pipeline.finalized",
            chat_id=chat_id,
            message_saved=result.message_saved,
            usage_recorded=result.usage.ok,
        )

        if failed:
            yield datastream.error()
        else:
            usage = usage or TokenUsage()
            yield datastream.finish(usage.prompt_tokens, usage.completion_tokens)

    async def resume(self, user: User, chat_id: str) -> AsyncIterator[str] | None:
        """Reattach to the chat's latest stream.

        Returns None when streams are not resumable (degraded mode) or the
        broker cannot be reached, otherwise an event iterator that may be empty.
        """
        if not self.multiplexer.resumable:
            return None

        self.conversations.get_readable_chat(chat_id, user.id)

        stream_id = self.streams.latest(chat_id)
        if stream_id is None:
            return _empty()

        try:
            consumer = await self.multiplexer.attach_consumer(stream_id)
        except BrokerUnavailable:
            return None
        if consumer is not None:
            logger.info("pipeline.resumed", chat_id=chat_id, stream_id=stream_id)
            return consumer

        # Generation already finished and the buffer is gone: hand over the
        # assistant message if it was saved within the freshness window.
        last = self.conversations.last_message(chat_id)
        if last is None or last.role != "assistant":
            return _empty()
        created_at = last.created_at
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        age = (datetime.now(timezone.utc) - created_at).total_seconds()
        if age > self.resume_freshness_seconds:
            return _empty()
        return _single(datastream.append_message(last.model_dump(mode="json")))

    def delete_chat(self, user: User, chat_id: str) -> None:
        self.conversations.get_owned_chat(chat_id, user.id)
        self.conversations.delete_chat(chat_id)


@lru_cache
def get_pipeline() -> ChatPipeline:
    """Get cached chat pipeline instance."""
    settings = get_settings()
    return ChatPipeline(
        admission=get_admission_controller(),
        conversations=get_conversation_store(),
        streams=get_stream_registry(),
        assembler=get_prompt_assembler(),
        memory=get_memory_store(),
        provider=get_model_provider(),
        multiplexer=get_multiplexer(),
        finalizer=get_finalizer(),
        max_generation_seconds=settings.max_generation_seconds,
        resume_freshness_seconds=settings.resume_freshness_seconds,
    )
