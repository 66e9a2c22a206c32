"""Stream brokers — replayable per-stream chunk logs.

A broker keeps, for each stream id, the ordered chunks a producer has
published so far and lets any number of subscribers read them from the first
chunk and then follow live until the producer closes the stream.
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable

import nats
import structlog
from nats.errors import TimeoutError as NatsTimeoutError
from nats.js.api import DeliverPolicy
from nats.js.errors import NotFoundError

logger = structlog.get_logger()


class BrokerUnavailable(Exception):
    """The broker could not be reached for a stream operation."""


class StreamBroker(ABC):
    """Interface shared by the in-process and the NATS JetStream brokers."""

    async def connect(self) -> bool:
        return True

    async def disconnect(self) -> None:
        return None

    @property
    def connected(self) -> bool:
        return True

    @abstractmethod
    async def create(self, stream_id: str) -> None:
        """Open a new stream. Raises ValueError if the id is already in use."""

    @abstractmethod
    async def publish(self, stream_id: str, chunk: str) -> None:
        ...

    @abstractmethod
    async def close(self, stream_id: str) -> None:
        """Mark the stream finished; subscribers stop after the last chunk."""

    @abstractmethod
    async def subscribe(self, stream_id: str) -> AsyncIterator[str] | None:
        """Replay then follow a stream, or None when nothing is held for the id."""


@dataclass
class _Buffer:
    chunks: list[str] = field(default_factory=list)
    done: bool = False
    closed_at: float | None = None
    condition: asyncio.Condition = field(default_factory=asyncio.Condition)


class InMemoryStreamBroker(StreamBroker):
    """Single-process broker; finished buffers are kept for ``retention_seconds``."""

    def __init__(
        self,
        retention_seconds: float = 300,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.retention_seconds = retention_seconds
        self._clock = clock
        self._buffers: dict[str, _Buffer] = {}

    def _expire(self) -> None:
        now = self._clock()
        expired = [
            stream_id
            for stream_id, buffer in self._buffers.items()
            if buffer.closed_at is not None and now - buffer.closed_at > self.retention_seconds
        ]
        for stream_id in expired:
            del self._buffers[stream_id]
        if expired:
            logger.debug("broker.expired", count=len(expired))

    def __contains__(self, stream_id: str) -> bool:
        self._expire()
        return stream_id in self._buffers

    async def create(self, stream_id: str) -> None:
        self._expire()
        if stream_id in self._buffers:
            raise ValueError(f"Stream '{stream_id}' already exists")
        self._buffers[stream_id] = _Buffer()

    def _buffer(self, stream_id: str) -> _Buffer:
        try:
            return self._buffers[stream_id]
        except KeyError:
            raise ValueError(f"Stream '{stream_id}' does not exist") from None

    async def publish(self, stream_id: str, chunk: str) -> None:
        buffer = self._buffer(stream_id)
        if buffer.done:
            raise ValueError(f"Stream '{stream_id}' is closed")
        async with buffer.condition:
            buffer.chunks.append(chunk)
            buffer.condition.notify_all()

    async def close(self, stream_id: str) -> None:
        buffer = self._buffer(stream_id)
        async with buffer.condition:
            buffer.done = True
            buffer.closed_at = self._clock()
            buffer.condition.notify_all()

    async def subscribe(self, stream_id: str) -> AsyncIterator[str] | None:
        self._expire()
        buffer = self._buffers.get(stream_id)
        if buffer is None:
            return None
        return self._follow(buffer)

    async def _follow(self, buffer: _Buffer) -> AsyncIterator[str]:
        index = 0
        while True:
            async with buffer.condition:
                await buffer.condition.wait_for(
                    lambda: index < len(buffer.chunks) or buffer.done
                )
                pending = buffer.chunks[index:]
                index += len(pending)
                done = buffer.done

            for chunk in pending:
                yield chunk
            if done:
                return


STREAM_NAME = "CHAT_STREAMS"
SUBJECT_PREFIX = "chat.stream"
EVENT_HEADER = "Poiesis-Event"


class NatsStreamBroker(StreamBroker):
    """Broker backed by NATS JetStream, one subject per stream id.

    Every stream starts with a ``start`` marker message so that an empty but
    live stream can be told apart from an unknown one, and ends with a
    ``done`` marker. JetStream's ``max_age`` handles retention.
    """

    def __init__(
        self,
        nats_url: str = "nats://localhost:4222",
        retention_seconds: float = 300,
        idle_timeout: float = 90.0,
    ) -> None:
        self.nats_url = nats_url
        self.retention_seconds = retention_seconds
        self.idle_timeout = idle_timeout
        self._nc = None
        self._js = None
        self._connected = False

    @property
    def connected(self) -> bool:
        # The client reconnects on its own; follow its state after startup.
        return self._connected and self._nc is not None and self._nc.is_connected

    async def connect(self) -> bool:
        """Connect to NATS and ensure the JetStream stream exists."""
        try:
            self._nc = await nats.connect(self.nats_url)
            self._js = self._nc.jetstream()
            await self._js.add_stream(
                name=STREAM_NAME,
                subjects=[f"{SUBJECT_PREFIX}.>"],
                max_age=self.retention_seconds,
            )
            self._connected = True
            logger.info("broker.nats_connected", url=self.nats_url)
            return True
        except Exception as e:
            logger.warning("broker.nats_connect_failed", url=self.nats_url, error=str(e))
            self._connected = False
            return False

    async def disconnect(self) -> None:
        if self._nc and self._connected:
            try:
                await self._nc.drain()
            except Exception as e:
                logger.warning("broker.nats_disconnect_failed", error=str(e))
            self._connected = False

    @staticmethod
    def subject(stream_id: str) -> str:
        return f"{SUBJECT_PREFIX}.{stream_id}"

    async def _exists(self, stream_id: str) -> bool:
        try:
            await self._js.get_last_msg(STREAM_NAME, self.subject(stream_id))
        except NotFoundError:
            return False
        return True

    async def _send(self, stream_id: str, event: str, payload: bytes = b"") -> None:
        await self._js.publish(
            self.subject(stream_id),
            payload,
            stream=STREAM_NAME,
            headers={EVENT_HEADER: event},
        )

    async def create(self, stream_id: str) -> None:
        if await self._exists(stream_id):
            raise ValueError(f"Stream '{stream_id}' already exists")
        await self._send(stream_id, "start")

    async def publish(self, stream_id: str, chunk: str) -> None:
        await self._send(stream_id, "chunk", chunk.encode())

    async def close(self, stream_id: str) -> None:
        await self._send(stream_id, "done")

    async def subscribe(self, stream_id: str) -> AsyncIterator[str] | None:
        if not await self._exists(stream_id):
            return None
        sub = await self._js.subscribe(
            self.subject(stream_id),
            stream=STREAM_NAME,
            ordered_consumer=True,
            deliver_policy=DeliverPolicy.ALL,
        )
        return self._follow(stream_id, sub)

    async def _follow(self, stream_id: str, sub) -> AsyncIterator[str]:
        try:
            while True:
                try:
                    msg = await sub.next_msg(timeout=self.idle_timeout)
                except NatsTimeoutError:
                    logger.warning("broker.nats_idle_timeout", stream_id=stream_id)
                    return

                event = (msg.headers or {}).get(EVENT_HEADER, "chunk")
                if event == "done":
                    return
                if event == "chunk":
                    yield msg.data.decode()
        finally:
            await sub.unsubscribe()
