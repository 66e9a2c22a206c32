"""Generation Multiplexer — decouples one producer from many consumers.

The producer of a generation runs as a detached task that drains into a
broker stream; the originating request and any reconnecting viewer are
consumers of that stream. A consumer going away never affects the producer,
so the finalizer at the end of the producer always runs.
"""

from __future__ import annotations

import asyncio
from functools import lru_cache
from typing import AsyncIterator

import structlog

from poiesis.config import Settings, get_settings
from poiesis.core.broker import (
    BrokerUnavailable,
    InMemoryStreamBroker,
    NatsStreamBroker,
    StreamBroker,
)

logger = structlog.get_logger()


class GenerationMultiplexer:
    def __init__(self, broker: StreamBroker | None = None) -> None:
        self.broker = broker
        self._tasks: set[asyncio.Task] = set()
        self._producers: set[str] = set()

    @property
    def resumable(self) -> bool:
        """False in degraded mode: no broker configured, or the broker is unreachable."""
        return self.broker is not None and self.broker.connected

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def attach_producer(
        self, stream_id: str, producer: AsyncIterator[str]
    ) -> AsyncIterator[str]:
        """Start draining ``producer`` and return the originating request's consumer.

        A broker that fails here is bypassed for this stream: generation goes
        ahead on a private channel and the stream is simply not resumable.
        Raises ValueError if a producer is already attached to ``stream_id``.
        """
        if stream_id in self._producers:
            raise ValueError(f"Stream '{stream_id}' already has a producer")

        broker, consumer = None, None
        if self.resumable:
            created = False
            try:
                await self.broker.create(stream_id)
                created = True
                consumer = await self.broker.subscribe(stream_id)
            except ValueError:
                raise
            except Exception as e:
                logger.warning("multiplexer.broker_failed", stream_id=stream_id, error=str(e))
            if consumer is not None:
                broker = self.broker
            elif created:
                # Leave no open stream behind for a reconnect to wait on.
                try:
                    await self.broker.close(stream_id)
                except Exception as e:
                    logger.warning("multiplexer.close_failed", stream_id=stream_id, error=str(e))

        if broker is None:
            # Private channel outside the broker, so reconnects cannot find it.
            logger.warning("multiplexer.degraded", stream_id=stream_id)
            broker = InMemoryStreamBroker(retention_seconds=0)
            await broker.create(stream_id)
            consumer = await broker.subscribe(stream_id)

        self._producers.add(stream_id)
        task = asyncio.create_task(self._drain(broker, stream_id, producer))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return consumer

    async def attach_consumer(self, stream_id: str) -> AsyncIterator[str] | None:
        """Replay-then-follow subscription, or None when the broker holds nothing.

        Raises BrokerUnavailable when the broker cannot be reached.
        """
        if not self.resumable:
            return None
        try:
            return await self.broker.subscribe(stream_id)
        except Exception as e:
            logger.warning("multiplexer.subscribe_failed", stream_id=stream_id, error=str(e))
            raise BrokerUnavailable(str(e)) from e

    async def _drain(self, broker: StreamBroker, stream_id: str, producer: AsyncIterator[str]) -> None:
        published = 0
        publish_failed = False
        try:
            async for chunk in producer:
                try:
                    await broker.publish(stream_id, chunk)
                    published += 1
                except Exception as e:
                    # Keep draining so the producer reaches its finalizer.
                    if not publish_failed:
                        logger.warning(
                            "multiplexer.publish_failed", stream_id=stream_id, error=str(e)
                        )
                    publish_failed = True
        except Exception as e:
            logger.error("multiplexer.producer_failed", stream_id=stream_id, error=str(e))
        finally:
            try:
                await broker.close(stream_id)
            except Exception as e:
                logger.warning("multiplexer.close_failed", stream_id=stream_id, error=str(e))
            self._producers.discard(stream_id)
            logger.debug("multiplexer.drained", stream_id=stream_id, chunks=published)

    async def drain(self, timeout: float = 30.0) -> None:
        """Wait (bounded) for in-flight producers, then cancel the rest."""
        if not self._tasks:
            return
        pending = set(self._tasks)
        logger.info("multiplexer.draining", in_flight=len(pending))
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            logger.warning("multiplexer.drain_timeout", cancelled=len(still_running))
            await asyncio.gather(*still_running, return_exceptions=True)


def build_broker(settings: Settings) -> StreamBroker | None:
    if settings.stream_broker == "memory":
        return InMemoryStreamBroker(retention_seconds=settings.stream_retention_seconds)
    if settings.stream_broker == "nats":
        return NatsStreamBroker(
            nats_url=settings.nats_url,
            retention_seconds=settings.stream_retention_seconds,
            idle_timeout=settings.max_generation_seconds + 30,
        )
    if settings.stream_broker == "none":
        return None
    raise ValueError(f"Unknown stream broker '{settings.stream_broker}'")


@lru_cache
def get_multiplexer() -> GenerationMultiplexer:
    """Get cached multiplexer instance; the lifespan connects its broker."""
    return GenerationMultiplexer(build_broker(get_settings()))
