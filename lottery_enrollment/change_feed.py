"""
"Collection changed" pings that drive snapshot streams.

Writers publish a topic after their transaction commits; listeners re-read
the collection they observe. Pings carry no payload, so a lost or coalesced
ping only delays a refresh and never corrupts a snapshot.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Iterable, Optional, Set
from uuid import UUID

import redis.asyncio as redis
from redis.asyncio import Redis
from redis.exceptions import RedisError

from .config import Settings, get_settings

logger = logging.getLogger(__name__)


def event_topic(event_id: UUID) -> str:
    return f"event:{event_id}"


def user_topic(user_id: str) -> str:
    return f"user:{user_id}"


class ChangeListener:
    """Receives the topics that changed while a stream is observing them."""

    def __init__(self):
        self._queue: asyncio.Queue[str] = asyncio.Queue()

    def notify(self, topic: str) -> None:
        self._queue.put_nowait(topic)

    async def wait(self) -> str:
        """Block until something changed; bursts collapse into one wake-up."""
        topic = await self._queue.get()
        while not self._queue.empty():
            self._queue.get_nowait()
        return topic


class ChangeFeed(ABC):
    """Publish/listen interface shared by the Redis and in-process feeds."""

    @abstractmethod
    async def publish(self, *topics: str) -> None:
        """Announce that the collections behind ``topics`` changed."""

    @abstractmethod
    def listen(self, topics: Iterable[str]) -> "AsyncIterator[ChangeListener]":
        """Async context manager yielding a listener registered for ``topics``."""

    async def close(self) -> None:
        pass


class InMemoryChangeFeed(ChangeFeed):
    """Single-process feed, used in tests and when Redis is not configured."""

    def __init__(self):
        self._listeners: Dict[str, Set[ChangeListener]] = defaultdict(set)

    async def publish(self, *topics: str) -> None:
        for topic in set(topics):
            for listener in list(self._listeners.get(topic, ())):
                listener.notify(topic)

    @asynccontextmanager
    async def listen(self, topics: Iterable[str]) -> AsyncIterator[ChangeListener]:
        listener = ChangeListener()
        topics = list(topics)
        for topic in topics:
            self._listeners[topic].add(listener)
        try:
            yield listener
        finally:
            for topic in topics:
                self._listeners[topic].discard(listener)
                if not self._listeners[topic]:
                    del self._listeners[topic]

    def listener_count(self, topic: str) -> int:
        return len(self._listeners.get(topic, ()))


class RedisChangeFeed(ChangeFeed):
    """Cross-process feed over Redis pub/sub channels."""

    channel_prefix = "enrollment:"

    def __init__(self, client: Optional[Redis] = None, settings: Optional[Settings] = None):
        settings = settings or get_settings()
        self.client: Redis = client or redis.from_url(
            settings.redis_url,
            max_connections=settings.redis_max_connections,
            decode_responses=True,
            health_check_interval=30
        )

    def _channel(self, topic: str) -> str:
        return f"{self.channel_prefix}{topic}"

    async def publish(self, *topics: str) -> None:
        for topic in set(topics):
            try:
                await self.client.publish(self._channel(topic), "changed")
            except RedisError as e:
                # Committed data is unaffected; observers refresh on the next ping.
                logger.warning(f"Failed to publish change for {topic}: {e}")

    @asynccontextmanager
    async def listen(self, topics: Iterable[str]) -> AsyncIterator[ChangeListener]:
        listener = ChangeListener()
        channels = {self._channel(topic): topic for topic in topics}
        pubsub = self.client.pubsub()
        await pubsub.subscribe(*channels)

        async def _pump() -> None:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                channel = message["channel"]
                if isinstance(channel, bytes):
                    channel = channel.decode()
                listener.notify(channels.get(channel, channel))

        reader = asyncio.create_task(_pump())
        try:
            yield listener
        finally:
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass
            except RedisError as e:
                logger.warning(f"Change feed reader stopped with error: {e}")
            await pubsub.unsubscribe(*channels)
            await pubsub.aclose()

    async def close(self) -> None:
        await self.client.aclose()
        logger.info("Redis change feed closed")


def create_change_feed(settings: Optional[Settings] = None) -> ChangeFeed:
    """Pick the feed implementation named by ``change_feed_backend``."""
    settings = settings or get_settings()
    if settings.change_feed_backend == "memory":
        return InMemoryChangeFeed()
    return RedisChangeFeed(settings=settings)
