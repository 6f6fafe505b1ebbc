"""
Restartable snapshot streams over queue and invitation collections.

A stream emits the full current snapshot once, then a fresh snapshot every
time one of its topics changes. Iterating it again, or subscribing again,
starts a new observation; cancelling a subscription stops it.
"""

import asyncio
import inspect
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Generic, List, Optional, TypeVar

from .change_feed import ChangeFeed

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Subscription:
    """Handle for a callback-driven observation."""

    def __init__(self, task: "asyncio.Task[None]", name: str = ""):
        self._task = task
        self.name = name

    @property
    def active(self) -> bool:
        return not self._task.done()

    def unsubscribe(self) -> None:
        if not self._task.done():
            self._task.cancel()
            logger.debug(f"Unsubscribed from {self.name}")

    async def wait_closed(self) -> None:
        try:
            await self._task
        except asyncio.CancelledError:
            pass


class SnapshotStream(Generic[T]):
    """Re-fetches a collection whenever the change feed pings one of its topics."""

    def __init__(
        self,
        fetch: Callable[[], Awaitable[T]],
        feed: ChangeFeed,
        topics: List[str],
        name: str = ""
    ):
        self.fetch = fetch
        self.feed = feed
        self.topics = topics
        self.name = name or ",".join(topics)

    def __aiter__(self) -> AsyncIterator[T]:
        return self._snapshots()

    async def _snapshots(self) -> AsyncIterator[T]:
        # Register before the first read so no change between read and listen is lost.
        async with self.feed.listen(self.topics) as listener:
            yield await self.fetch()
            while True:
                await listener.wait()
                yield await self.fetch()

    async def first(self) -> T:
        """Current snapshot without staying subscribed."""
        return await self.fetch()

    def subscribe(
        self,
        on_snapshot: Callable[[T], Any],
        on_error: Optional[Callable[[Exception], Any]] = None
    ) -> Subscription:
        """Deliver snapshots to ``on_snapshot`` until the subscription is cancelled."""
        task = asyncio.create_task(self._deliver(on_snapshot, on_error))
        return Subscription(task, name=self.name)

    async def _deliver(
        self,
        on_snapshot: Callable[[T], Any],
        on_error: Optional[Callable[[Exception], Any]]
    ) -> None:
        try:
            async for snapshot in self:
                outcome = on_snapshot(snapshot)
                if inspect.isawaitable(outcome):
                    await outcome
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Snapshot stream {self.name} failed: {e}")
            if on_error is None:
                raise
            outcome = on_error(e)
            if inspect.isawaitable(outcome):
                await outcome
