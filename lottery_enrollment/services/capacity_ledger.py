"""
Capacity ledger: the only writer of an event's enrolled and waitlist counters.

Every method runs inside the caller's transaction and updates the event row
with a version guard. A guard that matches no row means another transaction
committed first; the caller's whole unit of work is then retried.
"""

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import and_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.event import Event
from ..utils.exceptions import (
    CapacityExceededError,
    EventNotFoundError,
    TransactionConflict,
    ValidationError,
)

logger = logging.getLogger(__name__)


class CapacityLedger:
    """Transaction-scoped, version-guarded counter operations."""

    async def load_event(
        self,
        session: AsyncSession,
        event_id: UUID,
        active_only: bool = True
    ) -> Event:
        """Read the event row that the following guarded updates compare against."""
        result = await session.execute(select(Event).where(Event.id == event_id))
        event = result.scalar_one_or_none()

        if event is None or (active_only and not event.is_active):
            raise EventNotFoundError(str(event_id))

        return event

    async def find_event(self, session: AsyncSession, event_id: UUID) -> Optional[Event]:
        result = await session.execute(select(Event).where(Event.id == event_id))
        return result.scalar_one_or_none()

    async def increment_enrolled(self, session: AsyncSession, event: Event, amount: int = 1) -> Event:
        """Compare-and-increment: fails when the event is already at capacity."""
        if amount <= 0:
            raise ValueError("amount must be positive")

        if event.enrolled + amount > event.capacity:
            raise CapacityExceededError("Event", event.capacity, event_id=str(event.id))

        return await self._apply(session, event, enrolled=event.enrolled + amount)

    async def decrement_enrolled(self, session: AsyncSession, event: Event, amount: int = 1) -> Event:
        """Decrement that floors at zero; a decrement at zero is a silent no-op."""
        if amount <= 0:
            raise ValueError("amount must be positive")

        if event.enrolled == 0:
            logger.debug(f"Enrolled count for event {event.id} already at zero")
            return event

        return await self._apply(session, event, enrolled=max(event.enrolled - amount, 0))

    async def adjust_waitlist_count(self, session: AsyncSession, event: Event, delta: int) -> Event:
        """Move the queued counter by ``delta``; growth is capped, shrinkage floors at zero."""
        if delta == 0:
            return event

        new_count = event.waitlist_count + delta
        if delta > 0 and new_count > event.waitlist_capacity:
            raise CapacityExceededError("Waitlist", event.waitlist_capacity, event_id=str(event.id))

        new_count = max(new_count, 0)
        if new_count == event.waitlist_count:
            return event

        return await self._apply(session, event, waitlist_count=new_count)

    async def set_waitlist_count(self, session: AsyncSession, event: Event, count: int) -> Event:
        """Overwrite the queued counter, e.g. after a recount."""
        if count < 0:
            raise ValidationError("Waitlist count cannot be negative", field="waitlist_count")

        if count > event.waitlist_capacity:
            raise CapacityExceededError("Waitlist", event.waitlist_capacity, event_id=str(event.id))

        return await self._apply(session, event, waitlist_count=count)

    async def reset_attendance(self, session: AsyncSession, event: Event) -> Event:
        """Zero both counters, used when an event is purged or re-run."""
        return await self._apply(session, event, enrolled=0, waitlist_count=0)

    async def advance_draw_wave(self, session: AsyncSession, event: Event) -> int:
        """Close the current wave; returns the wave number that was just drawn."""
        drawn_wave = event.draw_wave
        await self._apply(session, event, draw_wave=drawn_wave + 1)
        return drawn_wave

    async def _apply(self, session: AsyncSession, event: Event, **values) -> Event:
        """Write counter values only if nobody else has touched the event since it was read."""
        result = await session.execute(
            update(Event)
            .where(
                and_(
                    Event.id == event.id,
                    Event.version == event.version
                )
            )
            .values(version=Event.version + 1, **values)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            logger.info(f"Version guard failed for event {event.id} at version {event.version}")
            raise TransactionConflict("Event", str(event.id))

        await session.refresh(event)
        return event
