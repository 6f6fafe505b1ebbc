"""
Event service for managing events and their operations.
"""

import logging
from typing import List, Optional
from uuid import UUID

from sqlalchemy import and_, select, update
from sqlalchemy.exc import IntegrityError

from ..change_feed import ChangeFeed, event_topic
from ..config import Settings, get_settings
from ..database import DatabaseManager
from ..models.event import Event
from ..schemas.event import EventCreate, EventResponse
from ..streams import SnapshotStream
from ..utils.exceptions import EventNotFoundError, ValidationError
from ..utils.logging_config import log_business_event
from ..utils.result import as_result

logger = logging.getLogger(__name__)


class EventService:
    """Service class for event management operations."""

    def __init__(
        self,
        db: DatabaseManager,
        change_feed: Optional[ChangeFeed] = None,
        settings: Optional[Settings] = None
    ):
        self.db = db
        self.change_feed = change_feed
        self.settings = settings or get_settings()

    @as_result
    async def create_event(self, event_data: EventCreate) -> EventResponse:
        """
        Create a new event with empty counters.

        Args:
            event_data: Event creation data

        Returns:
            The created event

        Raises:
            ValidationError: If the row violates a database constraint
        """
        deadline_hours = (
            event_data.acceptance_deadline_hours or self.settings.default_acceptance_deadline_hours
        )

        try:
            async with self.db.session() as session:
                event = Event(
                    title=event_data.title,
                    description=event_data.description,
                    location=event_data.location,
                    organizer_id=event_data.organizer_id,
                    event_date=event_data.event_date,
                    capacity=event_data.capacity,
                    enrolled=0,
                    waitlist_capacity=event_data.waitlist_capacity,
                    waitlist_count=0,
                    sampling_count=event_data.sampling_count,
                    acceptance_deadline_hours=deadline_hours,
                    requires_geolocation=event_data.requires_geolocation,
                    latitude=event_data.latitude,
                    longitude=event_data.longitude,
                )
                session.add(event)
                await session.flush()
                await session.refresh(event)
                response = EventResponse.model_validate(event)
        except IntegrityError as e:
            raise ValidationError(f"Failed to create event: {e.orig}")

        log_business_event(
            "event_created",
            {"event_id": str(response.id), "capacity": response.capacity},
            user_id=response.organizer_id
        )
        return response

    @as_result
    async def get_event(self, event_id: UUID) -> EventResponse:
        return await self._fetch_event(event_id)

    async def _fetch_event(self, event_id: UUID) -> EventResponse:
        async with self.db.session() as session:
            result = await session.execute(select(Event).where(Event.id == event_id))
            event = result.scalar_one_or_none()
            if event is None:
                raise EventNotFoundError(str(event_id))
            return EventResponse.model_validate(event)

    @as_result
    async def list_events(
        self,
        organizer_id: Optional[str] = None,
        active_only: bool = True
    ) -> List[EventResponse]:
        """Events ordered by date, optionally restricted to one organizer."""
        conditions = []
        if organizer_id is not None:
            conditions.append(Event.organizer_id == organizer_id)
        if active_only:
            conditions.append(Event.is_active.is_(True))

        query = select(Event).order_by(Event.event_date.asc())
        if conditions:
            query = query.where(and_(*conditions))

        async with self.db.session() as session:
            result = await session.execute(query)
            return [EventResponse.model_validate(event) for event in result.scalars().all()]

    @as_result
    async def deactivate_event(self, event_id: UUID) -> None:
        """Soft delete: the event stops accepting joins, draws and acceptances."""
        async with self.db.session() as session:
            result = await session.execute(select(Event).where(Event.id == event_id))
            event = result.scalar_one_or_none()
            if event is None:
                raise EventNotFoundError(str(event_id))
            event.is_active = False

        log_business_event("event_deactivated", {"event_id": str(event_id)})
        await self._publish(event_topic(event_id))

    @as_result
    async def deactivate_events_by_organizer(self, organizer_id: str) -> int:
        """Soft delete every event of an organizer whose account is going away."""
        async with self.db.session() as session:
            result = await session.execute(
                select(Event.id).where(
                    and_(Event.organizer_id == organizer_id, Event.is_active.is_(True))
                )
            )
            event_ids = list(result.scalars().all())
            if event_ids:
                await session.execute(
                    update(Event)
                    .where(Event.id.in_(event_ids))
                    .values(is_active=False)
                    .execution_options(synchronize_session=False)
                )

        logger.info(f"Deactivated {len(event_ids)} events of organizer {organizer_id}")
        await self._publish(*(event_topic(event_id) for event_id in event_ids))
        return len(event_ids)

    def watch_event(self, event_id: UUID) -> SnapshotStream[EventResponse]:
        return SnapshotStream(
            lambda: self._fetch_event(event_id),
            self._feed(),
            [event_topic(event_id)],
            name=f"event {event_id}"
        )

    def _feed(self) -> ChangeFeed:
        if self.change_feed is None:
            raise RuntimeError("No change feed configured")
        return self.change_feed

    async def _publish(self, *topics: str) -> None:
        if self.change_feed is not None and topics:
            await self.change_feed.publish(*topics)
