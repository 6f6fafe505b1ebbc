"""
Waitlist service: queue membership, status transitions, queries and purges.

Every mutation runs as one transaction that reads the event, checks the
counters through the capacity ledger and writes the entry. Conflicting
writers are detected by the ledger's version guard or by the entry status
guard, and the whole transaction is retried.
"""

import logging
from collections import defaultdict
from typing import Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import and_, delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..change_feed import ChangeFeed, event_topic, user_topic
from ..database import DatabaseManager
from ..models.base import utcnow
from ..models.event import Event
from ..models.invitation import EventInvitation, ExpiryReason, InvitationStatus
from ..models.waitlist import (
    ACTIVE_STATUSES,
    CHOSEN_STATUSES,
    WaitlistEntry,
    WaitlistStatus,
)
from ..schemas.notification import MAX_TITLE_LENGTH
from ..schemas.waitlist import DecisionStats, WaitlistEntryResponse, WaitlistWithEvent
from ..streams import SnapshotStream
from ..utils.exceptions import (
    AlreadyRegisteredError,
    EntryNotFoundError,
    InvalidTransitionError,
    TransactionConflict,
    ValidationError,
)
from ..utils.logging_config import log_business_event
from ..utils.result import as_result
from ..utils.retry import retry_on_concurrency_error
from .capacity_ledger import CapacityLedger
from .notification_service import NotificationDispatcher
from .state import transition_entry, transition_invitation

logger = logging.getLogger(__name__)


class WaitlistService:
    """Service for managing event waitlists."""

    def __init__(
        self,
        db: DatabaseManager,
        ledger: CapacityLedger,
        notifications: NotificationDispatcher,
        change_feed: Optional[ChangeFeed] = None
    ):
        self.db = db
        self.ledger = ledger
        self.notifications = notifications
        self.change_feed = change_feed

    # Membership

    @as_result
    async def join(
        self,
        event_id: UUID,
        user_id: str,
        user_name: str,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None
    ) -> UUID:
        """
        Add a user to the waiting list of an event.

        Joining again while already a member returns the existing entry id.

        Args:
            event_id: Event to join
            user_id: Joining user
            user_name: Display name captured at join time
            latitude, longitude: Required when the event requires geolocation

        Returns:
            The id of the user's waitlist entry

        Raises:
            CapacityExceededError: When the waiting list is full
            InvalidTransitionError: When the user already declined this event
            ValidationError: When required geolocation is missing or invalid
        """
        logger.info(f"User {user_id} joining waitlist for event {event_id}")

        entry, created, event = await self._join(event_id, user_id, user_name, latitude, longitude)

        if created:
            log_business_event(
                "waitlist_joined",
                {"event_id": str(event_id), "entry_id": str(entry.id), "position": entry.position},
                user_id=user_id
            )
            await self._publish(event_topic(event_id), user_topic(user_id))
            await self.notifications.dispatch(
                self.notifications.joined_waitlist(event, user_id, entry.position)
            )

        return entry.id

    @retry_on_concurrency_error()
    async def _join(
        self,
        event_id: UUID,
        user_id: str,
        user_name: str,
        latitude: Optional[float],
        longitude: Optional[float]
    ) -> Tuple[WaitlistEntry, bool, Event]:
        try:
            async with self.db.session() as session:
                event = await self.ledger.load_event(session, event_id)
                _validate_location(event, latitude, longitude)

                existing = await self._find_membership(session, event_id, user_id)
                if existing is not None:
                    if existing.status.is_active_membership:
                        logger.info(f"User {user_id} already on waitlist for event {event_id}")
                        return existing, False, event
                    if existing.status == WaitlistStatus.DECLINED:
                        raise InvalidTransitionError(
                            "WaitlistEntry", str(existing.id), existing.status.value, "join"
                        )

                await self.ledger.adjust_waitlist_count(session, event, 1)
                position = await self._next_position(session, event_id)

                if existing is not None:
                    # Cancelled entrants rejoin at the back of the queue.
                    entry = await transition_entry(
                        session,
                        existing,
                        WaitlistStatus.CANCELLED,
                        status=WaitlistStatus.WAITING,
                        user_name=user_name,
                        joined_at=utcnow(),
                        position=position,
                        selected_at=None,
                        declined_at=None,
                        cancellation_reason=None,
                        latitude=latitude,
                        longitude=longitude
                    )
                else:
                    entry = WaitlistEntry(
                        event_id=event_id,
                        user_id=user_id,
                        user_name=user_name,
                        position=position,
                        status=WaitlistStatus.WAITING,
                        latitude=latitude,
                        longitude=longitude
                    )
                    session.add(entry)
                    await session.flush()

                return entry, True, event
        except IntegrityError as e:
            # A concurrent join for the same user inserted first.
            raise TransactionConflict("WaitlistEntry", f"{event_id}:{user_id}") from e

    @as_result
    async def sign_up_direct(self, event_id: UUID, user_id: str, user_name: str) -> UUID:
        """Enroll a user straight into a confirmed spot, bypassing the lottery."""
        entry, event = await self._sign_up_direct(event_id, user_id, user_name)

        log_business_event(
            "direct_sign_up",
            {"event_id": str(event_id), "entry_id": str(entry.id), "enrolled": event.enrolled},
            user_id=user_id
        )
        await self._publish(event_topic(event_id), user_topic(user_id))
        await self.notifications.dispatch(self.notifications.accepted(event, user_id))
        return entry.id

    @retry_on_concurrency_error()
    async def _sign_up_direct(self, event_id: UUID, user_id: str, user_name: str) -> Tuple[WaitlistEntry, Event]:
        try:
            async with self.db.session() as session:
                event = await self.ledger.load_event(session, event_id)

                existing = await self._find_membership(session, event_id, user_id)
                if existing is not None and existing.status.is_active_membership:
                    raise AlreadyRegisteredError(str(event_id), user_id)
                if existing is not None and existing.status == WaitlistStatus.DECLINED:
                    raise InvalidTransitionError(
                        "WaitlistEntry", str(existing.id), existing.status.value, "sign up"
                    )

                await self.ledger.increment_enrolled(session, event)
                position = await self._next_position(session, event_id)
                now = utcnow()

                if existing is not None:
                    entry = await transition_entry(
                        session,
                        existing,
                        WaitlistStatus.CANCELLED,
                        status=WaitlistStatus.ACCEPTED,
                        user_name=user_name,
                        joined_at=now,
                        position=position,
                        selected_at=now,
                        cancellation_reason=None
                    )
                else:
                    entry = WaitlistEntry(
                        event_id=event_id,
                        user_id=user_id,
                        user_name=user_name,
                        joined_at=now,
                        position=position,
                        status=WaitlistStatus.ACCEPTED,
                        selected_at=now
                    )
                    session.add(entry)
                    await session.flush()

                return entry, event
        except IntegrityError as e:
            raise TransactionConflict("WaitlistEntry", f"{event_id}:{user_id}") from e

    @as_result
    async def leave(self, entry_id: UUID, user_id: Optional[str] = None) -> None:
        """Leave the waiting list from WAITING or INVITED; a pending invitation is withdrawn."""
        entry = await self._leave(entry_id, user_id)

        log_business_event(
            "waitlist_left",
            {"event_id": str(entry.event_id), "entry_id": str(entry_id)},
            user_id=entry.user_id
        )
        await self._publish(event_topic(entry.event_id), user_topic(entry.user_id))

    @retry_on_concurrency_error()
    async def _leave(self, entry_id: UUID, user_id: Optional[str]) -> WaitlistEntry:
        async with self.db.session() as session:
            entry = await self._load_entry(session, entry_id)
            if user_id is not None and entry.user_id != user_id:
                raise InvalidTransitionError("WaitlistEntry", str(entry_id), entry.status.value, "leave")

            previous = entry.status
            if not previous.holds_queue_slot:
                raise InvalidTransitionError("WaitlistEntry", str(entry_id), previous.value, "leave")

            event = await self.ledger.load_event(session, entry.event_id, active_only=False)

            if previous == WaitlistStatus.INVITED:
                await self._expire_pending_invitations(session, entry, ExpiryReason.WITHDRAWN)

            await transition_entry(
                session,
                entry,
                previous,
                status=WaitlistStatus.CANCELLED,
                cancellation_reason="Left waitlist"
            )
            await self.ledger.adjust_waitlist_count(session, event, -1)
            return entry

    @as_result
    async def remove_chosen_entrant(self, entry_id: UUID) -> None:
        """Organizer removal of an invited or enrolled entrant."""
        entry, event = await self._remove_chosen_entrant(entry_id)

        log_business_event(
            "entrant_removed",
            {"event_id": str(entry.event_id), "entry_id": str(entry_id)},
            user_id=entry.user_id
        )
        await self._publish(event_topic(entry.event_id), user_topic(entry.user_id))
        await self.notifications.dispatch(self.notifications.removed(event, entry.user_id))

    @retry_on_concurrency_error()
    async def _remove_chosen_entrant(self, entry_id: UUID) -> Tuple[WaitlistEntry, Event]:
        async with self.db.session() as session:
            entry = await self._load_entry(session, entry_id)
            previous = entry.status
            if previous not in CHOSEN_STATUSES:
                raise InvalidTransitionError("WaitlistEntry", str(entry_id), previous.value, "remove")

            event = await self.ledger.load_event(session, entry.event_id, active_only=False)

            if previous == WaitlistStatus.ACCEPTED:
                await self.ledger.decrement_enrolled(session, event)
            else:
                await self._expire_pending_invitations(session, entry, ExpiryReason.REMOVED)
                await self.ledger.adjust_waitlist_count(session, event, -1)

            await transition_entry(
                session,
                entry,
                previous,
                status=WaitlistStatus.CANCELLED,
                cancellation_reason="Removed by organizer"
            )
            return entry, event

    @as_result
    async def rename_entrant(self, user_id: str, new_name: str) -> int:
        """Rewrite the display name snapshot on all of a user's entries and invitations."""
        name = (new_name or "").strip()
        if not name:
            raise ValidationError("Name cannot be blank", field="user_name")

        async with self.db.session() as session:
            event_ids = await self._user_event_ids(session, user_id)
            result = await session.execute(
                update(WaitlistEntry)
                .where(WaitlistEntry.user_id == user_id)
                .values(user_name=name)
                .execution_options(synchronize_session=False)
            )
            await session.execute(
                update(EventInvitation)
                .where(EventInvitation.user_id == user_id)
                .values(user_display_name=name)
                .execution_options(synchronize_session=False)
            )
            renamed = result.rowcount

        logger.info(f"Renamed {renamed} waitlist entries for user {user_id}")
        await self._publish(user_topic(user_id), *(event_topic(event_id) for event_id in event_ids))
        return renamed

    # Purges

    @as_result
    async def purge_entrant(self, user_id: str) -> int:
        """
        Hard-delete every entry and invitation of a user, releasing the slots they held.

        Returns the number of entries deleted; purging again deletes nothing.
        """
        deleted, event_ids = await self._purge_entrant(user_id)

        if deleted:
            log_business_event("entrant_purged", {"entries": deleted}, user_id=user_id)
        await self._publish(user_topic(user_id), *(event_topic(event_id) for event_id in event_ids))
        return deleted

    @retry_on_concurrency_error()
    async def _purge_entrant(self, user_id: str) -> Tuple[int, List[UUID]]:
        async with self.db.session() as session:
            result = await session.execute(
                select(WaitlistEntry).where(WaitlistEntry.user_id == user_id)
            )
            entries = list(result.scalars().all())

            by_event: Dict[UUID, List[WaitlistEntry]] = defaultdict(list)
            for entry in entries:
                by_event[entry.event_id].append(entry)

            for event_id, event_entries in by_event.items():
                event = await self.ledger.find_event(session, event_id)
                if event is None:
                    continue
                accepted = sum(1 for entry in event_entries if entry.status == WaitlistStatus.ACCEPTED)
                queued = sum(1 for entry in event_entries if entry.status.holds_queue_slot)
                if accepted:
                    await self.ledger.decrement_enrolled(session, event, accepted)
                if queued:
                    await self.ledger.adjust_waitlist_count(session, event, -queued)

            await session.execute(
                delete(EventInvitation)
                .where(EventInvitation.user_id == user_id)
                .execution_options(synchronize_session=False)
            )
            await session.execute(
                delete(WaitlistEntry)
                .where(WaitlistEntry.user_id == user_id)
                .execution_options(synchronize_session=False)
            )
            return len(entries), list(by_event)

    @as_result
    async def purge_event(self, event_id: UUID) -> int:
        """Hard-delete an event's queue and invitations and zero its counters."""
        deleted = await self._purge_event(event_id)

        log_business_event("event_purged", {"event_id": str(event_id), "entries": deleted})
        await self._publish(event_topic(event_id))
        return deleted

    @retry_on_concurrency_error()
    async def _purge_event(self, event_id: UUID) -> int:
        async with self.db.session() as session:
            await session.execute(
                delete(EventInvitation)
                .where(EventInvitation.event_id == event_id)
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(
                delete(WaitlistEntry)
                .where(WaitlistEntry.event_id == event_id)
                .execution_options(synchronize_session=False)
            )
            event = await self.ledger.find_event(session, event_id)
            if event is not None and (event.enrolled or event.waitlist_count):
                await self.ledger.reset_attendance(session, event)
            return result.rowcount

    # Organizer messaging

    @as_result
    async def broadcast(
        self,
        event_id: UUID,
        title: str,
        message: str,
        target_status: Optional[Sequence[WaitlistStatus]] = None
    ) -> int:
        """Send an organizer message to the event's entrants; returns the recipient count."""
        if not (title or "").strip() or not (message or "").strip():
            raise ValidationError("Title and message are required", field="message")
        if len(title.strip()) > MAX_TITLE_LENGTH:
            raise ValidationError(f"Title cannot be longer than {MAX_TITLE_LENGTH} characters", field="title")

        statuses = tuple(target_status) if target_status else ACTIVE_STATUSES

        async with self.db.session() as session:
            event = await self.ledger.load_event(session, event_id, active_only=False)
            result = await session.execute(
                select(WaitlistEntry.user_id).where(
                    and_(
                        WaitlistEntry.event_id == event_id,
                        WaitlistEntry.status.in_(statuses)
                    )
                )
            )
            recipients = list(result.scalars().all())

        request = self.notifications.broadcast(event, recipients, title.strip(), message.strip())
        await self.notifications.dispatch(request)
        return len(request.recipient_ids) if request else 0

    # Queries

    @as_result
    async def get_waiting_entries(self, event_id: UUID) -> List[WaitlistEntryResponse]:
        return await self._fetch_entries(event_id, (WaitlistStatus.WAITING,))

    @as_result
    async def get_chosen_entries(self, event_id: UUID) -> List[WaitlistEntryResponse]:
        return await self._fetch_entries(event_id, CHOSEN_STATUSES)

    @as_result
    async def get_accepted_entries(self, event_id: UUID) -> List[WaitlistEntryResponse]:
        return await self._fetch_entries(event_id, (WaitlistStatus.ACCEPTED,))

    @as_result
    async def get_user_history(self, user_id: str) -> List[WaitlistWithEvent]:
        return await self._fetch_user_history(user_id)

    @as_result
    async def get_membership(self, event_id: UUID, user_id: str) -> Optional[WaitlistEntryResponse]:
        async with self.db.session() as session:
            entry = await self._find_membership(session, event_id, user_id)
            return WaitlistEntryResponse.model_validate(entry) if entry else None

    @as_result
    async def get_decision_stats(self, event_id: UUID) -> DecisionStats:
        """Accepted / pending / declined / cancelled counts for the organizer dashboard."""
        async with self.db.session() as session:
            result = await session.execute(
                select(WaitlistEntry.status, func.count(WaitlistEntry.id))
                .where(WaitlistEntry.event_id == event_id)
                .group_by(WaitlistEntry.status)
            )
            counts = {status: count for status, count in result.all()}

        return DecisionStats(
            accepted=counts.get(WaitlistStatus.ACCEPTED, 0),
            pending=counts.get(WaitlistStatus.INVITED, 0),
            declined=counts.get(WaitlistStatus.DECLINED, 0),
            cancelled=counts.get(WaitlistStatus.CANCELLED, 0),
            waiting=counts.get(WaitlistStatus.WAITING, 0),
        )

    # Streams

    def watch_waiting_entries(self, event_id: UUID) -> SnapshotStream[List[WaitlistEntryResponse]]:
        return SnapshotStream(
            lambda: self._fetch_entries(event_id, (WaitlistStatus.WAITING,)),
            self._feed(),
            [event_topic(event_id)],
            name=f"waiting entries of {event_id}"
        )

    def watch_chosen_entries(self, event_id: UUID) -> SnapshotStream[List[WaitlistEntryResponse]]:
        return SnapshotStream(
            lambda: self._fetch_entries(event_id, CHOSEN_STATUSES),
            self._feed(),
            [event_topic(event_id)],
            name=f"chosen entries of {event_id}"
        )

    def watch_user_history(self, user_id: str) -> SnapshotStream[List[WaitlistWithEvent]]:
        return SnapshotStream(
            lambda: self._fetch_user_history(user_id),
            self._feed(),
            [user_topic(user_id)],
            name=f"history of {user_id}"
        )

    # Helpers

    async def _fetch_entries(
        self,
        event_id: UUID,
        statuses: Sequence[WaitlistStatus]
    ) -> List[WaitlistEntryResponse]:
        async with self.db.session() as session:
            result = await session.execute(
                select(WaitlistEntry)
                .where(
                    and_(
                        WaitlistEntry.event_id == event_id,
                        WaitlistEntry.status.in_(statuses)
                    )
                )
                .order_by(WaitlistEntry.joined_at.asc(), WaitlistEntry.position.asc())
            )
            return [WaitlistEntryResponse.model_validate(entry) for entry in result.scalars().all()]

    async def _fetch_user_history(self, user_id: str) -> List[WaitlistWithEvent]:
        async with self.db.session() as session:
            result = await session.execute(
                select(WaitlistEntry)
                .join(Event, WaitlistEntry.event_id == Event.id)
                .where(WaitlistEntry.user_id == user_id)
                .options(selectinload(WaitlistEntry.event))
                .order_by(Event.event_date.desc())
            )
            return [WaitlistWithEvent.model_validate(entry) for entry in result.scalars().all()]

    async def _load_entry(self, session: AsyncSession, entry_id: UUID) -> WaitlistEntry:
        result = await session.execute(select(WaitlistEntry).where(WaitlistEntry.id == entry_id))
        entry = result.scalar_one_or_none()
        if entry is None:
            raise EntryNotFoundError(str(entry_id))
        return entry

    async def _find_membership(
        self,
        session: AsyncSession,
        event_id: UUID,
        user_id: str
    ) -> Optional[WaitlistEntry]:
        result = await session.execute(
            select(WaitlistEntry).where(
                and_(
                    WaitlistEntry.event_id == event_id,
                    WaitlistEntry.user_id == user_id
                )
            )
        )
        return result.scalar_one_or_none()

    async def _next_position(self, session: AsyncSession, event_id: UUID) -> int:
        result = await session.execute(
            select(func.coalesce(func.max(WaitlistEntry.position), 0))
            .where(WaitlistEntry.event_id == event_id)
        )
        return result.scalar() + 1

    async def _user_event_ids(self, session: AsyncSession, user_id: str) -> List[UUID]:
        result = await session.execute(
            select(WaitlistEntry.event_id).where(WaitlistEntry.user_id == user_id).distinct()
        )
        return list(result.scalars().all())

    async def _expire_pending_invitations(
        self,
        session: AsyncSession,
        entry: WaitlistEntry,
        reason: ExpiryReason
    ) -> int:
        result = await session.execute(
            select(EventInvitation).where(
                and_(
                    EventInvitation.entry_id == entry.id,
                    EventInvitation.status == InvitationStatus.PENDING
                )
            )
        )
        invitations = list(result.scalars().all())
        now = utcnow()
        for invitation in invitations:
            await transition_invitation(
                session,
                invitation,
                InvitationStatus.PENDING,
                status=InvitationStatus.EXPIRED,
                responded_at=now,
                expiry_reason=reason.value
            )
        return len(invitations)

    def _feed(self) -> ChangeFeed:
        if self.change_feed is None:
            raise RuntimeError("No change feed configured")
        return self.change_feed

    async def _publish(self, *topics: str) -> None:
        if self.change_feed is not None and topics:
            await self.change_feed.publish(*topics)


def _validate_location(event: Event, latitude: Optional[float], longitude: Optional[float]) -> None:
    if (latitude is None) != (longitude is None):
        raise ValidationError("Latitude and longitude must be provided together", field="location")

    if latitude is not None and not (-90 <= latitude <= 90 and -180 <= longitude <= 180):
        raise ValidationError("Location is out of range", field="location")

    if event.requires_geolocation and latitude is None:
        raise ValidationError("This event requires your location to join", field="location")
