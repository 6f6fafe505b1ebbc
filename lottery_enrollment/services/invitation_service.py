"""
Invitation lifecycle: PENDING -> ACCEPTED | DECLINED | EXPIRED.

Acceptance is first-committed-wins: the enrolled counter is incremented
through the capacity ledger, so two entrants racing for the last spot
cannot both be enrolled. The loser's invitation is expired and they are
told the spot was just taken.
"""

import logging
from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..change_feed import ChangeFeed, event_topic, user_topic
from ..database import DatabaseManager
from ..models.base import as_utc, utcnow
from ..models.event import Event
from ..models.invitation import EventInvitation, ExpiryReason, InvitationStatus
from ..models.waitlist import WaitlistEntry, WaitlistStatus
from ..schemas.invitation import AcceptOutcome, InvitationResponse
from ..streams import SnapshotStream
from ..utils.exceptions import InvalidTransitionError, InvitationNotFoundError, SpotTakenError
from ..utils.logging_config import log_business_event
from ..utils.result import as_result
from ..utils.retry import retry_on_concurrency_error
from .capacity_ledger import CapacityLedger
from .notification_service import NotificationDispatcher
from .state import transition_entry, transition_invitation

logger = logging.getLogger(__name__)

NON_RESPONSIVE = "Non-responsive"


class InvitationService:
    """Accept, decline and expire draw invitations."""

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

    @as_result
    async def accept(self, invitation_id: UUID, user_id: Optional[str] = None) -> AcceptOutcome:
        """
        Accept a pending invitation.

        Accepting an already accepted invitation succeeds without changing
        any counter. When the event filled up in the meantime the
        invitation is expired and the call fails with ``SpotTakenError``.

        Raises:
            InvitationNotFoundError: Unknown invitation
            InvalidTransitionError: Declined or expired invitation, or not the caller's
            SpotTakenError: The last spot went to someone else first
        """
        outcome, invitation, event = await self._accept(invitation_id, user_id)

        await self._publish(event_topic(invitation.event_id), user_topic(invitation.user_id))

        if outcome is None:
            log_business_event(
                "invitation_spot_taken",
                {"event_id": str(invitation.event_id), "invitation_id": str(invitation_id)},
                user_id=invitation.user_id
            )
            await self.notifications.dispatch(self.notifications.spot_taken(event, invitation.user_id))
            raise SpotTakenError(str(invitation_id), event_id=str(invitation.event_id))

        if not outcome.already_accepted:
            log_business_event(
                "invitation_accepted",
                {
                    "event_id": str(invitation.event_id),
                    "invitation_id": str(invitation_id),
                    "enrolled": outcome.enrolled,
                },
                user_id=invitation.user_id
            )
            await self.notifications.dispatch(self.notifications.accepted(event, invitation.user_id))

        return outcome

    @retry_on_concurrency_error()
    async def _accept(
        self,
        invitation_id: UUID,
        user_id: Optional[str]
    ) -> Tuple[Optional[AcceptOutcome], EventInvitation, Event]:
        async with self.db.session() as session:
            invitation = await self._load_invitation(session, invitation_id, user_id, "accept")
            event = await self.ledger.load_event(session, invitation.event_id)

            if invitation.status == InvitationStatus.ACCEPTED:
                return _outcome(invitation, event, already_accepted=True), invitation, event

            if invitation.status != InvitationStatus.PENDING:
                raise InvalidTransitionError(
                    "EventInvitation", str(invitation_id), invitation.status.value, "accept"
                )

            now = utcnow()

            if event.enrolled >= event.capacity:
                # The entry stays INVITED and goes back into the draw pool.
                await transition_invitation(
                    session,
                    invitation,
                    InvitationStatus.PENDING,
                    status=InvitationStatus.EXPIRED,
                    responded_at=now,
                    expiry_reason=ExpiryReason.CAPACITY.value
                )
                return None, invitation, event

            await self.ledger.increment_enrolled(session, event)

            entry = await self._load_entry(session, invitation.entry_id)
            if entry is not None and entry.status == WaitlistStatus.INVITED:
                await transition_entry(session, entry, WaitlistStatus.INVITED, status=WaitlistStatus.ACCEPTED)
                await self.ledger.adjust_waitlist_count(session, event, -1)

            await transition_invitation(
                session,
                invitation,
                InvitationStatus.PENDING,
                status=InvitationStatus.ACCEPTED,
                responded_at=now
            )
            return _outcome(invitation, event), invitation, event

    @as_result
    async def decline(self, invitation_id: UUID, user_id: Optional[str] = None) -> None:
        """Decline a pending invitation; declining twice is a no-op."""
        invitation, event, changed = await self._decline(invitation_id, user_id)
        if not changed:
            return None

        log_business_event(
            "invitation_declined",
            {"event_id": str(invitation.event_id), "invitation_id": str(invitation_id)},
            user_id=invitation.user_id
        )
        await self._publish(event_topic(invitation.event_id), user_topic(invitation.user_id))
        await self.notifications.dispatch(self.notifications.declined(event, invitation.user_display_name))

    @retry_on_concurrency_error()
    async def _decline(
        self,
        invitation_id: UUID,
        user_id: Optional[str]
    ) -> Tuple[EventInvitation, Event, bool]:
        async with self.db.session() as session:
            invitation = await self._load_invitation(session, invitation_id, user_id, "decline")
            event = await self.ledger.load_event(session, invitation.event_id, active_only=False)

            if invitation.status == InvitationStatus.DECLINED:
                return invitation, event, False

            if invitation.status != InvitationStatus.PENDING:
                raise InvalidTransitionError(
                    "EventInvitation", str(invitation_id), invitation.status.value, "decline"
                )

            now = utcnow()
            await transition_invitation(
                session,
                invitation,
                InvitationStatus.PENDING,
                status=InvitationStatus.DECLINED,
                responded_at=now
            )

            entry = await self._load_entry(session, invitation.entry_id)
            if entry is not None and entry.status == WaitlistStatus.INVITED:
                await transition_entry(
                    session,
                    entry,
                    WaitlistStatus.INVITED,
                    status=WaitlistStatus.DECLINED,
                    declined_at=now
                )
                await self.ledger.adjust_waitlist_count(session, event, -1)

            return invitation, event, True

    @as_result
    async def expire_overdue(
        self,
        now: Optional[datetime] = None,
        event_id: Optional[UUID] = None
    ) -> List[UUID]:
        """Expire pending invitations past their event's acceptance deadline."""
        expired = await self._expire_overdue_by_event(now, event_id)
        return [invitation_id for ids in expired.values() for invitation_id in ids]

    @as_result
    async def expire_overdue_by_event(
        self,
        now: Optional[datetime] = None,
        event_id: Optional[UUID] = None
    ) -> Dict[UUID, List[UUID]]:
        """Same sweep as ``expire_overdue``, grouped per event for backfilling."""
        return await self._expire_overdue_by_event(now, event_id)

    async def _expire_overdue_by_event(
        self,
        now: Optional[datetime],
        event_id: Optional[UUID]
    ) -> Dict[UUID, List[UUID]]:
        now = as_utc(now) if now is not None else utcnow()
        expired, events, recipients = await self._sweep(now, event_id)

        for expired_event_id, invitation_ids in expired.items():
            event = events[expired_event_id]
            log_business_event(
                "invitations_expired",
                {"event_id": str(expired_event_id), "count": len(invitation_ids)}
            )
            await self._publish(
                event_topic(expired_event_id),
                *(user_topic(user_id) for user_id in recipients[expired_event_id])
            )
            await self.notifications.dispatch(
                self.notifications.expired(event, recipients[expired_event_id])
            )

        return expired

    @retry_on_concurrency_error()
    async def _sweep(
        self,
        now: datetime,
        event_id: Optional[UUID]
    ) -> Tuple[Dict[UUID, List[UUID]], Dict[UUID, Event], Dict[UUID, List[str]]]:
        expired: Dict[UUID, List[UUID]] = defaultdict(list)
        recipients: Dict[UUID, List[str]] = defaultdict(list)
        events: Dict[UUID, Event] = {}

        async with self.db.session() as session:
            query = (
                select(EventInvitation, Event)
                .join(Event, EventInvitation.event_id == Event.id)
                .where(EventInvitation.status == InvitationStatus.PENDING)
                .order_by(EventInvitation.sent_at.asc())
            )
            if event_id is not None:
                query = query.where(EventInvitation.event_id == event_id)

            result = await session.execute(query)
            for invitation, event in result.all():
                if now <= invitation.deadline(event.acceptance_deadline_hours):
                    continue

                await transition_invitation(
                    session,
                    invitation,
                    InvitationStatus.PENDING,
                    status=InvitationStatus.EXPIRED,
                    responded_at=now,
                    expiry_reason=ExpiryReason.DEADLINE.value
                )

                entry = await self._load_entry(session, invitation.entry_id)
                if entry is not None and entry.status == WaitlistStatus.INVITED:
                    await transition_entry(
                        session,
                        entry,
                        WaitlistStatus.INVITED,
                        status=WaitlistStatus.CANCELLED,
                        cancellation_reason=NON_RESPONSIVE
                    )
                    await self.ledger.adjust_waitlist_count(session, event, -1)

                events[event.id] = event
                expired[event.id].append(invitation.id)
                recipients[event.id].append(invitation.user_id)

        if expired:
            logger.info(f"Expired {sum(len(ids) for ids in expired.values())} overdue invitations")
        return dict(expired), events, dict(recipients)

    # Queries

    @as_result
    async def get_invitation(self, invitation_id: UUID) -> InvitationResponse:
        async with self.db.session() as session:
            invitation = await self._load_invitation(session, invitation_id, None, "read")
            return InvitationResponse.model_validate(invitation)

    @as_result
    async def get_user_pending_invitations(self, user_id: str) -> List[InvitationResponse]:
        return await self._fetch_user_pending(user_id)

    @as_result
    async def get_event_invitations(
        self,
        event_id: UUID,
        draw_wave: Optional[int] = None
    ) -> List[InvitationResponse]:
        conditions = [EventInvitation.event_id == event_id]
        if draw_wave is not None:
            conditions.append(EventInvitation.draw_wave == draw_wave)

        async with self.db.session() as session:
            result = await session.execute(
                select(EventInvitation)
                .where(and_(*conditions))
                .order_by(EventInvitation.draw_wave.asc(), EventInvitation.sent_at.asc())
            )
            return [InvitationResponse.model_validate(i) for i in result.scalars().all()]

    def watch_user_invitations(self, user_id: str) -> SnapshotStream[List[InvitationResponse]]:
        if self.change_feed is None:
            raise RuntimeError("No change feed configured")
        return SnapshotStream(
            lambda: self._fetch_user_pending(user_id),
            self.change_feed,
            [user_topic(user_id)],
            name=f"invitations of {user_id}"
        )

    async def _fetch_user_pending(self, user_id: str) -> List[InvitationResponse]:
        async with self.db.session() as session:
            result = await session.execute(
                select(EventInvitation)
                .where(
                    and_(
                        EventInvitation.user_id == user_id,
                        EventInvitation.status == InvitationStatus.PENDING
                    )
                )
                .order_by(EventInvitation.sent_at.desc())
            )
            return [InvitationResponse.model_validate(i) for i in result.scalars().all()]

    async def _load_invitation(
        self,
        session: AsyncSession,
        invitation_id: UUID,
        user_id: Optional[str],
        action: str
    ) -> EventInvitation:
        result = await session.execute(select(EventInvitation).where(EventInvitation.id == invitation_id))
        invitation = result.scalar_one_or_none()
        if invitation is None:
            raise InvitationNotFoundError(str(invitation_id))
        if user_id is not None and invitation.user_id != user_id:
            raise InvalidTransitionError("EventInvitation", str(invitation_id), invitation.status.value, action)
        return invitation

    async def _load_entry(self, session: AsyncSession, entry_id: Optional[UUID]) -> Optional[WaitlistEntry]:
        if entry_id is None:
            return None
        result = await session.execute(select(WaitlistEntry).where(WaitlistEntry.id == entry_id))
        return result.scalar_one_or_none()

    async def _publish(self, *topics: str) -> None:
        if self.change_feed is not None and topics:
            await self.change_feed.publish(*topics)


def _outcome(invitation: EventInvitation, event: Event, already_accepted: bool = False) -> AcceptOutcome:
    return AcceptOutcome(
        invitation_id=invitation.id,
        event_id=event.id,
        entry_id=invitation.entry_id,
        enrolled=event.enrolled,
        remaining_spots=event.remaining_spots,
        already_accepted=already_accepted
    )
