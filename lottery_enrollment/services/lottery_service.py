"""
Lottery draws over an event's waiting list.
"""

import logging
import random
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import and_, or_, select

from ..change_feed import ChangeFeed, event_topic, user_topic
from ..database import DatabaseManager
from ..models.base import utcnow
from ..models.event import Event
from ..models.invitation import EventInvitation, InvitationStatus
from ..models.waitlist import WaitlistEntry, WaitlistStatus
from ..schemas.invitation import InvitationResponse
from ..schemas.lottery import DrawResult
from ..utils.exceptions import ValidationError
from ..utils.logging_config import log_business_event
from ..utils.result import as_result
from ..utils.retry import retry_on_concurrency_error
from .capacity_ledger import CapacityLedger
from .notification_service import NotificationDispatcher
from .state import transition_entry

logger = logging.getLogger(__name__)


class LotteryService:
    """Uniform random selection from the draw pool, one draw wave at a time."""

    def __init__(
        self,
        db: DatabaseManager,
        ledger: CapacityLedger,
        notifications: NotificationDispatcher,
        change_feed: Optional[ChangeFeed] = None,
        rng: Optional[random.Random] = None
    ):
        self.db = db
        self.ledger = ledger
        self.notifications = notifications
        self.change_feed = change_feed
        self.rng = rng or random.SystemRandom()

    @as_result
    async def run_lottery(self, event_id: UUID, number_of_winners: Optional[int] = None) -> DrawResult:
        """
        Draw up to ``number_of_winners`` entrants from the waiting list.

        The number actually drawn is bounded by the waiting entrants and by the
        spots still open. Drawing nobody succeeds without starting a new wave.
        Without ``number_of_winners`` the event's sampling count is used.
        """
        draw, event = await self._draw(event_id, number_of_winners)

        if draw.selected_count == 0:
            logger.info(f"Draw for event {event_id} selected nobody")
            return draw

        log_business_event(
            "lottery_drawn",
            {
                "event_id": str(event_id),
                "draw_wave": draw.draw_wave,
                "selected": draw.selected_count,
                "not_selected": len(draw.not_selected_user_ids),
            },
            user_id=event.organizer_id
        )

        await self._publish(
            event_topic(event_id),
            *(user_topic(user_id) for user_id in draw.selected_user_ids)
        )
        await self.notifications.dispatch(self.notifications.selected(event, draw.selected_user_ids))
        await self.notifications.dispatch(self.notifications.not_selected(event, draw.not_selected_user_ids))
        return draw

    async def draw_replacement(self, event_id: UUID):
        """Backfill a single spot with a one-winner wave."""
        return await self.run_lottery(event_id, 1)

    @retry_on_concurrency_error()
    async def _draw(self, event_id: UUID, number_of_winners: Optional[int]) -> Tuple[DrawResult, Event]:
        async with self.db.session() as session:
            event = await self.ledger.load_event(session, event_id)

            requested = event.sampling_count if number_of_winners is None else number_of_winners
            if requested < 0:
                raise ValidationError("Number of winners cannot be negative", field="number_of_winners")

            waiting = await self._waiting_entries(session, event_id)
            count = min(requested, len(waiting), event.capacity - event.enrolled)

            if count <= 0:
                return DrawResult(event_id=event_id, draw_wave=event.draw_wave, requested=requested), event

            winners = self.rng.sample(waiting, count)

            # Fails on a stale read before anything else is written.
            wave = await self.ledger.advance_draw_wave(session, event)

            now = utcnow()
            invitations = []
            for entry in winners:
                await transition_entry(
                    session,
                    entry,
                    entry.status,
                    status=WaitlistStatus.INVITED,
                    selected_at=now
                )
                invitation = EventInvitation(
                    event_id=event_id,
                    entry_id=entry.id,
                    user_id=entry.user_id,
                    user_display_name=entry.user_name,
                    status=InvitationStatus.PENDING,
                    sent_at=now,
                    draw_wave=wave
                )
                session.add(invitation)
                invitations.append(invitation)

            await session.flush()

            winner_ids = {entry.id for entry in winners}
            draw = DrawResult(
                event_id=event_id,
                draw_wave=wave,
                requested=requested,
                invitations=[InvitationResponse.model_validate(invitation) for invitation in invitations],
                not_selected_user_ids=[entry.user_id for entry in waiting if entry.id not in winner_ids]
            )
            return draw, event

    async def _waiting_entries(self, session, event_id: UUID) -> List[WaitlistEntry]:
        """WAITING entries plus INVITED ones whose invitation was lost to a full event."""
        pending_invitation = (
            select(EventInvitation.id)
            .where(
                and_(
                    EventInvitation.entry_id == WaitlistEntry.id,
                    EventInvitation.status == InvitationStatus.PENDING
                )
            )
            .exists()
        )
        result = await session.execute(
            select(WaitlistEntry)
            .where(
                and_(
                    WaitlistEntry.event_id == event_id,
                    or_(
                        WaitlistEntry.status == WaitlistStatus.WAITING,
                        and_(WaitlistEntry.status == WaitlistStatus.INVITED, ~pending_invitation)
                    )
                )
            )
            .order_by(WaitlistEntry.joined_at.asc(), WaitlistEntry.position.asc())
        )
        return list(result.scalars().all())

    async def _publish(self, *topics: str) -> None:
        if self.change_feed is not None and topics:
            await self.change_feed.publish(*topics)
