"""
Guarded status transitions for waitlist entries and invitations.

Each transition only applies if the row is still in the expected state, so
two transactions racing on the same entry or invitation cannot both win.
"""

import logging

from sqlalchemy import and_, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.invitation import EventInvitation, InvitationStatus
from ..models.waitlist import WaitlistEntry, WaitlistStatus
from ..utils.exceptions import TransactionConflict

logger = logging.getLogger(__name__)


async def transition_entry(
    session: AsyncSession,
    entry: WaitlistEntry,
    expected: WaitlistStatus,
    **values
) -> WaitlistEntry:
    result = await session.execute(
        update(WaitlistEntry)
        .where(
            and_(
                WaitlistEntry.id == entry.id,
                WaitlistEntry.status == expected
            )
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )

    if result.rowcount == 0:
        logger.info(f"Entry {entry.id} is no longer {expected.value}")
        raise TransactionConflict("WaitlistEntry", str(entry.id))

    await session.refresh(entry)
    return entry


async def transition_invitation(
    session: AsyncSession,
    invitation: EventInvitation,
    expected: InvitationStatus,
    **values
) -> EventInvitation:
    result = await session.execute(
        update(EventInvitation)
        .where(
            and_(
                EventInvitation.id == invitation.id,
                EventInvitation.status == expected
            )
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )

    if result.rowcount == 0:
        logger.info(f"Invitation {invitation.id} is no longer {expected.value}")
        raise TransactionConflict("EventInvitation", str(invitation.id))

    await session.refresh(invitation)
    return invitation
