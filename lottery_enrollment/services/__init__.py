"""Business logic services for the lottery enrollment core."""

from .capacity_ledger import CapacityLedger
from .event_service import EventService
from .waitlist_service import WaitlistService
from .lottery_service import LotteryService
from .invitation_service import InvitationService
from .notification_service import NotificationDispatcher

__all__ = [
    "CapacityLedger",
    "EventService",
    "WaitlistService",
    "LotteryService",
    "InvitationService",
    "NotificationDispatcher",
]
