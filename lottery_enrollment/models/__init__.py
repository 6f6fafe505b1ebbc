"""
Database models for the lottery enrollment core.
"""

from .base import Base
from .event import Event
from .waitlist import WaitlistEntry, WaitlistStatus
from .invitation import EventInvitation, InvitationStatus, ExpiryReason
from .notification import NotificationRecord, NotificationReadStatus

__all__ = [
    "Base",
    "Event",
    "WaitlistEntry",
    "WaitlistStatus",
    "EventInvitation",
    "InvitationStatus",
    "ExpiryReason",
    "NotificationRecord",
    "NotificationReadStatus",
]
