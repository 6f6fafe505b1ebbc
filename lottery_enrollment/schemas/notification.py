"""
Notification request schemas handed to the delivery channel.
"""

from enum import Enum
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

MAX_TITLE_LENGTH = 255


class NotificationCategory(str, Enum):
    """Inbox categories understood by the delivery collaborator."""
    SELECTION = "SELECTION"
    REJECTION = "REJECTION"
    CONFIRMATION = "CONFIRMATION"
    DECLINE = "DECLINE"
    CANCELLATION = "CANCELLATION"
    ORGANIZER_UPDATE = "ORGANIZER_UPDATE"
    WAITLIST = "WAITLIST"


class NotificationRequest(BaseModel):
    """One message addressed to one or more entrants."""

    recipient_ids: List[str] = Field(..., min_length=1, description="User ids to deliver to")
    title: str = Field(..., min_length=1, max_length=MAX_TITLE_LENGTH)
    body: str = Field(..., min_length=1)
    event_id: Optional[UUID] = None
    category: NotificationCategory

    @field_validator("recipient_ids")
    @classmethod
    def dedupe_recipients(cls, v):
        """Keep first-seen order while dropping duplicates and blanks."""
        seen = [recipient for recipient in dict.fromkeys(v) if recipient]
        if not seen:
            raise ValueError("at least one recipient is required")
        return seen
