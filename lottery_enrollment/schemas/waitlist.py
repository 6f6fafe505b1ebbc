"""
Pydantic schemas for waitlist management.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, ConfigDict

from ..models.waitlist import WaitlistStatus
from .event import EventResponse


class WaitlistEntryResponse(BaseModel):
    """Schema for waitlist entry responses."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    event_id: UUID
    user_id: str
    user_name: str
    joined_at: datetime
    position: int = Field(..., description="Position in the waitlist queue")
    status: WaitlistStatus
    selected_at: Optional[datetime] = None
    declined_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class WaitlistWithEvent(WaitlistEntryResponse):
    """Schema for waitlist entry with event details."""
    event: EventResponse


class DecisionStats(BaseModel):
    """How the chosen entrants of an event have responded so far."""
    accepted: int = 0
    pending: int = 0
    declined: int = 0
    cancelled: int = 0
    waiting: int = 0

    @property
    def total_chosen(self) -> int:
        return self.accepted + self.pending + self.declined
