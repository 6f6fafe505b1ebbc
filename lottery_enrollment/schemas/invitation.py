"""
Invitation schemas.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from ..models.invitation import InvitationStatus


class InvitationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    event_id: UUID
    entry_id: Optional[UUID] = None
    user_id: str
    user_display_name: str
    status: InvitationStatus
    sent_at: datetime
    responded_at: Optional[datetime] = None
    draw_wave: int
    expiry_reason: Optional[str] = None


class AcceptOutcome(BaseModel):
    """Result of a successful accept; ``already_accepted`` marks a repeated call."""
    invitation_id: UUID
    event_id: UUID
    entry_id: Optional[UUID] = None
    enrolled: int
    remaining_spots: int
    already_accepted: bool = False
