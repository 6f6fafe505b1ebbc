"""
Lottery draw schemas.
"""

from typing import List
from uuid import UUID

from pydantic import BaseModel, Field

from .invitation import InvitationResponse


class DrawResult(BaseModel):
    """Outcome of one draw wave."""

    event_id: UUID
    draw_wave: int = Field(..., description="Wave the invitations were stamped with")
    requested: int = Field(..., description="Number of winners asked for")
    invitations: List[InvitationResponse] = Field(default_factory=list)
    not_selected_user_ids: List[str] = Field(default_factory=list)

    @property
    def selected_count(self) -> int:
        return len(self.invitations)

    @property
    def selected_user_ids(self) -> List[str]:
        return [invitation.user_id for invitation in self.invitations]
