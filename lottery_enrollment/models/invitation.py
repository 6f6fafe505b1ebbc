"""
Invitation model for lottery draw offers.
"""

import enum
import uuid
from datetime import datetime, timedelta
from typing import Optional, TYPE_CHECKING

from sqlalchemy import DateTime, Enum, ForeignKey, Integer, String, Uuid, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, as_utc, utcnow

if TYPE_CHECKING:
    from .event import Event


class InvitationStatus(enum.Enum):
    """Enumeration for invitation status."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    EXPIRED = "expired"


class ExpiryReason(str, enum.Enum):
    """Why a PENDING invitation became EXPIRED."""
    CAPACITY = "capacity"
    DEADLINE = "deadline"
    WITHDRAWN = "withdrawn"
    REMOVED = "removed"


class EventInvitation(Base):
    """The authoritative record of one draw offer."""

    __tablename__ = "invitations"

    event_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("events.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    entry_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("waitlist.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    user_display_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    status: Mapped[InvitationStatus] = mapped_column(
        Enum(
            InvitationStatus,
            native_enum=False,
            length=16,
            values_callable=lambda enum_cls: [member.value for member in enum_cls]
        ),
        default=InvitationStatus.PENDING,
        nullable=False,
        index=True
    )

    sent_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    responded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    draw_wave: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    expiry_reason: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)

    event: Mapped["Event"] = relationship("Event", back_populates="invitations")

    __table_args__ = (
        UniqueConstraint("event_id", "user_id", "draw_wave", name="uq_invitations_event_user_wave"),
    )

    def deadline(self, acceptance_deadline_hours: int) -> datetime:
        """Moment after which a PENDING offer is overdue."""
        return as_utc(self.sent_at) + timedelta(hours=acceptance_deadline_hours)

    def __repr__(self) -> str:
        return (
            f"<EventInvitation(id={self.id}, event_id={self.event_id}, user_id={self.user_id}, "
            f"wave={self.draw_wave}, status={self.status.value})>"
        )
