"""
Waitlist entry model for event queues.
"""

import enum
import uuid
from datetime import datetime
from typing import Optional, TYPE_CHECKING

from sqlalchemy import DateTime, Float, ForeignKey, Integer, String, Uuid, CheckConstraint, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, StatusValue, utcnow

if TYPE_CHECKING:
    from .event import Event


class WaitlistStatus(enum.Enum):
    """Enumeration for waitlist entry status."""
    WAITING = "waiting"
    INVITED = "invited"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    CANCELLED = "cancelled"

    @classmethod
    def _missing_(cls, value):
        # Records written before the INVITED rename still carry "selected".
        if isinstance(value, str) and value.lower() == "selected":
            return cls.INVITED
        return None

    @property
    def holds_queue_slot(self) -> bool:
        """Statuses counted by ``Event.waitlist_count``."""
        return self in (WaitlistStatus.WAITING, WaitlistStatus.INVITED)

    @property
    def is_active_membership(self) -> bool:
        return self in (WaitlistStatus.WAITING, WaitlistStatus.INVITED, WaitlistStatus.ACCEPTED)


ACTIVE_STATUSES = (WaitlistStatus.WAITING, WaitlistStatus.INVITED, WaitlistStatus.ACCEPTED)
CHOSEN_STATUSES = (WaitlistStatus.INVITED, WaitlistStatus.ACCEPTED)
QUEUED_STATUSES = (WaitlistStatus.WAITING, WaitlistStatus.INVITED)


class WaitlistEntry(Base):
    """A single entrant's place in an event's queue."""

    __tablename__ = "waitlist"

    event_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("events.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    user_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        index=True
    )

    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    status: Mapped[WaitlistStatus] = mapped_column(
        StatusValue(WaitlistStatus),
        default=WaitlistStatus.WAITING,
        nullable=False,
        index=True
    )

    # Lifecycle timestamps
    selected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    declined_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    # Optional geolocation captured at join time
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    event: Mapped["Event"] = relationship("Event", back_populates="waitlist_entries")

    __table_args__ = (
        CheckConstraint("position >= 0", name="ck_waitlist_position_non_negative"),
        UniqueConstraint("event_id", "user_id", name="uq_waitlist_event_user"),
    )

    def __repr__(self) -> str:
        """String representation of the waitlist entry."""
        return (
            f"<WaitlistEntry(id={self.id}, user_id={self.user_id}, "
            f"event_id={self.event_id}, position={self.position}, status={self.status.value})>"
        )
