"""
Event model holding the capacity and waitlist counters.
"""

from datetime import datetime
from typing import List, Optional, TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, Float, Integer, String, Text, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

if TYPE_CHECKING:
    from .invitation import EventInvitation
    from .waitlist import WaitlistEntry


class Event(Base):
    """Event model; ``enrolled`` and ``waitlist_count`` are written only by the capacity ledger."""

    __tablename__ = "events"

    # Event basic information
    title: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    location: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    organizer_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)

    event_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True
    )

    # Capacity management
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    enrolled: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    waitlist_capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    waitlist_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Lottery configuration
    sampling_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    draw_wave: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    acceptance_deadline_hours: Mapped[int] = mapped_column(Integer, nullable=False, default=24)

    # Geolocation
    requires_geolocation: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # Optimistic locking for concurrency control
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    # Soft delete
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)

    # Relationships
    waitlist_entries: Mapped[List["WaitlistEntry"]] = relationship(
        "WaitlistEntry",
        back_populates="event",
        cascade="all, delete-orphan",
        passive_deletes=True
    )

    invitations: Mapped[List["EventInvitation"]] = relationship(
        "EventInvitation",
        back_populates="event",
        cascade="all, delete-orphan",
        passive_deletes=True
    )

    __table_args__ = (
        CheckConstraint("capacity >= 0", name="ck_events_capacity_non_negative"),
        CheckConstraint("enrolled >= 0", name="ck_events_enrolled_non_negative"),
        CheckConstraint("enrolled <= capacity", name="ck_events_enrolled_within_capacity"),
        CheckConstraint("waitlist_capacity >= 0", name="ck_events_waitlist_capacity_non_negative"),
        CheckConstraint("waitlist_count >= 0", name="ck_events_waitlist_count_non_negative"),
        CheckConstraint("waitlist_count <= waitlist_capacity", name="ck_events_waitlist_within_capacity"),
        CheckConstraint("sampling_count >= 0", name="ck_events_sampling_count_non_negative"),
        CheckConstraint("draw_wave > 0", name="ck_events_draw_wave_positive"),
        CheckConstraint("acceptance_deadline_hours > 0", name="ck_events_deadline_positive"),
        CheckConstraint("version > 0", name="ck_events_version_positive"),
    )

    @property
    def remaining_spots(self) -> int:
        """Confirmed slots still open."""
        return max(self.capacity - self.enrolled, 0)

    @property
    def is_full(self) -> bool:
        return self.enrolled >= self.capacity

    @property
    def is_waitlist_full(self) -> bool:
        return self.waitlist_count >= self.waitlist_capacity

    def __repr__(self) -> str:
        """String representation of the event."""
        return (
            f"<Event(id={self.id}, title='{self.title}', enrolled={self.enrolled}/{self.capacity}, "
            f"waitlist={self.waitlist_count}/{self.waitlist_capacity}, wave={self.draw_wave})>"
        )
