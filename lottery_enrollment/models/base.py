"""
Base model class for SQLAlchemy models.
"""

import enum
import uuid
from datetime import datetime, timezone
from typing import Type

from sqlalchemy import DateTime, String, Uuid, func
from sqlalchemy.types import TypeDecorator
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    """Timezone-aware current time used for application-set timestamps."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Normalise timestamps read back from backends that drop tzinfo."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Base(DeclarativeBase):
    """Base class for all database models."""

    # Fetch server-generated columns at flush time; lazy loads are unavailable under asyncio
    __mapper_args__ = {"eager_defaults": True}

    # Generate UUID primary keys by default
    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        index=True
    )

    # Automatic timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )

    def __repr__(self) -> str:
        """String representation of the model."""
        return f"<{self.__class__.__name__}(id={self.id})>"


class StatusValue(TypeDecorator):
    """Stores an enum by value and parses stored strings through the enum itself.

    Parsing through the enum constructor lets an enum's ``_missing_`` hook
    accept values written by older releases.
    """

    impl = String(16)
    cache_ok = True

    def __init__(self, enum_class: Type[enum.Enum], *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.enum_class = enum_class

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return self.enum_class(value).value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return self.enum_class(value)
