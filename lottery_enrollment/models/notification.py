"""
Inbox records written by the notification delivery task.
"""

import enum
import uuid
from typing import Optional

from sqlalchemy import Enum, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class NotificationReadStatus(enum.Enum):
    UNREAD = "unread"
    READ = "read"


class NotificationRecord(Base):
    """One recipient's copy of a notification request."""

    __tablename__ = "notifications"

    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    event_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[NotificationReadStatus] = mapped_column(
        Enum(
            NotificationReadStatus,
            native_enum=False,
            length=16,
            values_callable=lambda enum_cls: [member.value for member in enum_cls]
        ),
        default=NotificationReadStatus.UNREAD,
        nullable=False
    )
