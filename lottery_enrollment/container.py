"""
One set of service instances per process, built from explicit handles.
"""

import logging
import random
from dataclasses import dataclass
from typing import Optional

from .change_feed import ChangeFeed, create_change_feed
from .config import Settings, get_settings
from .database import DatabaseManager, create_database_engine
from .services.capacity_ledger import CapacityLedger
from .services.event_service import EventService
from .services.invitation_service import InvitationService
from .services.lottery_service import LotteryService
from .services.notification_service import (
    CeleryNotificationSender,
    NotificationDispatcher,
    NotificationSender,
)
from .services.waitlist_service import WaitlistService

logger = logging.getLogger(__name__)


@dataclass
class EnrollmentServices:
    db: DatabaseManager
    change_feed: ChangeFeed
    ledger: CapacityLedger
    notifications: NotificationDispatcher
    events: EventService
    waitlist: WaitlistService
    lottery: LotteryService
    invitations: InvitationService

    async def close(self) -> None:
        await self.change_feed.close()
        await self.db.close()


def build_services(
    db: Optional[DatabaseManager] = None,
    change_feed: Optional[ChangeFeed] = None,
    sender: Optional[NotificationSender] = None,
    rng: Optional[random.Random] = None,
    settings: Optional[Settings] = None
) -> EnrollmentServices:
    """
    Wire the services together.

    Anything not passed in is created from settings: a database manager on
    ``database_url``, the change feed named by ``change_feed_backend`` and a
    Celery-backed notification sender. Call ``db.initialize()`` before use.
    """
    settings = settings or get_settings()
    db = db or DatabaseManager(create_database_engine(settings))
    change_feed = change_feed or create_change_feed(settings)
    notifications = NotificationDispatcher(sender or CeleryNotificationSender())
    ledger = CapacityLedger()

    services = EnrollmentServices(
        db=db,
        change_feed=change_feed,
        ledger=ledger,
        notifications=notifications,
        events=EventService(db, change_feed, settings),
        waitlist=WaitlistService(db, ledger, notifications, change_feed),
        lottery=LotteryService(db, ledger, notifications, change_feed, rng=rng),
        invitations=InvitationService(db, ledger, notifications, change_feed),
    )
    logger.info(f"Enrollment services built ({settings.environment}, feed={type(change_feed).__name__})")
    return services
