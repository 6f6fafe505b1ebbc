"""Pytest fixtures: file-backed async SQLite database and in-process collaborators."""
import random
from datetime import datetime, timedelta, timezone
from uuid import UUID

import pytest
from sqlalchemy import event, func, select, update
from sqlalchemy.ext.asyncio import create_async_engine

from lottery_enrollment.change_feed import InMemoryChangeFeed
from lottery_enrollment.config import get_settings
from lottery_enrollment.container import build_services
from lottery_enrollment.database import DatabaseManager
from lottery_enrollment.models import Event, WaitlistEntry, WaitlistStatus
from lottery_enrollment.schemas.event import EventCreate


class RecordingSender:
    """Notification sender that keeps every request it was handed."""

    def __init__(self):
        self.requests = []

    async def send(self, request):
        self.requests.append(request)

    def by_category(self, category):
        return [request for request in self.requests if request.category == category]


class FailingSender:
    """Notification sender whose channel is always down."""

    def __init__(self):
        self.attempts = 0

    async def send(self, request):
        self.attempts += 1
        raise ConnectionError("broker unavailable")


@pytest.fixture(autouse=True)
def fast_retries(monkeypatch):
    """Keep backoff short so conflict retries do not slow the suite down."""
    monkeypatch.setenv("ENROLLMENT_RETRY_BASE_DELAY", "0.001")
    monkeypatch.setenv("ENROLLMENT_RETRY_MAX_DELAY", "0.01")
    monkeypatch.setenv("ENROLLMENT_CHANGE_FEED_BACKEND", "memory")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
async def db(tmp_path):
    """A fresh SQLite database per test; each transaction takes the write lock up front."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    manager = DatabaseManager(engine)
    await manager.initialize(create_tables=True)
    yield manager
    await manager.close()


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def feed():
    return InMemoryChangeFeed()


@pytest.fixture
def services(db, feed, sender):
    return build_services(db=db, change_feed=feed, sender=sender, rng=random.Random(1234))


@pytest.fixture
def make_event(services):
    """Create an event and return its response model."""

    async def _make(capacity=10, waitlist_capacity=50, **overrides):
        data = {
            "title": "Swimming Lessons",
            "organizer_id": "organizer-1",
            "event_date": datetime.now(timezone.utc) + timedelta(days=30),
            "capacity": capacity,
            "waitlist_capacity": waitlist_capacity,
        }
        data.update(overrides)
        return (await services.events.create_event(EventCreate(**data))).unwrap()

    return _make


# ---------------------------------------------------------------------------
# Helpers: seed counters and read back persisted state
# ---------------------------------------------------------------------------
async def set_counters(db, event_id: UUID, **values) -> None:
    """Seed event counters directly, as if earlier activity had happened."""
    async with db.session() as session:
        await session.execute(update(Event).where(Event.id == event_id).values(**values))


async def load_event(db, event_id: UUID) -> Event:
    async with db.session() as session:
        return (await session.execute(select(Event).where(Event.id == event_id))).scalar_one()


async def count_entries(db, event_id: UUID, *statuses: WaitlistStatus) -> int:
    async with db.session() as session:
        result = await session.execute(
            select(func.count(WaitlistEntry.id)).where(
                WaitlistEntry.event_id == event_id, WaitlistEntry.status.in_(statuses)
            )
        )
        return result.scalar()


async def join_many(services, event_id: UUID, count: int, prefix: str = "user") -> list:
    """Join ``count`` distinct users and return their entry ids."""
    entry_ids = []
    for index in range(count):
        result = await services.waitlist.join(event_id, f"{prefix}-{index}", f"Entrant {index}")
        entry_ids.append(result.unwrap())
    return entry_ids
