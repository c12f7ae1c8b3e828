# tests/conftest.py
import asyncio
import os
import uuid
from datetime import date, datetime, time, timezone
from typing import Dict, List, Optional

# Settings are read at import time; pin them before anything from slotbook loads
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["CALENDAR_ENCRYPTION_KEY"] = "kqY0lW3b6lYV0Jc9wqK0m8yF4iL6R8lq8QqK2n0xV3Q="
os.environ["CRON_SECRET"] = "test-cron-secret"
os.environ["RATE_LIMIT_BACKEND"] = "memory"
os.environ["FRONTEND_URL"] = "https://book.example.com"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from slotbook.api.dependencies import get_booking_service
from slotbook.config.database import get_db
from slotbook.config.settings import Settings
from slotbook.main import create_app
from slotbook.models import AvailabilityRule, Base, EventType, Team, TeamMember, TeamMembership
from slotbook.services.booking import rate_limiter
from slotbook.services.booking.booking_service import BookingService
from slotbook.services.calendar.base import BusyInterval, CreatedEvent

# Sunday noon UTC; the Monday after is the usual booking day in tests
NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
MONDAY = date(2026, 3, 2)


class FrozenClock:
    """Callable clock the tests can move by hand"""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FakeCalendarAdapter:
    """
    Stands in for CalendarAdapter.

    ``busy`` maps member id to busy intervals; members listed in
    ``unreadable`` get None from free_busy (every tier failed). Events written
    through the adapter show up in ``busy`` like they would on a real calendar.
    """

    def __init__(self):
        self.busy: Dict[uuid.UUID, List[BusyInterval]] = {}
        self.events: Dict[str, BusyInterval] = {}
        self.unreadable = set()
        self.delays: Dict[uuid.UUID, float] = {}
        self.errors: Dict[uuid.UUID, Exception] = {}
        self.fail_writes = False
        self.free_busy_calls = []
        self.created = []
        self.updated = []
        self.deleted = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def free_busy(self, member, window_start, window_end):
        self.free_busy_calls.append((member.id, window_start, window_end))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delays.get(member.id, 0))
            if member.id in self.errors:
                raise self.errors[member.id]
            if member.id in self.unreadable:
                return None
            return list(self.busy.get(member.id, []))
        finally:
            self.in_flight -= 1

    async def create_event(self, member, details):
        if self.fail_writes:
            return None
        self.created.append((member.id, details))
        event_id = f"evt-{len(self.created)}"
        self._place_event(member.id, event_id, details)
        return CreatedEvent(
            event_id=event_id,
            join_link="https://meet.google.com/abc-defg-hij",
            join_phone="+1 650-555-0100",
            join_pin="123456789",
            tier="member_oauth",
        )

    async def update_event(self, member, event_id, details):
        if self.fail_writes:
            return None
        self.updated.append((member.id, event_id, details))
        self._remove_event(member.id, event_id)
        self._place_event(member.id, event_id, details)
        return event_id

    async def delete_event(self, member, event_id):
        if self.fail_writes:
            return False
        self.deleted.append((member.id, event_id))
        self._remove_event(member.id, event_id)
        return True

    def _place_event(self, member_id, event_id, details):
        interval = BusyInterval(start=details.start, end=details.end)
        self.events[event_id] = interval
        self.busy.setdefault(member_id, []).append(interval)

    def _remove_event(self, member_id, event_id):
        interval = self.events.pop(event_id, None)
        if interval is not None and interval in self.busy.get(member_id, []):
            self.busy[member_id].remove(interval)


class RecordingNotifier:
    def __init__(self):
        self.calls = []

    async def trigger(self, kind, payload):
        self.calls.append((kind, payload))
        return {}

    def kinds(self):
        return [kind.value for kind, _ in self.calls]


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def test_settings():
    return Settings(
        CALENDAR_QUERY_TIMEOUT_SECONDS=0.5,
        CALENDAR_WRITE_TIMEOUT_SECONDS=0.5,
        MAX_CALENDAR_CONCURRENCY=4,
        DEFAULT_MAX_ADVANCE_DAYS=90,
        FRONTEND_URL="https://book.example.com",
        CRON_SECRET="test-cron-secret",
    )


@pytest.fixture
def adapter():
    return FakeCalendarAdapter()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def make_team(db):
    def _make_team(slug: str = "sales", name: Optional[str] = None) -> Team:
        team = Team(slug=slug, name=name or slug.title())
        db.add(team)
        db.commit()
        db.refresh(team)
        return team

    return _make_team


@pytest.fixture
def make_member(db):
    def _make_member(
            name: str = "Grace Hopper",
            email: Optional[str] = None,
            days=range(7),
            start: time = time(9, 0),
            end: time = time(17, 0),
            last_booked_at: Optional[datetime] = None,
            teams=(),
            member_id: Optional[uuid.UUID] = None,
            in_round_robin: bool = True,
    ) -> TeamMember:
        member = TeamMember(
            id=member_id or uuid.uuid4(),
            name=name,
            email=email or f"{name.split()[0].lower()}-{uuid.uuid4().hex[:6]}@example.com",
            google_calendar_id=f"{name.split()[0].lower()}@example.com",
            is_active=True,
            last_booked_at=last_booked_at,
        )
        db.add(member)
        for day in days:
            db.add(AvailabilityRule(team_member=member, day_of_week=day, start_time=start, end_time=end,
                                    is_available=True))
        for team in teams:
            db.add(TeamMembership(team_id=team.id, team_member=member, is_active=True,
                                  in_round_robin=in_round_robin))
        db.commit()
        db.refresh(member)
        return member

    return _make_member


@pytest.fixture
def make_event_type(db):
    def _make_event_type(slug: str = "intro-call", team: Optional[Team] = None, **overrides) -> EventType:
        values = dict(
            slug=slug,
            title="Intro Call",
            duration_minutes=30,
            before_buffer_mins=0,
            after_buffer_mins=0,
            min_notice_hours=0,
            max_daily_bookings=None,
            max_advance_days=None,
            is_active=True,
        )
        values.update(overrides)
        event_type = EventType(team_id=team.id if team else None, **values)
        db.add(event_type)
        db.commit()
        db.refresh(event_type)
        return event_type

    return _make_event_type


@pytest.fixture
def service(db, adapter, notifier, clock, test_settings):
    return BookingService(db, adapter=adapter, notifier=notifier, clock=clock, settings=test_settings)


@pytest.fixture
def client(db, service, monkeypatch):
    """
    TestClient over the real app, with the booking engine wired to the
    in-memory database, the fake calendar and the recording notifier.
    """
    monkeypatch.setattr(rate_limiter, "_limiter", None)

    app = create_app()
    app.dependency_overrides[get_booking_service] = lambda: service
    app.dependency_overrides[get_db] = lambda: db
    with TestClient(app) as test_client:
        yield test_client
