# tests/test_booking_service.py
import asyncio
from collections import Counter
from datetime import datetime, timedelta, timezone

import pytest

from conftest import MONDAY, NOW
from slotbook.core.capabilities import CronCapability
from slotbook.core.errors import NotFound, SlotUnavailable, ValidationFailed
from slotbook.models import Booking, BookingStatus
from slotbook.schemas.booking import BookingCreateRequest, RescheduleRequest
from slotbook.services.booking.booking_service import CALENDAR_CREATE_WARNING
from slotbook.services.calendar.base import BusyInterval


def _utc(hour: int, minute: int = 0, days: int = 0) -> datetime:
    base = datetime(MONDAY.year, MONDAY.month, MONDAY.day, hour, minute, tzinfo=timezone.utc)
    return base + timedelta(days=days)


def _request(start: datetime, slug: str = "intro-call", **overrides) -> BookingCreateRequest:
    values = dict(
        event_type_slug=slug,
        start_time=start,
        timezone="UTC",
        name="Ada Lovelace",
        email="Ada@Example.com",
        phone="+1 555 010 0199",
        notes="Looking forward to it",
    )
    values.update(overrides)
    return BookingCreateRequest(**values)


@pytest.mark.asyncio
async def test_create_booking_confirms_and_syncs(db, service, adapter, notifier, make_member, make_event_type):
    member = make_member()
    make_event_type()

    result = await service.create_booking(_request(_utc(10, 0)))

    booking = result.booking
    assert booking.status == BookingStatus.CONFIRMED.value
    assert booking.team_member_id == member.id
    assert booking.start_time == _utc(10, 0)
    assert booking.end_time == _utc(10, 30)
    assert booking.invitee_email == "ada@example.com"
    assert booking.calendar_event_id == "evt-1"
    assert booking.join_link == "https://meet.google.com/abc-defg-hij"
    assert len(booking.manage_token) >= 43
    assert result.calendar_synced is True
    assert result.warnings == []

    db.refresh(member)
    assert member.last_booked_at == NOW

    assert notifier.kinds() == ["created"]
    _, payload = notifier.calls[0]
    assert payload.manage_url == f"https://book.example.com/manage/{booking.manage_token}"
    assert payload.join_pin == "123456789"


@pytest.mark.asyncio
async def test_create_rejects_slot_nobody_is_free_for(service, adapter, make_member, make_event_type):
    member = make_member()
    make_event_type()
    adapter.busy[member.id] = [BusyInterval(start=_utc(10, 0), end=_utc(11, 0))]

    with pytest.raises(SlotUnavailable):
        await service.create_booking(_request(_utc(10, 0)))


@pytest.mark.asyncio
async def test_create_rejects_off_grid_start(service, make_member, make_event_type):
    make_member()
    make_event_type()

    with pytest.raises(SlotUnavailable):
        await service.create_booking(_request(_utc(10, 5)))


@pytest.mark.asyncio
async def test_create_fails_closed_when_calendar_unreadable(service, adapter, make_member, make_event_type):
    member = make_member()
    make_event_type()
    adapter.unreadable.add(member.id)

    with pytest.raises(SlotUnavailable):
        await service.create_booking(_request(_utc(10, 0)))


@pytest.mark.asyncio
async def test_concurrent_requests_for_one_member_book_once(db, service, make_member, make_event_type):
    """Two simultaneous requests for the same slot and a single host: one wins, one gets slot_unavailable"""
    make_member()
    make_event_type()

    results = await asyncio.gather(
        service.create_booking(_request(_utc(10, 0))),
        service.create_booking(_request(_utc(10, 0), name="Charles Babbage", email="charles@example.com")),
        return_exceptions=True,
    )

    successes = [r for r in results if not isinstance(r, Exception)]
    failures = [r for r in results if isinstance(r, Exception)]
    assert len(successes) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], SlotUnavailable)
    assert db.query(Booking).filter(Booking.status == BookingStatus.CONFIRMED.value).count() == 1


@pytest.mark.asyncio
async def test_concurrent_requests_spread_across_members(db, service, make_member, make_event_type):
    make_member("Ada Host")
    make_member("Bob Host")
    make_event_type()

    results = await asyncio.gather(
        service.create_booking(_request(_utc(10, 0))),
        service.create_booking(_request(_utc(10, 0), email="charles@example.com")),
    )

    assert len({r.booking.team_member_id for r in results}) == 2
    assert db.query(Booking).count() == 2


@pytest.mark.asyncio
async def test_round_robin_is_fair(service, make_member, make_event_type):
    """Nine bookings across three free members: nobody is more than one ahead"""
    members = [make_member(f"Host {name}") for name in ("Ada", "Bob", "Cy")]
    make_event_type()

    assigned = Counter()
    for index in range(9):
        start = _utc(9, 0) + timedelta(minutes=30 * index)
        result = await service.create_booking(_request(start, email=f"invitee{index}@example.com"))
        assigned[result.booking.team_member_id] += 1

    counts = [assigned[m.id] for m in members]
    assert max(counts) - min(counts) <= 1
    assert sum(counts) == 9


@pytest.mark.asyncio
async def test_all_calendar_tiers_failing_still_confirms(db, service, adapter, notifier, make_member,
                                                         make_event_type):
    make_member()
    make_event_type()
    adapter.fail_writes = True

    result = await service.create_booking(_request(_utc(10, 0)))

    stored = db.query(Booking).one()
    assert stored.status == BookingStatus.CONFIRMED.value
    assert stored.calendar_event_id is None
    assert result.calendar_synced is False
    assert CALENDAR_CREATE_WARNING in result.warnings
    assert notifier.kinds() == ["created"]


@pytest.mark.asyncio
async def test_calendar_write_timeout_does_not_fail_booking(service, adapter, make_member, make_event_type):
    make_member()
    make_event_type()

    async def hanging_create(member, details):
        await asyncio.sleep(5)

    adapter.create_event = hanging_create

    result = await service.create_booking(_request(_utc(10, 0)))

    assert result.booking.status == BookingStatus.CONFIRMED.value
    assert result.calendar_synced is False


@pytest.mark.asyncio
async def test_daily_cap_is_enforced(service, make_member, make_event_type):
    make_member("Ada Host")
    make_member("Bob Host")
    make_event_type(max_daily_bookings=1)

    await service.create_booking(_request(_utc(10, 0)))
    with pytest.raises(SlotUnavailable):
        await service.create_booking(_request(_utc(14, 0), email="second@example.com"))

    # Next day is a fresh count
    result = await service.create_booking(_request(_utc(10, 0, days=1), email="third@example.com"))
    assert result.booking.status == BookingStatus.CONFIRMED.value


@pytest.mark.asyncio
async def test_past_and_far_future_starts_are_rejected(service, make_member, make_event_type):
    make_member()
    make_event_type(max_advance_days=30)

    with pytest.raises(ValidationFailed):
        await service.create_booking(_request(NOW - timedelta(hours=2)))
    with pytest.raises(ValidationFailed):
        await service.create_booking(_request(NOW + timedelta(days=31)))


@pytest.mark.asyncio
async def test_unknown_event_type_and_team(service, make_member, make_event_type):
    make_member()
    make_event_type()

    with pytest.raises(NotFound) as missing_type:
        await service.create_booking(_request(_utc(10, 0), slug="no-such-event"))
    assert missing_type.value.message == "Event type not found"

    with pytest.raises(NotFound) as missing_team:
        await service.create_booking(_request(_utc(10, 0), team_slug="ghost-team"))
    assert missing_team.value.message == "Team not found"


@pytest.mark.asyncio
async def test_team_scoped_booking_only_assigns_team_members(service, make_team, make_member, make_event_type):
    sales = make_team("sales")
    seller = make_member("Sam Seller", teams=[sales])
    make_member("Outside Host")
    make_event_type(slug="demo", team=sales)

    for index in range(3):
        result = await service.create_booking(
            _request(_utc(9 + index), slug="demo", team_slug="sales", email=f"lead{index}@example.com")
        )
        assert result.booking.team_member_id == seller.id


@pytest.mark.asyncio
async def test_cancel_once_then_reject(service, adapter, notifier, make_member, make_event_type):
    """A second cancel is a terminal-state error with no repeated calendar delete or email"""
    make_member()
    make_event_type()
    created = await service.create_booking(_request(_utc(10, 0)))
    token = created.booking.manage_token

    result = await service.cancel_booking(token)
    assert result.booking.status == BookingStatus.CANCELLED.value
    assert result.booking.cancelled_at == NOW
    assert result.calendar_synced is True
    assert adapter.deleted == [(created.booking.team_member_id, "evt-1")]

    with pytest.raises(ValidationFailed):
        await service.cancel_booking(token)

    assert len(adapter.deleted) == 1
    assert notifier.kinds() == ["created", "cancelled"]


@pytest.mark.asyncio
async def test_cancelled_slot_becomes_bookable_again(service, make_member, make_event_type):
    make_member()
    make_event_type()
    created = await service.create_booking(_request(_utc(10, 0)))
    await service.cancel_booking(created.booking.manage_token)

    again = await service.create_booking(_request(_utc(10, 0), email="next@example.com"))
    assert again.booking.status == BookingStatus.CONFIRMED.value


@pytest.mark.asyncio
async def test_cancel_completed_booking_is_rejected(db, service, make_member, make_event_type):
    make_member()
    make_event_type()
    created = await service.create_booking(_request(_utc(10, 0)))
    created.booking.status = BookingStatus.COMPLETED.value
    db.commit()

    with pytest.raises(ValidationFailed):
        await service.cancel_booking(created.booking.manage_token)


@pytest.mark.asyncio
async def test_cancel_without_calendar_event_skips_delete(service, adapter, make_member, make_event_type):
    make_member()
    make_event_type()
    adapter.fail_writes = True
    created = await service.create_booking(_request(_utc(10, 0)))

    result = await service.cancel_booking(created.booking.manage_token)

    assert result.calendar_synced is True
    assert adapter.deleted == []


@pytest.mark.asyncio
async def test_unknown_or_malformed_token_is_not_found(service):
    with pytest.raises(NotFound):
        service.get_by_token("well-formed-but-unknown-token")
    with pytest.raises(NotFound):
        await service.cancel_booking("bad token!")


@pytest.mark.asyncio
async def test_reschedule_keeps_identity(db, service, adapter, notifier, make_member, make_event_type):
    make_member("Ada Host")
    make_member("Bob Host")
    make_event_type()
    created = await service.create_booking(_request(_utc(10, 0)))
    booking_id = created.booking.id
    token = created.booking.manage_token
    member_id = created.booking.team_member_id

    result = await service.reschedule_booking(token, RescheduleRequest(start_time=_utc(14, 0), timezone="UTC"))

    assert result.booking.id == booking_id
    assert result.booking.manage_token == token
    assert result.booking.team_member_id == member_id
    assert result.booking.start_time == _utc(14, 0)
    assert result.booking.end_time == _utc(14, 30)
    assert adapter.updated[0][1] == "evt-1"
    assert db.query(Booking).count() == 1

    kind, payload = notifier.calls[-1]
    assert kind.value == "rescheduled"
    assert payload.previous_start_time == _utc(10, 0)


@pytest.mark.asyncio
async def test_reschedule_may_overlap_its_own_old_time(service, adapter, make_member, make_event_type):
    member = make_member()
    make_event_type()
    created = await service.create_booking(_request(_utc(10, 0)))
    # The booking's own event is on the host's calendar
    assert adapter.busy[member.id] == [BusyInterval(start=_utc(10, 0), end=_utc(10, 30))]

    result = await service.reschedule_booking(
        created.booking.manage_token, RescheduleRequest(start_time=_utc(10, 15), timezone="UTC")
    )
    assert result.booking.start_time == _utc(10, 15)
    assert adapter.busy[member.id] == [BusyInterval(start=_utc(10, 15), end=_utc(10, 45))]


@pytest.mark.asyncio
async def test_reschedule_only_frees_its_own_part_of_a_merged_busy_block(service, adapter, make_member,
                                                                          make_event_type):
    member = make_member()
    make_event_type()
    created = await service.create_booking(_request(_utc(10, 0)))
    token = created.booking.manage_token
    # Free/busy reports the booking and a back-to-back meeting as one block
    adapter.busy[member.id] = [BusyInterval(start=_utc(10, 0), end=_utc(11, 0))]

    with pytest.raises(SlotUnavailable):
        await service.reschedule_booking(token, RescheduleRequest(start_time=_utc(10, 15), timezone="UTC"))

    result = await service.reschedule_booking(token, RescheduleRequest(start_time=_utc(9, 45), timezone="UTC"))
    assert result.booking.start_time == _utc(9, 45)


@pytest.mark.asyncio
async def test_reschedule_into_busy_time_is_rejected(service, adapter, make_member, make_event_type):
    member = make_member()
    make_event_type()
    created = await service.create_booking(_request(_utc(10, 0)))
    adapter.busy[member.id] = [BusyInterval(start=_utc(15, 0), end=_utc(16, 0))]

    with pytest.raises(SlotUnavailable):
        await service.reschedule_booking(
            created.booking.manage_token, RescheduleRequest(start_time=_utc(15, 0), timezone="UTC")
        )


@pytest.mark.asyncio
async def test_reschedule_cancelled_booking_is_rejected(service, make_member, make_event_type):
    make_member()
    make_event_type()
    created = await service.create_booking(_request(_utc(10, 0)))
    await service.cancel_booking(created.booking.manage_token)

    with pytest.raises(ValidationFailed):
        await service.reschedule_booking(
            created.booking.manage_token, RescheduleRequest(start_time=_utc(14, 0), timezone="UTC")
        )


@pytest.mark.asyncio
async def test_reschedule_creates_missing_calendar_event(service, adapter, make_member, make_event_type):
    make_member()
    make_event_type()
    adapter.fail_writes = True
    created = await service.create_booking(_request(_utc(10, 0)))
    adapter.fail_writes = False

    result = await service.reschedule_booking(
        created.booking.manage_token, RescheduleRequest(start_time=_utc(11, 0), timezone="UTC")
    )

    assert result.calendar_synced is True
    assert result.booking.calendar_event_id == "evt-1"
    assert adapter.updated == []


@pytest.mark.asyncio
async def test_availability_merges_members(service, adapter, make_member, make_event_type):
    ada = make_member("Ada Host")
    bob = make_member("Bob Host")
    make_event_type()
    adapter.busy[ada.id] = [BusyInterval(start=_utc(9, 0), end=_utc(17, 0))]
    adapter.busy[bob.id] = [BusyInterval(start=_utc(12, 0), end=_utc(17, 0))]

    slots = await service.get_availability("intro-call", MONDAY, "UTC")

    assert slots[0].start == _utc(9, 0)
    assert slots[-1].start == _utc(11, 30)
    assert all(slot.available_member_ids == (bob.id,) for slot in slots)


@pytest.mark.asyncio
async def test_availability_validates_input(service, make_event_type):
    make_event_type()

    with pytest.raises(ValidationFailed):
        await service.get_availability("intro-call", MONDAY, "Mars/Olympus_Mons")
    with pytest.raises(ValidationFailed):
        await service.get_availability("Intro Call", MONDAY, "UTC")
    with pytest.raises(NotFound):
        await service.get_availability("missing", MONDAY, "UTC")


@pytest.mark.asyncio
async def test_availability_beyond_horizon_is_empty(service, make_member, make_event_type):
    make_member()
    make_event_type(max_advance_days=7)

    assert await service.get_availability("intro-call", MONDAY + timedelta(days=10), "UTC") == []


@pytest.mark.asyncio
async def test_list_upcoming_requires_capability(service):
    with pytest.raises(TypeError):
        service.list_upcoming("not-a-capability", 90, 150)
    with pytest.raises(ValidationFailed):
        service.list_upcoming(CronCapability(), 150, 90)
    with pytest.raises(ValidationFailed):
        service.list_upcoming(CronCapability(), 0, 8 * 24 * 60)


@pytest.mark.asyncio
async def test_list_upcoming_returns_confirmed_in_window(service, make_member, make_event_type):
    make_member()
    make_event_type()
    soon = await service.create_booking(_request(_utc(10, 0)))  # 22h after NOW
    later = await service.create_booking(_request(_utc(10, 0, days=2), email="later@example.com"))
    cancelled = await service.create_booking(_request(_utc(11, 0), email="gone@example.com"))
    await service.cancel_booking(cancelled.booking.manage_token)

    upcoming = service.list_upcoming(CronCapability(), 0, 24 * 60)

    assert [b.id for b in upcoming] == [soon.booking.id]
    assert later.booking.id not in [b.id for b in upcoming]


@pytest.mark.asyncio
async def test_reminders_are_sent_once(service, clock, notifier, make_member, make_event_type):
    make_member()
    make_event_type()
    created = await service.create_booking(_request(_utc(10, 0)))
    clock.now = _utc(8, 0)  # two hours before the meeting

    assert await service.send_due_reminders(CronCapability(issued_to="test")) == 1
    assert created.booking.reminder_sent_at == _utc(8, 0)
    assert notifier.kinds() == ["created", "reminder"]

    assert await service.send_due_reminders(CronCapability(issued_to="test")) == 0
    assert notifier.kinds() == ["created", "reminder"]
