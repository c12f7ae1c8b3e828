from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone as dt_timezone
from typing import Iterable, List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo
import logging
import uuid

from slotbook.models.availability import AvailabilityRule
from slotbook.models.event_type import EventType
from slotbook.models.team import TeamMember
from slotbook.services.calendar.base import BusyInterval
from slotbook.utils.clock import Clock, ensure_utc, utc_now

logger = logging.getLogger(__name__)

# Fixed slot granularity, not configurable per event type
SLOT_GRANULARITY = timedelta(minutes=15)

_EPOCH = datetime(1970, 1, 1, tzinfo=dt_timezone.utc)


@dataclass(frozen=True)
class TimeSlot:
    start: datetime
    end: datetime
    available_member_ids: Tuple[uuid.UUID, ...] = ()


def day_of_week(day: date) -> int:
    """0=Sunday ... 6=Saturday (Python's weekday() starts on Monday)"""
    return (day.weekday() + 1) % 7


def round_up_to_granularity(instant: datetime, granularity: timedelta = SLOT_GRANULARITY) -> datetime:
    """Ceiling to the slot grid; an instant already on a boundary is kept"""
    instant = ensure_utc(instant)
    remainder = (instant - _EPOCH) % granularity
    if not remainder:
        return instant
    return instant + (granularity - remainder)


def pick_rule(rules: Iterable[AvailabilityRule], day: date) -> Optional[AvailabilityRule]:
    """The single available rule for the day's weekday, if any"""
    wanted = day_of_week(day)
    candidates = [r for r in rules if r.day_of_week == wanted and r.is_available]
    if not candidates:
        return None
    if len(candidates) > 1:
        logger.debug(f"Multiple availability rules for weekday {wanted}; using the earliest")
    return min(candidates, key=lambda r: r.start_time)


def working_window(rule: AvailabilityRule, day: date, timezone: str) -> Optional[Tuple[datetime, datetime]]:
    """Rule's local wall-clock hours on ``day`` in ``timezone``, as UTC instants"""
    tz = ZoneInfo(timezone)
    start = datetime.combine(day, rule.start_time, tzinfo=tz).astimezone(dt_timezone.utc)
    if rule.end_time == time(0, 0):
        # 00:00 as an end time means midnight at the end of the day
        end = datetime.combine(day + timedelta(days=1), time(0, 0), tzinfo=tz).astimezone(dt_timezone.utc)
    else:
        end = datetime.combine(day, rule.end_time, tzinfo=tz).astimezone(dt_timezone.utc)
    if end <= start:
        return None
    return start, end


def subtract_interval(busy: Iterable[BusyInterval], start: datetime, end: datetime) -> List[BusyInterval]:
    """Busy time with ``[start, end)`` cut out; providers merge adjacent events into one block"""
    remaining: List[BusyInterval] = []
    for interval in busy:
        if not interval.overlaps(start, end):
            remaining.append(interval)
            continue
        if interval.start < start:
            remaining.append(BusyInterval(start=interval.start, end=start))
        if interval.end > end:
            remaining.append(BusyInterval(start=end, end=interval.end))
    return remaining


def compute_slots(
        rule: Optional[AvailabilityRule],
        busy: Optional[Sequence[BusyInterval]],
        event_type: EventType,
        day: date,
        timezone: str,
        now: datetime,
) -> List[TimeSlot]:
    """
    Bookable slots for one member and one day.

    Pure: the same rule, busy intervals, event type and ``now`` always give the
    same slots. ``busy=None`` means the calendar could not be read, which is
    treated as fully busy.
    """
    if rule is None:
        return []
    if busy is None:
        return []

    window = working_window(rule, day, timezone)
    if window is None:
        return []
    window_start, window_end = window

    now = ensure_utc(now)
    duration = timedelta(minutes=event_type.duration_minutes)
    before = timedelta(minutes=event_type.before_buffer_mins or 0)
    after = timedelta(minutes=event_type.after_buffer_mins or 0)
    min_notice = timedelta(hours=max(event_type.min_notice_hours or 0, 0))

    earliest_allowed = max(now, now + min_notice)
    cursor = round_up_to_granularity(max(earliest_allowed, window_start))

    slots: List[TimeSlot] = []
    while cursor + duration <= window_end:
        slot_end = cursor + duration
        buffered_start = cursor - before
        buffered_end = slot_end + after

        conflict = any(b.overlaps(buffered_start, buffered_end) for b in busy)
        if not conflict and cursor > now:
            slots.append(TimeSlot(start=cursor, end=slot_end))

        cursor += SLOT_GRANULARITY

    return slots


class SlotGenerator:
    """Slots for one member and one day, backed by the calendar adapter and the booking store"""

    def __init__(self, adapter, repository, clock: Clock = utc_now):
        self.adapter = adapter
        self.repository = repository
        self.clock = clock

    async def busy_intervals(
            self,
            member: TeamMember,
            window_start: datetime,
            window_end: datetime,
            exclude_booking_id: Optional[uuid.UUID] = None,
            exclude_interval: Optional[Tuple[datetime, datetime]] = None,
    ) -> Optional[List[BusyInterval]]:
        """
        Calendar busy time plus the member's confirmed bookings; None if the calendar is unreadable.

        ``exclude_interval`` is the excluded booking's own calendar event, which
        free/busy still reports as busy until the event is moved.
        """
        external = await self.adapter.free_busy(member, window_start, window_end)
        if external is None:
            logger.warning(f"No free/busy data for member {member.id}; treating {window_start.date()} as fully busy")
            return None
        if exclude_interval is not None:
            external = subtract_interval(external, *exclude_interval)

        local = [
            BusyInterval(start=b.start_time, end=b.end_time)
            for b in self.repository.confirmed_bookings_overlapping(
                member.id, window_start, window_end, exclude_booking_id=exclude_booking_id
            )
        ]
        return sorted(list(external) + local, key=lambda b: b.start)

    async def generate_slots(
            self,
            member: TeamMember,
            event_type: EventType,
            day: date,
            timezone: str,
            exclude_booking_id: Optional[uuid.UUID] = None,
            exclude_interval: Optional[Tuple[datetime, datetime]] = None,
    ) -> List[TimeSlot]:
        rule = pick_rule(member.availability_rules, day)
        if rule is None:
            return []

        window = working_window(rule, day, timezone)
        if window is None:
            return []

        # One query for the whole window, widened so buffers at the edges are checked too
        query_start = window[0] - timedelta(minutes=event_type.before_buffer_mins or 0)
        query_end = window[1] + timedelta(minutes=event_type.after_buffer_mins or 0)
        busy = await self.busy_intervals(
            member, query_start, query_end,
            exclude_booking_id=exclude_booking_id, exclude_interval=exclude_interval,
        )

        slots = compute_slots(rule, busy, event_type, day, timezone, self.clock())
        logger.debug(f"Member {member.id}: {len(slots)} slots on {day} ({timezone})")
        return slots
