# slotbook/services/booking/booking_repository.py
"""
Persistence operations the booking engine depends on.

All writes that decide an assignment go through ``claim_member``, which runs
as one transaction holding a row lock on the member.
"""
import logging
from datetime import date, datetime, time, timedelta, timezone as dt_timezone
from typing import List, Optional
from zoneinfo import ZoneInfo
import uuid

from sqlalchemy import and_, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from slotbook.models.booking import Booking, BookingStatus
from slotbook.models.event_type import EventType
from slotbook.models.team import Team, TeamMember, TeamMembership
from slotbook.utils.clock import ensure_utc

logger = logging.getLogger(__name__)

CURSOR_STEP = timedelta(microseconds=1)


def local_day_bounds(day: date, timezone: str):
    """[start, end) of a local calendar day, as UTC instants"""
    tz = ZoneInfo(timezone)
    start = datetime.combine(day, time.min, tzinfo=tz).astimezone(dt_timezone.utc)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz).astimezone(dt_timezone.utc)
    return start, end


def advance_cursor(previous: Optional[datetime], now: datetime) -> datetime:
    """Fairness cursors only ever move forward"""
    now = ensure_utc(now)
    if previous is None:
        return now
    return max(now, ensure_utc(previous) + CURSOR_STEP)


class BookingRepository:

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_team(self, slug: str) -> Optional[Team]:
        return self.db.query(Team).filter(Team.slug == slug, Team.is_active.is_(True)).first()

    def get_event_type(self, slug: str, team: Optional[Team] = None) -> Optional[EventType]:
        query = self.db.query(EventType).filter(EventType.slug == slug, EventType.is_active.is_(True))
        if team is not None:
            scoped = query.filter(EventType.team_id == team.id).first()
            if scoped is not None:
                return scoped
            return query.filter(EventType.team_id.is_(None)).first()
        return query.order_by(EventType.team_id.is_(None).desc(), EventType.created_at).first()

    def list_active_members(self, team_id: Optional[uuid.UUID] = None) -> List[TeamMember]:
        """Active members ordered by fairness cursor (never booked first), then id"""
        query = self.db.query(TeamMember).options(selectinload(TeamMember.availability_rules))
        query = query.filter(TeamMember.is_active.is_(True))

        if team_id is not None:
            query = query.join(TeamMembership, TeamMembership.team_member_id == TeamMember.id).filter(
                TeamMembership.team_id == team_id,
                TeamMembership.is_active.is_(True),
                TeamMembership.in_round_robin.is_(True),
            )

        return query.order_by(TeamMember.last_booked_at.asc().nullsfirst(), TeamMember.id.asc()).all()

    def count_confirmed_on_local_date(
            self,
            event_type_id: uuid.UUID,
            day: date,
            timezone: str,
            exclude_booking_id: Optional[uuid.UUID] = None,
    ) -> int:
        day_start, day_end = local_day_bounds(day, timezone)
        query = self.db.query(func.count(Booking.id)).filter(
            Booking.event_type_id == event_type_id,
            Booking.status == BookingStatus.CONFIRMED.value,
            Booking.start_time >= day_start,
            Booking.start_time < day_end,
        )
        if exclude_booking_id is not None:
            query = query.filter(Booking.id != exclude_booking_id)
        return query.scalar() or 0

    def confirmed_bookings_overlapping(
            self,
            team_member_id: uuid.UUID,
            start: datetime,
            end: datetime,
            exclude_booking_id: Optional[uuid.UUID] = None,
    ) -> List[Booking]:
        query = self.db.query(Booking).filter(
            Booking.team_member_id == team_member_id,
            Booking.status == BookingStatus.CONFIRMED.value,
            Booking.start_time < end,
            Booking.end_time > start,
        )
        if exclude_booking_id is not None:
            query = query.filter(Booking.id != exclude_booking_id)
        return query.order_by(Booking.start_time).all()

    def get_booking_by_token(self, token: str) -> Optional[Booking]:
        return self.db.query(Booking).filter(Booking.manage_token == token).first()

    def upcoming_confirmed(
            self,
            window_start: datetime,
            window_end: datetime,
            only_unreminded: bool = False,
    ) -> List[Booking]:
        conditions = [
            Booking.status == BookingStatus.CONFIRMED.value,
            Booking.start_time >= window_start,
            Booking.start_time <= window_end,
        ]
        if only_unreminded:
            conditions.append(Booking.reminder_sent_at.is_(None))
        return self.db.query(Booking).filter(and_(*conditions)).order_by(Booking.start_time).all()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _over_daily_cap(self, event_type: EventType, day: date, timezone: str,
                        exclude_booking_id: Optional[uuid.UUID] = None) -> bool:
        if event_type.max_daily_bookings is None:
            return False
        # Serialise cap checks for this event type across members
        self.db.query(EventType.id).filter(EventType.id == event_type.id).with_for_update().first()
        count = self.count_confirmed_on_local_date(event_type.id, day, timezone, exclude_booking_id)
        return count >= event_type.max_daily_bookings

    def claim_member(
            self,
            member_id: uuid.UUID,
            booking: Booking,
            event_type: EventType,
            buffered_start: datetime,
            buffered_end: datetime,
            local_day: date,
            now: datetime,
    ) -> Optional[Booking]:
        """
        Atomically: lock the member, re-check conflicts and the daily cap,
        insert the booking and advance the member's fairness cursor.

        Returns the persisted booking, or None when the member can no longer
        take this slot. Raises SQLAlchemyError (after rolling back) on store failure.
        """
        try:
            member = (
                self.db.query(TeamMember)
                .filter(TeamMember.id == member_id, TeamMember.is_active.is_(True))
                .with_for_update()
                .one_or_none()
            )
            if member is None:
                self.db.rollback()
                return None

            if self.confirmed_bookings_overlapping(member_id, buffered_start, buffered_end):
                logger.info(f"Claim lost: member {member_id} already booked in {buffered_start}..{buffered_end}")
                self.db.rollback()
                return None

            if self._over_daily_cap(event_type, local_day, booking.timezone):
                logger.info(f"Claim lost: daily cap reached for event type {event_type.slug} on {local_day}")
                self.db.rollback()
                return None

            booking.team_member_id = member.id
            self.db.add(booking)
            member.last_booked_at = advance_cursor(member.last_booked_at, now)

            self.db.commit()
            self.db.refresh(booking)
            return booking

        except SQLAlchemyError:
            self.db.rollback()
            raise

    def move_booking(
            self,
            booking: Booking,
            event_type: EventType,
            start: datetime,
            end: datetime,
            timezone: str,
            buffered_start: datetime,
            buffered_end: datetime,
            local_day: date,
    ) -> bool:
        """Reschedule in place under the member lock; False if the new window was taken meanwhile"""
        try:
            self.db.query(TeamMember).filter(TeamMember.id == booking.team_member_id).with_for_update().one()

            if self.confirmed_bookings_overlapping(
                    booking.team_member_id, buffered_start, buffered_end, exclude_booking_id=booking.id
            ):
                self.db.rollback()
                return False

            if self._over_daily_cap(event_type, local_day, timezone, exclude_booking_id=booking.id):
                self.db.rollback()
                return False

            booking.start_time = start
            booking.end_time = end
            booking.timezone = timezone
            booking.reminder_sent_at = None

            self.db.commit()
            self.db.refresh(booking)
            return True

        except SQLAlchemyError:
            self.db.rollback()
            raise

    def save(self, instance) -> None:
        try:
            self.db.add(instance)
            self.db.commit()
            self.db.refresh(instance)
        except SQLAlchemyError:
            self.db.rollback()
            raise

    def mark_member_revoked(self, member: TeamMember, now: datetime) -> None:
        """Flag a member whose OAuth grant the provider rejected"""
        if member.google_oauth_revoked_at is not None:
            return
        try:
            member.google_oauth_revoked_at = ensure_utc(now)
            self.db.commit()
            logger.warning(f"Flagged OAuth grant as revoked for member {member.id}")
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Could not flag revoked OAuth grant for member {member.id}: {e}")
