# slotbook/services/booking/booking_service.py
"""
Booking lifecycle: create, cancel, reschedule.

    confirmed --cancel-->      cancelled (terminal)
    confirmed --reschedule-->  confirmed (same booking, same member, same token)
    confirmed --time passes--> completed (set elsewhere)

Persistence is the durability boundary. Calendar writes and notifications run
after the commit and can only degrade the result, never fail it.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import List, Optional, Sequence
from zoneinfo import ZoneInfo

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from slotbook.config.settings import Settings, get_settings
from slotbook.core.capabilities import CronCapability
from slotbook.core.errors import InternalFailure, NotFound, SlotUnavailable, ValidationFailed
from slotbook.models.booking import Booking, BookingStatus
from slotbook.models.event_type import EventType
from slotbook.schemas.booking import BookingCreateRequest, RescheduleRequest, validate_slug, validate_timezone
from slotbook.schemas.notifications import BookingEventPayload, NotificationKind
from slotbook.services.availability.round_robin import RoundRobinSelector
from slotbook.services.availability.slot_generator import SlotGenerator, TimeSlot
from slotbook.services.booking.booking_repository import BookingRepository
from slotbook.services.booking.manage_token import InvalidManageToken, ManageToken
from slotbook.services.calendar.base import EventDetails
from slotbook.services.calendar.calendar_adapter import CalendarAdapter
from slotbook.services.notification.notification_service import NotificationService
from slotbook.utils.clock import Clock, ensure_utc, utc_now

logger = logging.getLogger(__name__)

PAST_TOLERANCE = timedelta(seconds=60)

CALENDAR_CREATE_WARNING = (
    "Your booking is confirmed, but we could not add it to the host's calendar. "
    "You will still receive a confirmation email."
)
CALENDAR_UPDATE_WARNING = "Your booking was moved, but the calendar event could not be updated."
CALENDAR_DELETE_WARNING = "Your booking was cancelled, but the calendar event could not be removed."
SLOT_TAKEN_MESSAGE = "This time slot is no longer available. Please choose another time."


@dataclass
class BookingResult:
    booking: Booking
    calendar_synced: bool
    warnings: List[str] = field(default_factory=list)


@dataclass
class CancelResult:
    booking: Booking
    calendar_synced: bool
    warnings: List[str] = field(default_factory=list)


class BookingService:

    def __init__(
            self,
            db: Session,
            adapter: Optional[CalendarAdapter] = None,
            notifier: Optional[NotificationService] = None,
            clock: Clock = utc_now,
            settings: Optional[Settings] = None,
    ):
        self.db = db
        self.clock = clock
        self.settings = settings or get_settings()
        self.repository = BookingRepository(db)
        self.adapter = adapter or CalendarAdapter(on_revoked=self._flag_revoked)
        self.notifier = notifier or NotificationService()
        self.slot_generator = SlotGenerator(self.adapter, self.repository, clock=clock)
        self.selector = RoundRobinSelector(self.repository, self.slot_generator, settings=self.settings)

    def _flag_revoked(self, member) -> None:
        self.repository.mark_member_revoked(member, self.clock())

    # ------------------------------------------------------------------
    # Lookups and validation
    # ------------------------------------------------------------------

    def _resolve_team(self, team_slug: Optional[str]):
        if not team_slug:
            return None
        team = self.repository.get_team(team_slug)
        if team is None:
            raise NotFound("Team")
        return team

    def _resolve_event_type(self, slug: str, team=None) -> EventType:
        event_type = self.repository.get_event_type(slug, team)
        if event_type is None:
            raise NotFound("Event type")
        return event_type

    def _max_advance_days(self, event_type: EventType) -> int:
        return event_type.max_advance_days or self.settings.DEFAULT_MAX_ADVANCE_DAYS

    def _validate_start(self, start: datetime, event_type: EventType, now: datetime) -> None:
        if start < now - PAST_TOLERANCE:
            raise ValidationFailed("Cannot book in the past")
        max_days = self._max_advance_days(event_type)
        if start > now + timedelta(days=max_days):
            raise ValidationFailed(f"Cannot book more than {max_days} days ahead")

    @staticmethod
    def _buffered_window(event_type: EventType, start: datetime, end: datetime):
        return (
            start - timedelta(minutes=event_type.before_buffer_mins or 0),
            end + timedelta(minutes=event_type.after_buffer_mins or 0),
        )

    def _booking_for_token(self, token: str) -> Booking:
        try:
            manage_token = ManageToken.parse(token)
        except InvalidManageToken:
            raise NotFound("Booking")
        booking = self.repository.get_booking_by_token(manage_token.value)
        if booking is None:
            raise NotFound("Booking")
        return booking

    def _check_daily_cap(self, event_type: EventType, day: date, timezone: str, exclude_booking_id=None) -> None:
        if event_type.max_daily_bookings is None:
            return
        count = self.repository.count_confirmed_on_local_date(event_type.id, day, timezone, exclude_booking_id)
        if count >= event_type.max_daily_bookings:
            raise SlotUnavailable("No more bookings available for this day")

    # ------------------------------------------------------------------
    # Side effects
    # ------------------------------------------------------------------

    def _event_details(self, booking: Booking, request_id: Optional[str] = None) -> EventDetails:
        event_type = booking.event_type
        description = [
            f"Booked via {self.settings.APP_NAME}",
            "",
            f"Invitee: {booking.invitee_name}",
            f"Email: {booking.invitee_email}",
        ]
        if booking.invitee_phone:
            description.append(f"Phone: {booking.invitee_phone}")
        if booking.invitee_notes:
            description.append(f"Notes: {booking.invitee_notes}")

        return EventDetails(
            summary=f"{event_type.title} with {booking.invitee_name}",
            description="\n".join(description),
            start=booking.start_time,
            end=booking.end_time,
            timezone=booking.timezone,
            attendees=[booking.invitee_email],
            request_id=request_id or str(booking.id),
        )

    async def _calendar_write(self, operation: str, coro):
        """Run one adapter write under the write timeout; None on timeout"""
        try:
            return await asyncio.wait_for(coro, timeout=self.settings.CALENDAR_WRITE_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            logger.error(f"Calendar {operation} timed out after {self.settings.CALENDAR_WRITE_TIMEOUT_SECONDS}s")
        except Exception as e:
            logger.error(f"Calendar {operation} failed unexpectedly: {e}")
        return None

    async def _notify(self, kind: NotificationKind, booking: Booking, **extra) -> None:
        try:
            payload = BookingEventPayload.from_booking(kind, booking, self.settings.FRONTEND_URL, **extra)
            await self.notifier.trigger(kind, payload)
        except Exception as e:
            logger.error(f"Notification '{kind.value}' for booking {booking.id} could not be dispatched: {e}")

    # ------------------------------------------------------------------
    # Availability
    # ------------------------------------------------------------------

    async def get_availability(
            self,
            event_type_slug: str,
            day: date,
            timezone: str,
            team_slug: Optional[str] = None,
    ) -> List[TimeSlot]:
        """Merged slots across every eligible member, within the booking horizon"""
        try:
            validate_slug(event_type_slug, "event type")
            if team_slug:
                validate_slug(team_slug, "team")
            validate_timezone(timezone)
        except ValueError as e:
            raise ValidationFailed(str(e))

        team = self._resolve_team(team_slug)
        event_type = self._resolve_event_type(event_type_slug, team)

        now = self.clock()
        horizon = now + timedelta(days=self._max_advance_days(event_type))
        if datetime.combine(day, datetime.min.time(), tzinfo=ZoneInfo(timezone)) > horizon:
            return []

        slots = await self.selector.combined_availability(event_type, day, timezone, team)
        return [slot for slot in slots if slot.start <= horizon]

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create_booking(self, request: BookingCreateRequest) -> BookingResult:
        now = self.clock()
        team = self._resolve_team(request.team_slug)
        event_type = self._resolve_event_type(request.event_type_slug, team)

        start = ensure_utc(request.start_time)
        self._validate_start(start, event_type, now)
        end = start + timedelta(minutes=event_type.duration_minutes)
        local_day = start.astimezone(ZoneInfo(request.timezone)).date()

        # Re-validate against live calendars: which members are free at exactly this start?
        members = self.selector.eligible_members(event_type, team)
        if not members:
            raise SlotUnavailable("No team members are available for this event type")

        free_ids = await self.selector.free_member_ids(members, event_type, local_day, request.timezone, start)
        if not free_ids:
            logger.info(f"Slot {start.isoformat()} for {event_type.slug} is not free for any member")
            raise SlotUnavailable(SLOT_TAKEN_MESSAGE)

        self._check_daily_cap(event_type, local_day, request.timezone)

        buffered_start, buffered_end = self._buffered_window(event_type, start, end)
        booking = None
        remaining = set(free_ids)
        while remaining:
            member = self.selector.select_member(event_type, team, candidate_ids=remaining)
            if member is None:
                break
            member_id = member.id

            candidate = Booking(
                event_type_id=event_type.id,
                team_member_id=member_id,
                invitee_name=request.name,
                invitee_email=str(request.email),
                invitee_phone=request.phone,
                invitee_notes=request.notes,
                custom_answers=request.custom_answers,
                start_time=start,
                end_time=end,
                timezone=request.timezone,
                status=BookingStatus.CONFIRMED.value,
                manage_token=ManageToken.generate().value,
            )
            try:
                booking = self.repository.claim_member(
                    member_id, candidate, event_type, buffered_start, buffered_end, local_day, now
                )
            except SQLAlchemyError as e:
                logger.error(f"Booking insert failed for event type {request.event_type_slug}: {e}")
                raise InternalFailure("Failed to save your booking. Please try again.")

            if booking is not None:
                break
            remaining.discard(member_id)

        if booking is None:
            raise SlotUnavailable(SLOT_TAKEN_MESSAGE)

        logger.info(f"Booking {booking.id} confirmed for member {booking.team_member_id} at {start.isoformat()}")

        # Durable from here on: calendar and notifications only degrade the result
        warnings: List[str] = []
        member = booking.team_member
        created = await self._calendar_write("create", self.adapter.create_event(member, self._event_details(booking)))

        join_phone = join_pin = None
        if created is None:
            logger.warning(f"Booking {booking.id} saved without a calendar event")
            warnings.append(CALENDAR_CREATE_WARNING)
        else:
            booking.calendar_event_id = created.event_id
            booking.join_link = created.join_link
            join_phone, join_pin = created.join_phone, created.join_pin
            try:
                self.repository.save(booking)
            except SQLAlchemyError as e:
                logger.error(f"Could not record calendar event {created.event_id} on booking {booking.id}: {e}")

        await self._notify(NotificationKind.CREATED, booking, join_phone=join_phone, join_pin=join_pin)
        return BookingResult(booking=booking, calendar_synced=created is not None, warnings=warnings)

    # ------------------------------------------------------------------
    # Manage by token
    # ------------------------------------------------------------------

    def get_by_token(self, token: str) -> Booking:
        return self._booking_for_token(token)

    async def cancel_booking(self, token: str) -> CancelResult:
        booking = self._booking_for_token(token)

        if booking.status == BookingStatus.CANCELLED.value:
            raise ValidationFailed("This booking has already been cancelled.")
        if booking.status != BookingStatus.CONFIRMED.value:
            raise ValidationFailed("Only confirmed bookings can be cancelled.")

        booking.status = BookingStatus.CANCELLED.value
        booking.cancelled_at = self.clock()
        try:
            self.repository.save(booking)
        except SQLAlchemyError as e:
            logger.error(f"Cancel update failed for booking {booking.id}: {e}")
            raise InternalFailure("Failed to cancel booking. Please try again.")

        logger.info(f"Booking {booking.id} cancelled")

        warnings: List[str] = []
        calendar_synced = True
        if booking.calendar_event_id:
            deleted = await self._calendar_write(
                "delete", self.adapter.delete_event(booking.team_member, booking.calendar_event_id)
            )
            if not deleted:
                calendar_synced = False
                warnings.append(CALENDAR_DELETE_WARNING)

        await self._notify(NotificationKind.CANCELLED, booking)
        return CancelResult(booking=booking, calendar_synced=calendar_synced, warnings=warnings)

    async def reschedule_booking(self, token: str, request: RescheduleRequest) -> BookingResult:
        booking = self._booking_for_token(token)
        if booking.status != BookingStatus.CONFIRMED.value:
            raise ValidationFailed("Only confirmed bookings can be rescheduled.")

        now = self.clock()
        event_type = booking.event_type
        member = booking.team_member

        start = ensure_utc(request.start_time)
        self._validate_start(start, event_type, now)
        end = start + timedelta(minutes=event_type.duration_minutes)
        local_day = start.astimezone(ZoneInfo(request.timezone)).date()

        if member is None or not member.is_active:
            raise SlotUnavailable("The host for this booking is no longer available.")

        # Same member, the booking itself does not count as busy, in the store or on the calendar
        own_event = (booking.start_time, booking.end_time) if booking.calendar_event_id else None
        try:
            slots = await asyncio.wait_for(
                self.slot_generator.generate_slots(
                    member, event_type, local_day, request.timezone,
                    exclude_booking_id=booking.id, exclude_interval=own_event,
                ),
                timeout=self.settings.CALENDAR_QUERY_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Availability check timed out while rescheduling booking {booking.id}")
            slots = []
        if not any(slot.start == start for slot in slots):
            raise SlotUnavailable(SLOT_TAKEN_MESSAGE)

        self._check_daily_cap(event_type, local_day, request.timezone, exclude_booking_id=booking.id)

        previous_start, previous_end = booking.start_time, booking.end_time
        buffered_start, buffered_end = self._buffered_window(event_type, start, end)
        try:
            moved = self.repository.move_booking(
                booking, event_type, start, end, request.timezone, buffered_start, buffered_end, local_day
            )
        except SQLAlchemyError as e:
            logger.error(f"Reschedule update failed for booking {booking.id}: {e}")
            raise InternalFailure("Failed to reschedule booking. Please try again.")
        if not moved:
            raise SlotUnavailable(SLOT_TAKEN_MESSAGE)

        logger.info(f"Booking {booking.id} moved from {previous_start.isoformat()} to {start.isoformat()}")

        warnings: List[str] = []
        calendar_synced = True
        if booking.calendar_event_id:
            updated = await self._calendar_write(
                "update", self.adapter.update_event(member, booking.calendar_event_id, self._event_details(booking))
            )
            if updated is None:
                calendar_synced = False
                warnings.append(CALENDAR_UPDATE_WARNING)
        else:
            details = self._event_details(booking, request_id=f"{booking.id}-{int(start.timestamp())}")
            created = await self._calendar_write("create", self.adapter.create_event(member, details))
            if created is None:
                calendar_synced = False
                warnings.append(CALENDAR_CREATE_WARNING)
            else:
                booking.calendar_event_id = created.event_id
                booking.join_link = created.join_link
                try:
                    self.repository.save(booking)
                except SQLAlchemyError as e:
                    logger.error(f"Could not record calendar event on booking {booking.id}: {e}")

        await self._notify(
            NotificationKind.RESCHEDULED,
            booking,
            previous_start_time=previous_start,
            previous_end_time=previous_end,
        )
        return BookingResult(booking=booking, calendar_synced=calendar_synced, warnings=warnings)

    # ------------------------------------------------------------------
    # Reminder / timed-workflow hook
    # ------------------------------------------------------------------

    def list_upcoming(
            self,
            capability: CronCapability,
            window_start_minutes: int,
            window_end_minutes: int,
            only_unreminded: bool = False,
    ) -> Sequence[Booking]:
        """Confirmed bookings starting within [now+start, now+end]; read-only"""
        if not isinstance(capability, CronCapability):
            raise TypeError("list_upcoming requires a CronCapability")
        if window_start_minutes < 0 or window_end_minutes <= window_start_minutes:
            raise ValidationFailed("Invalid reminder window")
        if window_end_minutes > 7 * 24 * 60:
            raise ValidationFailed("Reminder window cannot exceed 7 days")

        now = self.clock()
        return self.repository.upcoming_confirmed(
            now + timedelta(minutes=window_start_minutes),
            now + timedelta(minutes=window_end_minutes),
            only_unreminded=only_unreminded,
        )

    async def send_due_reminders(self, capability: CronCapability) -> int:
        """Dispatch reminder notifications for the configured window and stamp them as sent"""
        bookings = self.list_upcoming(
            capability,
            self.settings.REMINDER_WINDOW_START_MINUTES,
            self.settings.REMINDER_WINDOW_END_MINUTES,
            only_unreminded=True,
        )
        sent = 0
        for booking in bookings:
            await self._notify(NotificationKind.REMINDER, booking)
            booking.reminder_sent_at = self.clock()
            try:
                self.repository.save(booking)
            except SQLAlchemyError as e:
                logger.error(f"Could not stamp reminder on booking {booking.id}: {e}")
                continue
            sent += 1

        logger.info(f"Reminders sent: {sent} of {len(bookings)} due")
        return sent
