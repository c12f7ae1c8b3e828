# slotbook/schemas/booking.py
from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
import uuid

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

SLUG_PATTERN = re.compile(r"^[a-z0-9-]+$")

MAX_NAME_LENGTH = 100
MAX_EMAIL_LENGTH = 254
MAX_PHONE_LENGTH = 20
MAX_NOTES_LENGTH = 1000
MIN_PHONE_DIGITS = 7

_PHONE_STRIP = re.compile(r"[^\d+\-() ]")
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def sanitize_text(value: str, max_length: int) -> str:
    """Trim, drop control characters, and cap length"""
    return _CONTROL_CHARS.sub("", value).strip()[:max_length]


def validate_timezone(value: str) -> str:
    try:
        ZoneInfo(value)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError("Invalid timezone. Please select a valid timezone.")
    return value


def validate_slug(value: str, label: str) -> str:
    if not SLUG_PATTERN.match(value):
        raise ValueError(f"Invalid {label}")
    return value


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BookingCreateRequest(CamelModel):
    """Public booking request"""
    event_type_slug: str = Field(..., description="Event type slug")
    team_slug: Optional[str] = Field(None, description="Optional team scope")
    start_time: datetime = Field(..., description="Requested start, ISO-8601 with offset")
    timezone: str = Field(..., description="IANA timezone the invitee is booking in")
    name: str = Field(..., description="Invitee name")
    email: EmailStr = Field(..., description="Invitee email")
    phone: str = Field(..., description="Invitee phone number")
    notes: Optional[str] = Field(None, description="Free-form notes for the host")
    custom_answers: Optional[Dict[str, Any]] = Field(None, description="Answers to event-type questions")

    @field_validator("event_type_slug")
    @classmethod
    def check_event_type_slug(cls, v: str) -> str:
        return validate_slug(v, "event type")

    @field_validator("team_slug")
    @classmethod
    def check_team_slug(cls, v: Optional[str]) -> Optional[str]:
        if v is None or v == "":
            return None
        return validate_slug(v, "team")

    @field_validator("timezone")
    @classmethod
    def check_timezone(cls, v: str) -> str:
        return validate_timezone(v)

    @field_validator("start_time")
    @classmethod
    def check_start_time_aware(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            raise ValueError("Start time must include a timezone offset")
        return v

    @field_validator("name")
    @classmethod
    def check_name(cls, v: str) -> str:
        v = sanitize_text(v, MAX_NAME_LENGTH)
        if len(v) < 2:
            raise ValueError("Name is too short")
        return v

    @field_validator("email", mode="before")
    @classmethod
    def normalise_email(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip().lower()
            if len(v) > MAX_EMAIL_LENGTH:
                raise ValueError("Invalid email address")
        return v

    @field_validator("phone")
    @classmethod
    def check_phone(cls, v: str) -> str:
        cleaned = _PHONE_STRIP.sub("", v).strip()[:MAX_PHONE_LENGTH]
        if len(re.sub(r"\D", "", cleaned)) < MIN_PHONE_DIGITS:
            raise ValueError("Invalid phone number")
        return cleaned

    @field_validator("notes")
    @classmethod
    def check_notes(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return sanitize_text(v, MAX_NOTES_LENGTH) or None


class RescheduleRequest(CamelModel):
    start_time: datetime = Field(..., description="New start, ISO-8601 with offset")
    timezone: str = Field(..., description="IANA timezone")

    @field_validator("timezone")
    @classmethod
    def check_timezone(cls, v: str) -> str:
        return validate_timezone(v)

    @field_validator("start_time")
    @classmethod
    def check_start_time_aware(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            raise ValueError("Start time must include a timezone offset")
        return v


class EventTypeSummary(CamelModel):
    slug: str
    title: str
    duration_minutes: int
    max_advance_days: Optional[int] = None


class BookingView(CamelModel):
    """What a manage-token holder may see"""
    id: uuid.UUID
    invitee_name: str
    start_time: datetime
    end_time: datetime
    timezone: str
    status: str
    invitee_notes: Optional[str] = None
    join_link: Optional[str] = None
    event_type: EventTypeSummary
    team_member_name: str

    @classmethod
    def from_booking(cls, booking) -> "BookingView":
        event_type = booking.event_type
        member = booking.team_member
        return cls(
            id=booking.id,
            invitee_name=booking.invitee_name,
            start_time=booking.start_time,
            end_time=booking.end_time,
            timezone=booking.timezone,
            status=booking.status,
            invitee_notes=booking.invitee_notes,
            join_link=booking.join_link,
            event_type=EventTypeSummary(
                slug=event_type.slug,
                title=event_type.title,
                duration_minutes=event_type.duration_minutes,
                max_advance_days=event_type.max_advance_days,
            ),
            team_member_name=member.name if member is not None else "Team member",
        )


class CreatedBookingView(BookingView):
    """Returned once, to the invitee who made the booking"""
    manage_token: str
    invitee_email: str

    @classmethod
    def from_booking(cls, booking) -> "CreatedBookingView":
        base = BookingView.from_booking(booking)
        return cls(**base.model_dump(), manage_token=booking.manage_token, invitee_email=booking.invitee_email)


class BookingCreateResponse(CamelModel):
    booking: CreatedBookingView
    calendar_synced: bool
    warnings: Optional[List[str]] = None


class BookingResponse(CamelModel):
    booking: BookingView


class RescheduleResponse(CamelModel):
    booking: BookingView
    calendar_synced: bool
    warnings: Optional[List[str]] = None


class CancelResponse(CamelModel):
    success: bool = True
    calendar_synced: bool
    warnings: Optional[List[str]] = None


class UpcomingBooking(CamelModel):
    """Row handed to the reminder/workflow trigger"""
    id: uuid.UUID
    event_type_slug: str
    event_type_title: str
    team_member_id: uuid.UUID
    team_member_name: str
    team_member_email: str
    invitee_name: str
    invitee_email: str
    start_time: datetime
    end_time: datetime
    timezone: str
    reminder_sent_at: Optional[datetime] = None

    @classmethod
    def from_booking(cls, booking) -> "UpcomingBooking":
        return cls(
            id=booking.id,
            event_type_slug=booking.event_type.slug,
            event_type_title=booking.event_type.title,
            team_member_id=booking.team_member_id,
            team_member_name=booking.team_member.name,
            team_member_email=booking.team_member.email,
            invitee_name=booking.invitee_name,
            invitee_email=booking.invitee_email,
            start_time=booking.start_time,
            end_time=booking.end_time,
            timezone=booking.timezone,
            reminder_sent_at=booking.reminder_sent_at,
        )


class UpcomingBookingsResponse(CamelModel):
    window_start: datetime
    window_end: datetime
    bookings: List[UpcomingBooking]
