# slotbook/schemas/notifications.py
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class NotificationKind(str, Enum):
    CREATED = "created"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"
    REMINDER = "reminder"

    @property
    def webhook_event(self) -> str:
        return f"booking.{self.value}"


class BookingEventPayload(BaseModel):
    """Canonical record handed to every notification sender"""
    kind: NotificationKind
    booking_id: str

    event_type_slug: str
    event_type_title: str
    duration_minutes: int

    invitee_name: str
    invitee_email: str
    invitee_phone: Optional[str] = None

    team_member_name: str
    team_member_email: str

    start_time: datetime = Field(..., description="UTC")
    end_time: datetime = Field(..., description="UTC")
    timezone: str

    notes: Optional[str] = None
    custom_answers: Optional[Dict[str, Any]] = None

    join_link: Optional[str] = None
    join_phone: Optional[str] = None
    join_pin: Optional[str] = None

    manage_url: Optional[str] = None
    cancel_url: Optional[str] = None
    reschedule_url: Optional[str] = None

    # Reschedules only
    previous_start_time: Optional[datetime] = None
    previous_end_time: Optional[datetime] = None

    @classmethod
    def from_booking(
            cls,
            kind: NotificationKind,
            booking,
            frontend_url: str,
            join_phone: Optional[str] = None,
            join_pin: Optional[str] = None,
            previous_start_time: Optional[datetime] = None,
            previous_end_time: Optional[datetime] = None,
    ) -> "BookingEventPayload":
        base_url = frontend_url.rstrip("/")
        manage_url = f"{base_url}/manage/{booking.manage_token}"
        event_type = booking.event_type
        member = booking.team_member
        return cls(
            kind=kind,
            booking_id=str(booking.id),
            event_type_slug=event_type.slug,
            event_type_title=event_type.title,
            duration_minutes=event_type.duration_minutes,
            invitee_name=booking.invitee_name,
            invitee_email=booking.invitee_email,
            invitee_phone=booking.invitee_phone,
            team_member_name=member.name,
            team_member_email=member.email,
            start_time=booking.start_time,
            end_time=booking.end_time,
            timezone=booking.timezone,
            notes=booking.invitee_notes,
            custom_answers=booking.custom_answers,
            join_link=booking.join_link,
            join_phone=join_phone,
            join_pin=join_pin,
            manage_url=manage_url,
            cancel_url=f"{manage_url}/cancel",
            reschedule_url=f"{manage_url}/reschedule",
            previous_start_time=previous_start_time,
            previous_end_time=previous_end_time,
        )

    def webhook_body(self) -> Dict[str, Any]:
        """Webhook data; the manage links stay out of third-party systems"""
        return self.model_dump(
            mode="json",
            exclude={"kind", "manage_url", "cancel_url", "reschedule_url", "join_phone", "join_pin"},
        )
