# ============================================================================
# FILE: slotbook/api/v1/public/availability.py
# Public availability lookup - read-only, no authentication
# ============================================================================
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query

from slotbook.api.dependencies import get_booking_service
from slotbook.schemas.availability import AvailabilityResponse, SlotView
from slotbook.services.booking.booking_service import BookingService

router = APIRouter(prefix="/availability", tags=["public-availability"])


@router.get("", response_model=AvailabilityResponse)
async def get_availability(
        event_type: str = Query(..., alias="eventType", description="Event type slug"),
        day: date = Query(..., alias="date", description="Local date, YYYY-MM-DD"),
        timezone: str = Query(..., description="IANA timezone the invitee is viewing in"),
        team: Optional[str] = Query(None, description="Optional team slug"),
        service: BookingService = Depends(get_booking_service),
):
    """
    Bookable slots for one local date, merged across every eligible team member.
    Which member is free for a slot is not exposed.
    """
    slots = await service.get_availability(event_type, day, timezone, team_slug=team)
    return AvailabilityResponse(
        date=day,
        timezone=timezone,
        slots=[SlotView(start=slot.start, end=slot.end) for slot in slots],
    )
