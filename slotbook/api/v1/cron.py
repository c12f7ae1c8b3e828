# ============================================================================
# FILE: slotbook/api/v1/cron.py
# Read-only hook for the external reminder / timed-workflow trigger
# ============================================================================
from datetime import timedelta

from fastapi import APIRouter, Depends, Query

from slotbook.api.dependencies import get_booking_service, require_cron_capability
from slotbook.core.capabilities import CronCapability
from slotbook.schemas.booking import UpcomingBooking, UpcomingBookingsResponse
from slotbook.services.booking.booking_service import BookingService

router = APIRouter(prefix="/cron", tags=["cron"])


@router.get("/upcoming-bookings", response_model=UpcomingBookingsResponse)
async def upcoming_bookings(
        window_start_minutes: int = Query(90, alias="windowStartMinutes", ge=0),
        window_end_minutes: int = Query(150, alias="windowEndMinutes", ge=1),
        only_unreminded: bool = Query(False, alias="onlyUnreminded"),
        capability: CronCapability = Depends(require_cron_capability),
        service: BookingService = Depends(get_booking_service),
):
    """Confirmed bookings starting between now+windowStartMinutes and now+windowEndMinutes."""
    bookings = service.list_upcoming(
        capability, window_start_minutes, window_end_minutes, only_unreminded=only_unreminded
    )
    now = service.clock()
    return UpcomingBookingsResponse(
        window_start=now + timedelta(minutes=window_start_minutes),
        window_end=now + timedelta(minutes=window_end_minutes),
        bookings=[UpcomingBooking.from_booking(b) for b in bookings],
    )
