# ============================================================================
# FILE: slotbook/api/v1/public/bookings.py
# Public booking creation - rate limited per client origin
# ============================================================================
from fastapi import APIRouter, Depends, status

from slotbook.api.dependencies import enforce_booking_rate_limit, get_booking_service
from slotbook.schemas.booking import BookingCreateRequest, BookingCreateResponse, CreatedBookingView
from slotbook.services.booking.booking_service import BookingService

router = APIRouter(prefix="/bookings", tags=["public-bookings"])


@router.post(
    "",
    response_model=BookingCreateResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(enforce_booking_rate_limit)],
)
async def create_booking(
        request: BookingCreateRequest,
        service: BookingService = Depends(get_booking_service),
):
    """
    Book a slot. The slot is re-validated against live calendars before it is
    reserved; a stale slot returns 409 slot_unavailable.

    A calendar failure does not fail the booking: it is reported as
    calendarSynced=false with a warning.
    """
    result = await service.create_booking(request)
    return BookingCreateResponse(
        booking=CreatedBookingView.from_booking(result.booking),
        calendar_synced=result.calendar_synced,
        warnings=result.warnings or None,
    )
