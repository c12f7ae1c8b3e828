# ============================================================================
# FILE: slotbook/api/v1/public/manage.py
# Self-service booking management - the manage token is the only credential
# ============================================================================
from fastapi import APIRouter, Depends, Path

from slotbook.api.dependencies import get_booking_service
from slotbook.schemas.booking import (
    BookingResponse,
    BookingView,
    CancelResponse,
    RescheduleRequest,
    RescheduleResponse,
)
from slotbook.services.booking.booking_service import BookingService

router = APIRouter(prefix="/manage", tags=["public-manage"])


@router.get("/{token}", response_model=BookingResponse)
async def get_booking(
        token: str = Path(..., description="Manage token from the confirmation email"),
        service: BookingService = Depends(get_booking_service),
):
    booking = service.get_by_token(token)
    return BookingResponse(booking=BookingView.from_booking(booking))


@router.post("/{token}/cancel", response_model=CancelResponse, response_model_exclude_none=True)
async def cancel_booking(
        token: str = Path(..., description="Manage token from the confirmation email"),
        service: BookingService = Depends(get_booking_service),
):
    """Cancelling twice is rejected with validation_error; side effects run once."""
    result = await service.cancel_booking(token)
    return CancelResponse(
        success=True,
        calendar_synced=result.calendar_synced,
        warnings=result.warnings or None,
    )


@router.post("/{token}/reschedule", response_model=RescheduleResponse, response_model_exclude_none=True)
async def reschedule_booking(
        request: RescheduleRequest,
        token: str = Path(..., description="Manage token from the confirmation email"),
        service: BookingService = Depends(get_booking_service),
):
    """Move the booking to a new slot with the same host."""
    result = await service.reschedule_booking(token, request)
    return RescheduleResponse(
        booking=BookingView.from_booking(result.booking),
        calendar_synced=result.calendar_synced,
        warnings=result.warnings or None,
    )
