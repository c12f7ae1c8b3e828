# slotbook/schemas/__init__.py
from .booking import (
    BookingCreateRequest,
    RescheduleRequest,
    EventTypeSummary,
    BookingView,
    CreatedBookingView,
    BookingCreateResponse,
    BookingResponse,
    RescheduleResponse,
    CancelResponse,
    UpcomingBooking,
    UpcomingBookingsResponse,
)

from .availability import (
    SlotView,
    AvailabilityResponse,
)

from .notifications import (
    NotificationKind,
    BookingEventPayload,
)
