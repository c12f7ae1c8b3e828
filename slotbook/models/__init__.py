from .base import Base
from .team import Team, TeamMember, TeamMembership
from .availability import AvailabilityRule
from .event_type import EventType
from .booking import Booking, BookingStatus
from .webhook_endpoint import WebhookEndpoint

__all__ = [
    "Base",
    "Team",
    "TeamMember",
    "TeamMembership",
    "AvailabilityRule",
    "EventType",
    "Booking",
    "BookingStatus",
    "WebhookEndpoint",
]
