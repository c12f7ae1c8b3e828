"""Value types shared by the calendar adapter and its credential tiers."""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Optional


class CalendarProviderError(Exception):
    """A provider call failed. ``kind`` is one of auth, rate_limit, not_found, network, unknown."""

    def __init__(self, message: str, kind: str = "unknown"):
        super().__init__(message)
        self.kind = kind


class CredentialUnavailable(CalendarProviderError):
    """A tier has nothing to offer for this member (not configured, not connected)."""

    def __init__(self, message: str):
        super().__init__(message, kind="auth")


class CredentialRevoked(CredentialUnavailable):
    """The member's OAuth grant was rejected by the provider as revoked."""


@dataclass(frozen=True)
class BusyInterval:
    """Half-open busy window in UTC."""

    start: datetime
    end: datetime

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return start < self.end and end > self.start


@dataclass
class EventDetails:
    """Provider-neutral description of the calendar event for a booking."""

    summary: str
    description: str
    start: datetime
    end: datetime
    timezone: str
    attendees: List[str] = field(default_factory=list)
    with_conference: bool = True
    request_id: Optional[str] = None  # idempotency key for conference creation


@dataclass
class CreatedEvent:
    event_id: str
    join_link: Optional[str] = None
    join_phone: Optional[str] = None
    join_pin: Optional[str] = None
    tier: Optional[str] = None


@dataclass
class ResolvedTarget:
    """What one tier resolved to: who we act as, and on which calendar."""

    tier: str
    credentials: Any
    calendar_id: str
    extra_attendees: List[str] = field(default_factory=list)


class CredentialTier(ABC):
    """One strategy in the ordered credential fallback chain."""

    name: str = "tier"
    supports_free_busy: bool = True
    supports_writes: bool = True

    @abstractmethod
    async def resolve(self, member) -> ResolvedTarget:
        """Return a usable target for ``member`` or raise ``CredentialUnavailable``."""
