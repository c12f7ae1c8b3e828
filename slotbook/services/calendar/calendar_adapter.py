# slotbook/services/calendar/calendar_adapter.py
"""
Calendar Provider Adapter.

Walks the ordered credential tiers for every operation. A tier's failure is
logged and swallowed; only total failure is visible to callers, and even then
as a value (``None`` / ``False``) rather than an exception.
"""
import logging
from datetime import datetime
from typing import Awaitable, Callable, List, Optional, Sequence, TypeVar

from slotbook.services.calendar.base import (
    BusyInterval,
    CreatedEvent,
    CredentialRevoked,
    CredentialTier,
    CredentialUnavailable,
    EventDetails,
    ResolvedTarget,
)
from slotbook.services.calendar.credential_tiers import default_tiers
from slotbook.services.calendar.google_calendar_service import GoogleCalendarService, classify_google_error

logger = logging.getLogger(__name__)

T = TypeVar("T")

RevokedCallback = Callable[[object], None]


class CalendarAdapter:
    """Uniform free/busy and event CRUD for one member's calendar"""

    def __init__(
            self,
            tiers: Optional[Sequence[CredentialTier]] = None,
            client: Optional[GoogleCalendarService] = None,
            on_revoked: Optional[RevokedCallback] = None,
    ):
        self.tiers: List[CredentialTier] = list(tiers) if tiers is not None else default_tiers()
        self.client = client or GoogleCalendarService()
        self.on_revoked = on_revoked

    async def _walk_tiers(
            self,
            operation: str,
            member,
            call: Callable[[ResolvedTarget], Awaitable[T]],
            *,
            for_free_busy: bool = False,
    ) -> tuple:
        """
        Try ``call`` on each applicable tier. Returns (result, tier_name, failure_kinds).

        ``failure_kinds`` only holds answers from the provider; tiers whose
        credentials could not be resolved never reached it and are listed
        separately in the log.
        """
        failure_kinds: List[str] = []
        unresolved: List[str] = []

        for tier in self.tiers:
            if for_free_busy and not tier.supports_free_busy:
                continue
            if not for_free_busy and not tier.supports_writes:
                continue

            try:
                target = await tier.resolve(member)
                result = await call(target)
            except CredentialRevoked:
                logger.warning(f"[{operation}] OAuth grant revoked for member {member.id}; skipping tier {tier.name}")
                unresolved.append(tier.name)
                self._report_revoked(member)
                continue
            except CredentialUnavailable as exc:
                unresolved.append(tier.name)
                logger.debug(f"[{operation}] tier {tier.name} not usable for member {member.id}: {exc}")
                continue
            except Exception as exc:
                kind = classify_google_error(exc)
                failure_kinds.append(kind)
                logger.info(f"[{operation}] tier {tier.name} unavailable for member {member.id} ({kind}): {exc}")
                continue

            logger.debug(f"[{operation}] member {member.id} served by tier {tier.name}")
            return result, tier.name, failure_kinds

        logger.error(
            f"[{operation}] all calendar tiers failed for member {member.id}: "
            f"provider errors {failure_kinds}, unresolved tiers {unresolved}"
        )
        return None, None, failure_kinds

    def _report_revoked(self, member) -> None:
        if self.on_revoked is None:
            return
        try:
            self.on_revoked(member)
        except Exception as exc:
            logger.error(f"Failed to flag revoked OAuth grant for member {member.id}: {exc}")

    async def free_busy(
            self,
            member,
            window_start: datetime,
            window_end: datetime,
    ) -> Optional[List[BusyInterval]]:
        """Busy intervals on the member's own calendar, or None when nothing could be verified"""

        async def call(target: ResolvedTarget):
            return await self.client.free_busy(target.credentials, target.calendar_id, window_start, window_end)

        busy, _, _ = await self._walk_tiers("free_busy", member, call, for_free_busy=True)
        return busy

    async def create_event(self, member, details: EventDetails) -> Optional[CreatedEvent]:
        async def call(target: ResolvedTarget):
            created = await self.client.create_event(
                target.credentials, target.calendar_id, details, extra_attendees=target.extra_attendees
            )
            created.tier = target.tier
            return created

        created, tier, _ = await self._walk_tiers("create_event", member, call)
        if created is not None:
            logger.info(f"Created calendar event {created.event_id} for member {member.id} via {tier}")
        return created

    async def update_event(self, member, event_id: str, details: EventDetails) -> Optional[str]:
        async def call(target: ResolvedTarget):
            return await self.client.update_event(
                target.credentials, target.calendar_id, event_id, details, extra_attendees=target.extra_attendees
            )

        updated_id, tier, _ = await self._walk_tiers("update_event", member, call)
        if updated_id is not None:
            logger.info(f"Updated calendar event {event_id} for member {member.id} via {tier}")
        return updated_id

    async def delete_event(self, member, event_id: str) -> bool:
        async def call(target: ResolvedTarget):
            return await self.client.delete_event(target.credentials, target.calendar_id, event_id)

        deleted, tier, failure_kinds = await self._walk_tiers("delete_event", member, call)
        if deleted:
            logger.info(f"Deleted calendar event {event_id} for member {member.id} via {tier}")
            return True

        # Every calendar that could be reached says the event does not exist
        if failure_kinds and all(kind == "not_found" for kind in failure_kinds):
            logger.info(f"Calendar event {event_id} already gone for member {member.id}")
            return True
        return False
