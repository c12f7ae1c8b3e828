"""
Round-robin assignment and the merged "any team member" availability view.
"""
import asyncio
import logging
from collections import OrderedDict
from datetime import date, datetime
from typing import Collection, Dict, List, Optional, Set
import uuid

from slotbook.config.settings import Settings, get_settings
from slotbook.models.event_type import EventType
from slotbook.models.team import Team, TeamMember
from slotbook.services.availability.slot_generator import SlotGenerator, TimeSlot

logger = logging.getLogger(__name__)


class RoundRobinSelector:

    def __init__(self, repository, slot_generator: SlotGenerator, settings: Optional[Settings] = None):
        self.repository = repository
        self.slot_generator = slot_generator
        self.settings = settings or get_settings()

    @staticmethod
    def team_scope(event_type: EventType, team: Optional[Team] = None) -> Optional[uuid.UUID]:
        """Explicit team, else the event type's own team, else everyone (None)"""
        if team is not None:
            return team.id
        return event_type.team_id

    def eligible_members(self, event_type: EventType, team: Optional[Team] = None) -> List[TeamMember]:
        """Active members in scope, least-recently-booked first"""
        return self.repository.list_active_members(team_id=self.team_scope(event_type, team))

    def select_member(
            self,
            event_type: EventType,
            team: Optional[Team] = None,
            candidate_ids: Optional[Collection[uuid.UUID]] = None,
    ) -> Optional[TeamMember]:
        """
        Fairest member for the event type.

        Ordering is by fairness cursor ascending with never-booked members first,
        ties broken by member id. ``candidate_ids`` narrows the pool to members
        known to be free for the requested slot.
        """
        members = self.eligible_members(event_type, team)
        if candidate_ids is not None:
            allowed = set(candidate_ids)
            members = [m for m in members if m.id in allowed]

        if not members:
            logger.info(f"No eligible member for event type {event_type.slug}")
            return None

        selected = members[0]
        logger.debug(f"Round-robin picked member {selected.id} for event type {event_type.slug}")
        return selected

    async def _bounded_slots(
            self,
            semaphore: asyncio.Semaphore,
            member: TeamMember,
            event_type: EventType,
            day: date,
            timezone: str,
    ) -> List[TimeSlot]:
        async with semaphore:
            try:
                return await asyncio.wait_for(
                    self.slot_generator.generate_slots(member, event_type, day, timezone),
                    timeout=self.settings.CALENDAR_QUERY_TIMEOUT_SECONDS,
                )
            except asyncio.TimeoutError:
                logger.warning(f"Availability query timed out for member {member.id}; treating as fully busy")
                return []
            except Exception as e:
                logger.error(f"Availability query failed for member {member.id}: {e}; treating as fully busy")
                return []

    async def slots_by_member(
            self,
            members: List[TeamMember],
            event_type: EventType,
            day: date,
            timezone: str,
    ) -> Dict[uuid.UUID, List[TimeSlot]]:
        """Fan out one slot query per member, bounded and with a per-member timeout"""
        if not members:
            return {}

        semaphore = asyncio.Semaphore(min(len(members), self.settings.MAX_CALENDAR_CONCURRENCY))
        results = await asyncio.gather(
            *(self._bounded_slots(semaphore, m, event_type, day, timezone) for m in members)
        )
        return {member.id: slots for member, slots in zip(members, results)}

    async def free_member_ids(
            self,
            members: List[TeamMember],
            event_type: EventType,
            day: date,
            timezone: str,
            start: datetime,
    ) -> Set[uuid.UUID]:
        """Members whose slots for ``day`` include one starting exactly at ``start``"""
        per_member = await self.slots_by_member(members, event_type, day, timezone)
        return {
            member_id
            for member_id, slots in per_member.items()
            if any(slot.start == start for slot in slots)
        }

    async def combined_availability(
            self,
            event_type: EventType,
            day: date,
            timezone: str,
            team: Optional[Team] = None,
    ) -> List[TimeSlot]:
        """
        Union of every eligible member's slots, grouped by start time.

        Informational only; assignment always goes through ``select_member``.
        """
        members = self.eligible_members(event_type, team)
        per_member = await self.slots_by_member(members, event_type, day, timezone)

        grouped: "OrderedDict[datetime, Dict]" = OrderedDict()
        for member in members:
            for slot in per_member.get(member.id, []):
                entry = grouped.setdefault(slot.start, {"end": slot.end, "member_ids": []})
                if member.id not in entry["member_ids"]:
                    entry["member_ids"].append(member.id)

        combined = [
            TimeSlot(start=start, end=entry["end"], available_member_ids=tuple(entry["member_ids"]))
            for start, entry in sorted(grouped.items(), key=lambda item: item[0])
        ]
        logger.info(
            f"Combined availability for {event_type.slug} on {day}: "
            f"{len(combined)} slots across {len(members)} members"
        )
        return combined
