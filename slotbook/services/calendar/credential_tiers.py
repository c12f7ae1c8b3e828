"""
Credential tiers, tried in order by the calendar adapter:

1. member_oauth     - the member's own refreshed OAuth grant
2. impersonation    - service identity acting as the member (domain-wide delegation)
3. shared_calendar  - service identity writing to a calendar shared with it
4. service_account  - service identity's own calendar, member + invitee invited
"""
import asyncio
import logging
from functools import partial
from typing import List, Optional

from slotbook.services.calendar.base import CredentialTier, CredentialUnavailable, ResolvedTarget
from slotbook.services.calendar.google_calendar_service import GoogleCredentialFactory

logger = logging.getLogger(__name__)


class MemberOAuthTier(CredentialTier):
    name = "member_oauth"

    def __init__(self, factory: GoogleCredentialFactory):
        self.factory = factory

    async def resolve(self, member) -> ResolvedTarget:
        if not member.google_oauth_refresh_token_encrypted:
            raise CredentialUnavailable("member has not connected Google OAuth")
        if member.google_oauth_revoked_at is not None:
            raise CredentialUnavailable("member OAuth grant previously revoked")

        loop = asyncio.get_running_loop()
        credentials = await loop.run_in_executor(
            None,
            partial(self.factory.refresh_member_credentials, member.google_oauth_refresh_token_encrypted),
        )
        return ResolvedTarget(tier=self.name, credentials=credentials, calendar_id="primary")


class ImpersonationTier(CredentialTier):
    name = "impersonation"

    def __init__(self, factory: GoogleCredentialFactory):
        self.factory = factory

    async def resolve(self, member) -> ResolvedTarget:
        credentials = self.factory.service_account(subject=member.google_calendar_id)
        return ResolvedTarget(tier=self.name, credentials=credentials, calendar_id="primary")


class SharedCalendarTier(CredentialTier):
    name = "shared_calendar"

    def __init__(self, factory: GoogleCredentialFactory):
        self.factory = factory

    async def resolve(self, member) -> ResolvedTarget:
        credentials = self.factory.service_account()
        return ResolvedTarget(tier=self.name, credentials=credentials, calendar_id=member.google_calendar_id)


class ServiceAccountCalendarTier(CredentialTier):
    """Last resort for writes: the event exists somewhere, with the member invited."""
    name = "service_account"
    supports_free_busy = False

    def __init__(self, factory: GoogleCredentialFactory):
        self.factory = factory

    async def resolve(self, member) -> ResolvedTarget:
        credentials = self.factory.service_account()
        return ResolvedTarget(
            tier=self.name,
            credentials=credentials,
            calendar_id="primary",
            extra_attendees=[member.google_calendar_id],
        )


def default_tiers(factory: Optional[GoogleCredentialFactory] = None) -> List[CredentialTier]:
    factory = factory or GoogleCredentialFactory()
    return [
        MemberOAuthTier(factory),
        ImpersonationTier(factory),
        SharedCalendarTier(factory),
        ServiceAccountCalendarTier(factory),
    ]
