# slotbook/services/calendar/google_calendar_service.py
"""
Google Calendar v3 access for one resolved credential.

Knows nothing about tiers: callers hand in credentials plus a calendar id and
get back provider-neutral values. Blocking googleapiclient calls run in the
default thread pool.
"""
import asyncio
import logging
from datetime import datetime
from functools import partial
from typing import Any, Dict, List, Optional

from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2 import service_account
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from slotbook.config.settings import Settings, get_settings
from slotbook.services.calendar.base import (
    BusyInterval,
    CalendarProviderError,
    CreatedEvent,
    CredentialRevoked,
    CredentialUnavailable,
    EventDetails,
)
from slotbook.utils.clock import ensure_utc
from slotbook.utils.encryption import decrypt_token

logger = logging.getLogger(__name__)


def classify_google_error(exc: Exception) -> str:
    """Sort a provider failure into auth / rate_limit / not_found / network / unknown."""
    if isinstance(exc, CalendarProviderError):
        return exc.kind
    if isinstance(exc, RefreshError):
        return "auth"
    if isinstance(exc, HttpError):
        status = exc.resp.status if exc.resp is not None else None
        if status in (401, 403):
            reason = str(exc).lower()
            if "rate limit" in reason or "quota" in reason:
                return "rate_limit"
            return "auth"
        if status == 429:
            return "rate_limit"
        if status in (404, 410):
            return "not_found"
        return "unknown"
    if isinstance(exc, (TransportError, ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return "network"

    message = str(exc).lower()
    if "invalid_grant" in message or "access_denied" in message or "forbidden" in message:
        return "auth"
    if "rate limit" in message or "quota" in message:
        return "rate_limit"
    if "timeout" in message or "connection" in message:
        return "network"
    return "unknown"


class GoogleCredentialFactory:
    """Builds google-auth credentials for the OAuth and service-identity tiers."""

    SCOPES = ['https://www.googleapis.com/auth/calendar']

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    @property
    def service_account_configured(self) -> bool:
        return bool(self.settings.GOOGLE_SERVICE_ACCOUNT_EMAIL and self.settings.GOOGLE_PRIVATE_KEY)

    @property
    def service_account_email(self) -> str:
        return self.settings.GOOGLE_SERVICE_ACCOUNT_EMAIL

    def service_account(self, subject: Optional[str] = None):
        """Service identity credentials, impersonating ``subject`` when given"""
        if not self.service_account_configured:
            raise CredentialUnavailable("Google service account is not configured")

        info = {
            "type": "service_account",
            "client_email": self.settings.GOOGLE_SERVICE_ACCOUNT_EMAIL,
            "private_key": self.settings.google_private_key,
            "token_uri": self.settings.GOOGLE_TOKEN_URI,
        }
        credentials = service_account.Credentials.from_service_account_info(info, scopes=self.SCOPES)
        if subject:
            credentials = credentials.with_subject(subject)
        return credentials

    def refresh_member_credentials(self, encrypted_refresh_token: bytes) -> Credentials:
        """Refresh a member's stored OAuth grant (blocking; run in an executor)"""
        if not self.settings.GOOGLE_CLIENT_ID or not self.settings.GOOGLE_CLIENT_SECRET:
            raise CredentialUnavailable("Google OAuth client is not configured")

        refresh_token = decrypt_token(encrypted_refresh_token)
        credentials = Credentials(
            token=None,
            refresh_token=refresh_token,
            token_uri=self.settings.GOOGLE_TOKEN_URI,
            client_id=self.settings.GOOGLE_CLIENT_ID,
            client_secret=self.settings.GOOGLE_CLIENT_SECRET,
            scopes=self.SCOPES,
        )
        try:
            credentials.refresh(Request())
        except RefreshError as exc:
            if "invalid_grant" in str(exc).lower():
                raise CredentialRevoked("OAuth grant revoked by provider") from exc
            raise
        return credentials


class GoogleCalendarService:
    """Thin async wrapper around the Calendar v3 discovery client"""

    def __init__(self, service_builder=None):
        # service_builder(credentials) -> discovery resource; swapped out in tests
        self._service_builder = service_builder or self._build_service

    @staticmethod
    def _build_service(credentials):
        return build('calendar', 'v3', credentials=credentials, cache_discovery=False)

    @staticmethod
    async def _execute(request) -> Any:
        """Run a prepared googleapiclient request in the default thread pool"""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(request.execute))

    @staticmethod
    def _to_rfc3339(dt: datetime) -> str:
        return ensure_utc(dt).isoformat()

    @staticmethod
    def _parse_datetime(value: str) -> datetime:
        # Google returns "Z" suffixes, which fromisoformat only accepts on 3.11+
        if value.endswith("Z"):
            value = value[:-1] + "+00:00"
        return ensure_utc(datetime.fromisoformat(value))

    def build_event_body(self, details: EventDetails, extra_attendees: Optional[List[str]] = None) -> Dict[str, Any]:
        attendees: List[str] = []
        for email in list(extra_attendees or []) + list(details.attendees):
            if email and email not in attendees:
                attendees.append(email)

        body: Dict[str, Any] = {
            'summary': details.summary,
            'description': details.description,
            'start': {'dateTime': self._to_rfc3339(details.start), 'timeZone': details.timezone},
            'end': {'dateTime': self._to_rfc3339(details.end), 'timeZone': details.timezone},
            'attendees': [{'email': email} for email in attendees],
            'reminders': {
                'useDefault': False,
                'overrides': [
                    {'method': 'email', 'minutes': 60},
                    {'method': 'popup', 'minutes': 10},
                ],
            },
        }
        if details.with_conference and details.request_id:
            body['conferenceData'] = {
                'createRequest': {
                    'requestId': details.request_id,
                    'conferenceSolutionKey': {'type': 'hangoutsMeet'},
                }
            }
        return body

    @staticmethod
    def _conference_details(event: Dict[str, Any]) -> Dict[str, Optional[str]]:
        details: Dict[str, Optional[str]] = {
            'join_link': event.get('hangoutLink'),
            'join_phone': None,
            'join_pin': None,
        }
        for entry in (event.get('conferenceData') or {}).get('entryPoints', []):
            if entry.get('entryPointType') == 'video' and not details['join_link']:
                details['join_link'] = entry.get('uri')
            elif entry.get('entryPointType') == 'phone' and not details['join_phone']:
                details['join_phone'] = entry.get('label') or entry.get('uri')
                details['join_pin'] = entry.get('pin')
        return details

    async def free_busy(
            self,
            credentials,
            calendar_id: str,
            window_start: datetime,
            window_end: datetime,
    ) -> List[BusyInterval]:
        """Busy intervals for one calendar, sorted by start"""
        service = self._service_builder(credentials)
        body = {
            'timeMin': self._to_rfc3339(window_start),
            'timeMax': self._to_rfc3339(window_end),
            'items': [{'id': calendar_id}],
        }
        response = await self._execute(service.freebusy().query(body=body))

        calendar = (response.get('calendars') or {}).get(calendar_id)
        if calendar is None:
            raise CalendarProviderError(f"free/busy response missing calendar {calendar_id}", kind="not_found")
        # Google reports per-calendar failures (notFound, forbidden) inline
        errors = calendar.get('errors') or []
        if errors:
            reason = errors[0].get('reason', 'unknown')
            kind = "not_found" if reason == "notFound" else "auth"
            raise CalendarProviderError(f"free/busy error for calendar: {reason}", kind=kind)

        busy = [
            BusyInterval(start=self._parse_datetime(b['start']), end=self._parse_datetime(b['end']))
            for b in calendar.get('busy', [])
        ]
        busy.sort(key=lambda b: b.start)
        return busy

    async def create_event(
            self,
            credentials,
            calendar_id: str,
            details: EventDetails,
            extra_attendees: Optional[List[str]] = None,
    ) -> CreatedEvent:
        service = self._service_builder(credentials)
        body = self.build_event_body(details, extra_attendees)
        request = service.events().insert(
            calendarId=calendar_id,
            body=body,
            sendUpdates='all',
            conferenceDataVersion=1 if 'conferenceData' in body else 0,
        )
        result = await self._execute(request)
        conference = self._conference_details(result)
        return CreatedEvent(event_id=result['id'], **conference)

    async def update_event(
            self,
            credentials,
            calendar_id: str,
            event_id: str,
            details: EventDetails,
            extra_attendees: Optional[List[str]] = None,
    ) -> str:
        service = self._service_builder(credentials)
        body = self.build_event_body(details, extra_attendees)
        # Keep the existing conference; only times and text change
        body.pop('conferenceData', None)
        request = service.events().patch(
            calendarId=calendar_id,
            eventId=event_id,
            body=body,
            sendUpdates='all',
        )
        result = await self._execute(request)
        return result.get('id', event_id)

    async def delete_event(self, credentials, calendar_id: str, event_id: str) -> bool:
        service = self._service_builder(credentials)
        request = service.events().delete(calendarId=calendar_id, eventId=event_id, sendUpdates='all')
        await self._execute(request)
        return True
