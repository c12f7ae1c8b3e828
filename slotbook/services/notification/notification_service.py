# slotbook/services/notification/notification_service.py
"""
Best-effort side effects after a committed booking transition.

Every sender runs concurrently with settled semantics: a sender (or one of its
recipients) failing never affects another, and nothing here raises into the
request path. Retries belong to the senders' own machinery (Celery for email).
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from slotbook.schemas.notifications import BookingEventPayload, NotificationKind
from slotbook.services.email.email_service import INVITEE, TEAM_MEMBER
from slotbook.services.webhook.webhook_service import WebhookService

logger = logging.getLogger(__name__)


class NotificationSender(ABC):
    name: str = "sender"

    @abstractmethod
    async def send(self, kind: NotificationKind, payload: BookingEventPayload) -> Dict[str, bool]:
        """Outcome per recipient"""


class EmailNotificationSender(NotificationSender):
    """Queues one email task per recipient; SMTP delivery and retries happen in the worker"""
    name = "email"

    def __init__(self, task=None):
        if task is None:
            from slotbook.tasks.notification_tasks import send_booking_email
            task = send_booking_email
        self.task = task

    async def send(self, kind: NotificationKind, payload: BookingEventPayload) -> Dict[str, bool]:
        data = payload.model_dump(mode="json")
        outcomes: Dict[str, bool] = {}
        for role, address in ((INVITEE, payload.invitee_email), (TEAM_MEMBER, payload.team_member_email)):
            try:
                self.task.delay(kind.value, role, data)
                outcomes[address] = True
            except Exception as e:
                logger.error(f"Could not queue {kind.value} email for booking {payload.booking_id} ({role}): {e}")
                outcomes[address] = False
        return outcomes


class WebhookNotificationSender(NotificationSender):
    name = "webhook"

    def __init__(self, db: Session, http_client=None):
        self.db = db
        self.http_client = http_client

    async def send(self, kind: NotificationKind, payload: BookingEventPayload) -> Dict[str, bool]:
        service = WebhookService(self.db, http_client=self.http_client)
        try:
            deliveries = await service.fire_webhook(kind.webhook_event, payload.webhook_body())
        finally:
            await service.close()
        return {delivery.url: delivery.delivered for delivery in deliveries}


class NotificationService:

    def __init__(self, senders: Optional[Sequence[NotificationSender]] = None):
        self.senders: List[NotificationSender] = list(senders or [])

    async def trigger(self, kind: NotificationKind, payload: BookingEventPayload) -> Dict[str, Dict[str, bool]]:
        """Dispatch to every sender; returns {sender: {recipient: ok}} and never raises"""
        if not self.senders:
            return {}

        results = await asyncio.gather(
            *(sender.send(kind, payload) for sender in self.senders),
            return_exceptions=True,
        )

        outcome: Dict[str, Dict[str, bool]] = {}
        for sender, result in zip(self.senders, results):
            if isinstance(result, BaseException):
                logger.error(f"{sender.name} notification '{kind.value}' failed for booking {payload.booking_id}: {result}")
                outcome[sender.name] = {"*": False}
            else:
                outcome[sender.name] = result

        failed = [name for name, recipients in outcome.items() if not all(recipients.values())]
        if failed:
            logger.warning(f"Notification '{kind.value}' for booking {payload.booking_id} partially failed: {failed}")
        else:
            logger.info(f"Notification '{kind.value}' dispatched for booking {payload.booking_id}")
        return outcome


def default_notifier(db: Session) -> NotificationService:
    """Email through the Celery worker plus signed webhooks"""
    return NotificationService([
        EmailNotificationSender(),
        WebhookNotificationSender(db),
    ])
