# ===== slotbook/tasks/notification_tasks.py =====
from typing import Any, Dict
import logging

from slotbook.config.celery_config import celery_app
from slotbook.services.email.email_service import EmailService

logger = logging.getLogger(__name__)


@celery_app.task(name="slotbook.tasks.notification_tasks.send_booking_email", bind=True, max_retries=3)
def send_booking_email(self, kind: str, role: str, payload: Dict[str, Any]):
    """
    Send one booking email (confirmation, cancellation, reschedule, reminder)

    Args:
        kind: created / cancelled / rescheduled / reminder
        role: "invitee" or "team_member"
        payload: JSON dump of BookingEventPayload
    """
    booking_id = payload.get("booking_id")
    try:
        logger.info(f"Sending {kind} email for booking {booking_id} to {role}")

        EmailService.send_booking_email(kind, role, payload)

        return {"status": "success", "booking_id": booking_id, "role": role}

    except Exception as exc:
        logger.error(f"Failed to send {kind} email for booking {booking_id} to {role}: {exc}")

        # Retry with exponential backoff: 1min, 2min, 4min
        raise self.retry(
            exc=exc,
            countdown=60 * (2 ** self.request.retries)
        )
