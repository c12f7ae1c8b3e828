# ===== slotbook/tasks/reminder_tasks.py =====
import asyncio
import logging

from slotbook.config.celery_config import celery_app
from slotbook.config.database import SessionLocal
from slotbook.core.capabilities import CronCapability
from slotbook.services.booking.booking_service import BookingService
from slotbook.services.notification.notification_service import default_notifier

logger = logging.getLogger(__name__)


@celery_app.task(name="slotbook.tasks.reminder_tasks.send_due_reminders", bind=True, max_retries=1)
def send_due_reminders(self):
    """Periodic: remind invitees and hosts of confirmed bookings starting in the reminder window"""
    db = SessionLocal()
    try:
        service = BookingService(db, notifier=default_notifier(db))
        sent = asyncio.run(service.send_due_reminders(CronCapability(issued_to="celery-beat")))
        return {"status": "success", "sent": sent}

    except Exception as exc:
        logger.error(f"Reminder sweep failed: {exc}", exc_info=True)
        raise self.retry(exc=exc, countdown=60)

    finally:
        db.close()
