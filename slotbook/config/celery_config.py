"""Celery application configuration"""
from celery import Celery

from slotbook.config.settings import get_settings

settings = get_settings()


def create_celery_app() -> Celery:
    """Create the Celery app used for out-of-request work (emails, reminders)"""
    app = Celery(
        "slotbook",
        broker=settings.CELERY_BROKER_URL,
        backend=settings.CELERY_RESULT_BACKEND,
        include=[
            "slotbook.tasks.notification_tasks",
            "slotbook.tasks.reminder_tasks",
        ],
    )

    app.conf.update(
        task_serializer=settings.CELERY_TASK_SERIALIZER,
        result_serializer="json",
        accept_content=["json"],
        timezone="UTC",
        enable_utc=True,
        task_acks_late=True,
        task_always_eager=settings.CELERY_TASK_ALWAYS_EAGER,
        beat_schedule={
            # Reminder window is 60 minutes wide; every 15 minutes keeps overlap
            "send-due-reminders": {
                "task": "slotbook.tasks.reminder_tasks.send_due_reminders",
                "schedule": 15 * 60,
            },
        },
    )
    return app


celery_app = create_celery_app()
