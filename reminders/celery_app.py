"""Celery application instance shared across the backend.

Start a worker and the beat scheduler with:
    celery -A reminders.celery_app worker -Q reminder -l info --concurrency=2
    celery -A reminders.celery_app beat -l info
"""

from celery import Celery
from celery.schedules import crontab

from config import settings

BROKER_URL = settings.REDIS_URL

celery_app = Celery("reminder_dispatch", broker=BROKER_URL, backend=BROKER_URL)

# Global task settings
celery_app.conf.task_acks_late = True
celery_app.conf.task_reject_on_worker_lost = True
celery_app.conf.task_default_retry_delay = 30  # seconds
celery_app.conf.timezone = "UTC"

celery_app.conf.task_routes = {
    "reminders.workers.reminder.*": {"queue": "reminder"},
}

# Beat schedule. Medication times match to the minute, so that tick runs on
# minute boundaries and a late task is dropped instead of run in the wrong minute.
celery_app.conf.beat_schedule = {
    "dispatch-medication-reminders": {
        "task": "reminders.workers.reminder.dispatch_medication",
        "schedule": crontab(),
        "options": {"expires": 55},
    },
    "dispatch-deadline-reminders": {
        "task": "reminders.workers.reminder.dispatch_deadlines",
        "schedule": crontab(hour=settings.DEADLINE_TICK_HOUR, minute=0),
    },
}

# --- Ensure tasks are registered ---
import reminders.workers.reminder  # noqa: E402,F401
