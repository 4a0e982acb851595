"""Celery tasks fired by beat for each reminder tick.

Tasks are defined as *synchronous* functions so that they run correctly with
Celery's default prefork pool; the async dispatcher runs inside
``asyncio.run`` and the engine is disposed before the loop closes.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

from celery.utils.log import get_task_logger

import db
from reminders.celery_app import celery_app
from reminders.errors import PersistenceUnavailable
from reminders.services import dispatcher

logger = get_task_logger(__name__)


def _parse_now(now: str | None) -> datetime | None:
    if not now:
        return None
    parsed = datetime.fromisoformat(now.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


async def _run_tick(entry_point, now: datetime | None) -> dict:
    try:
        report = await entry_point(now)
        return report.model_dump(mode="json")
    finally:
        await db.dispose_engine()


# ---------------------------------------------------------------------------
# Celery Tasks
# ---------------------------------------------------------------------------

@celery_app.task(name="reminders.workers.reminder.dispatch_medication", bind=True)
def dispatch_medication(self, now: str | None = None):  # noqa: D401
    """Evaluate medication schedules for the current minute and send due SMS."""
    try:
        return asyncio.run(_run_tick(dispatcher.evaluate_medication_reminders, _parse_now(now)))
    except PersistenceUnavailable as exc:
        # The next beat (one minute away) retries cleanly.
        logger.error("Medication tick aborted, dispatch store unavailable: %s", exc)
        return {"aborted": True, "error": str(exc)}


@celery_app.task(
    name="reminders.workers.reminder.dispatch_deadlines", bind=True, max_retries=5
)
def dispatch_deadlines(self, now: str | None = None):  # noqa: D401
    """Evaluate claim deadline watches for today and send batched emails."""
    now = now or datetime.now(tz=timezone.utc).isoformat()
    try:
        return asyncio.run(_run_tick(dispatcher.evaluate_deadline_watches, _parse_now(now)))
    except PersistenceUnavailable as exc:
        # Daily cadence: retry the same day rather than wait for tomorrow.
        logger.error("Deadline tick aborted, dispatch store unavailable: %s", exc)
        raise self.retry(exc=exc, countdown=300, kwargs={"now": now})
