import logging
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, Header, HTTPException, status

import db
from config import settings
from reminders.errors import PersistenceUnavailable
from reminders.services import dispatcher

_LOGGER = logging.getLogger(__name__)

app = FastAPI()

# DB engine is created lazily on first use and closed on shutdown

@app.on_event("shutdown")
async def shutdown_event():
    await db.dispose_engine()


def _check_secret(secret: Optional[str]) -> None:
    if settings.CRON_SECRET and secret != settings.CRON_SECRET:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Bad cron secret")


def _check_now(now: Optional[datetime]) -> None:
    if now is not None and now.tzinfo is None:
        raise HTTPException(status.HTTP_422_UNPROCESSABLE_ENTITY, "now must include a UTC offset")


async def _run(entry_point, now: Optional[datetime]) -> dict:
    try:
        report = await entry_point(now)
    except PersistenceUnavailable as exc:
        _LOGGER.error("Tick aborted, dispatch store unavailable: %s", exc)
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, "Dispatch store unavailable")
    return report.model_dump(mode="json")

# --------------------------------------------
# Endpoints
# --------------------------------------------
@app.get("/healthz")
async def healthz():
    return {"ok": True}


@app.post("/v1/reminders/medication/run")
async def run_medication_reminders(
    now: Optional[datetime] = None,
    x_cron_secret: Optional[str] = Header(default=None),
):
    _check_secret(x_cron_secret)
    _check_now(now)
    return await _run(dispatcher.evaluate_medication_reminders, now)


@app.post("/v1/reminders/deadlines/run")
async def run_deadline_notifications(
    now: Optional[datetime] = None,
    x_cron_secret: Optional[str] = Header(default=None),
):
    _check_secret(x_cron_secret)
    _check_now(now)
    return await _run(dispatcher.evaluate_deadline_watches, now)


@app.get("/v1/dispatch/{occurrence_key:path}")
async def get_dispatch_entry(
    occurrence_key: str,
    x_cron_secret: Optional[str] = Header(default=None),
):
    """Look up one dispatch log row (e.g. a failed occurrence under review)."""
    _check_secret(x_cron_secret)
    try:
        entry = await db.get_dispatch_entry(occurrence_key)
    except PersistenceUnavailable:
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, "Dispatch store unavailable")
    if entry is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Unknown occurrence")
    return entry
