"""Periodic scanner for hosts that use cron instead of Celery beat.
Run every minute / once a day:
    python -m reminders.scripts.scan_due_reminders medication
    python -m reminders.scripts.scan_due_reminders deadlines --now 2025-03-25T16:00:00Z
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from datetime import datetime

import db
from config import settings
from reminders.clock import ensure_aware
from reminders.errors import PersistenceUnavailable
from reminders.services import dispatcher

_LOGGER = logging.getLogger("reminders.cron")

ENTRY_POINTS = {
    "medication": "evaluate_medication_reminders",
    "deadlines": "evaluate_deadline_watches",
}


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Evaluate and dispatch due reminders once.")
    parser.add_argument("mode", choices=sorted(ENTRY_POINTS))
    parser.add_argument(
        "--now",
        type=lambda v: ensure_aware(datetime.fromisoformat(v.replace("Z", "+00:00"))),
        help="Evaluate as of this ISO-8601 instant (must include an offset)",
    )
    return parser.parse_args(argv)


async def main(mode: str, now: datetime | None = None) -> dict:
    try:
        report = await getattr(dispatcher, ENTRY_POINTS[mode])(now)
        return report.model_dump(mode="json")
    finally:
        await db.dispose_engine()


def run(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    _LOGGER.info("scan_due_reminders %s: job started", args.mode)
    try:
        summary = asyncio.run(main(args.mode, args.now))
    except PersistenceUnavailable as exc:
        _LOGGER.error("scan_due_reminders %s: aborted, dispatch store unavailable: %s", args.mode, exc)
        return 2
    print(json.dumps(summary, indent=2))
    _LOGGER.info("scan_due_reminders %s: job completed successfully", args.mode)
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(run())
