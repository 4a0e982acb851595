"""
Schedule evaluation: turn source records plus "now" into due occurrences.

Pure functions of their inputs. Nothing here touches the dispatch store, so
overlapping ticks may evaluate freely; deduplication happens at reservation.
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime
from typing import Any, Iterable, Tuple

from pydantic import ValidationError

from reminders.clock import local_now
from reminders.errors import MalformedScheduleRecord, UnknownTimezone
from reminders.types.dispatch_contract import (
    Channel,
    DeadlineFragment,
    DeadlineWatch,
    DueOccurrence,
    MedicationFragment,
    OccurrenceKey,
    ReminderSchedule,
    SkippedRecord,
    classify_remaining,
)

_LOGGER = logging.getLogger(__name__)

_HHMM = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")

Evaluation = Tuple[list[DueOccurrence], list[SkippedRecord]]


def _record_id(row: Any) -> str | None:
    if isinstance(row, dict):
        return row.get("id")
    return getattr(row, "id", None)


def _coerce(model, row: Any):
    if isinstance(row, model):
        return row
    try:
        return model.model_validate(row)
    except ValidationError as exc:
        raise MalformedScheduleRecord(str(exc)) from exc


# ──────────────────────────────────────────────────────────────────────────
# Medication schedules
# ──────────────────────────────────────────────────────────────────────────


def _whole_months_between(start: date, day: date) -> int:
    months = (day.year - start.year) * 12 + (day.month - start.month)
    if day.day < start.day:
        months -= 1
    return months


def recurrence_allows(schedule: ReminderSchedule, day: date) -> bool:
    rec = schedule.recurrence
    if rec.type == "daily":
        return True
    if rec.type == "weekly":
        return day.isoweekday() % 7 == rec.day_of_week
    if rec.type == "monthly":
        return day.day == rec.day_of_month
    if rec.type == "quarterly":
        return day.day == rec.day_of_month and _whole_months_between(schedule.start_date, day) % 3 == 0
    # as_needed never fires automatically
    return False


def matched_time(schedule: ReminderSchedule, hhmm: str) -> str | None:
    """Return the configured time equal to *hhmm*; malformed values are skipped."""
    for value in schedule.times:
        candidate = value.strip() if isinstance(value, str) else None
        if candidate is None or not _HHMM.match(candidate):
            _LOGGER.warning(
                "Skipping malformed reminder time %r on schedule %s", value, schedule.id
            )
            continue
        if candidate == hhmm:
            return candidate
    return None


def due_medication_occurrences(rows: Iterable[Any], now: datetime) -> Evaluation:
    due: list[DueOccurrence] = []
    skipped: list[SkippedRecord] = []

    for row in rows:
        try:
            schedule = _coerce(ReminderSchedule, row)
            local = local_now(schedule.timezone, now)
        except UnknownTimezone as exc:
            _LOGGER.warning("Skipping schedule %s: %s", _record_id(row), exc)
            skipped.append(SkippedRecord(source_id=_record_id(row), reason="Unknown timezone"))
            continue
        except MalformedScheduleRecord as exc:
            _LOGGER.warning("Skipping malformed schedule %s: %s", _record_id(row), exc)
            skipped.append(SkippedRecord(source_id=_record_id(row), reason="Malformed record"))
            continue

        if not schedule.is_active_on(local.date):
            continue
        if not recurrence_allows(schedule, local.date):
            continue
        hit = matched_time(schedule, local.hhmm)
        if hit is None:
            continue

        recipient = schedule.recipient
        if not recipient.can_receive_sms:
            _LOGGER.info("Schedule %s due but recipient has no phone or opted out", schedule.id)
            skipped.append(SkippedRecord(source_id=schedule.id, reason="No phone or opted out"))
            continue

        due.append(
            DueOccurrence(
                key=OccurrenceKey.for_medication(schedule.id, local.date, hit),
                recipient_id=recipient.id,
                channel=Channel.SMS,
                address=recipient.phone,
                fragment=MedicationFragment(
                    pet_name=schedule.pet_name or "your pet",
                    medication_name=schedule.medication_name or "medication",
                    scheduled_time=hit,
                ),
            )
        )

    return due, skipped


# ──────────────────────────────────────────────────────────────────────────
# Claim deadline watches
# ──────────────────────────────────────────────────────────────────────────


def due_deadline_occurrences(rows: Iterable[Any], now: datetime, tz_name: str = "UTC") -> Evaluation:
    """Classify each watch into at most one band and keep the unsent ones.

    ``remaining`` is whole calendar days in *tz_name*; time of day is ignored.
    """
    today = local_now(tz_name, now).date
    due: list[DueOccurrence] = []
    skipped: list[SkippedRecord] = []

    for row in rows:
        try:
            watch = _coerce(DeadlineWatch, row)
        except MalformedScheduleRecord as exc:
            _LOGGER.warning("Skipping malformed deadline watch %s: %s", _record_id(row), exc)
            skipped.append(SkippedRecord(source_id=_record_id(row), reason="Malformed record"))
            continue

        remaining = watch.remaining_days(today)
        band = classify_remaining(remaining)
        if band is None:
            continue
        if watch.sent_flags.get(band.value) is True:
            continue

        recipient = watch.recipient
        if not recipient.can_receive_email:
            skipped.append(SkippedRecord(source_id=watch.id, reason="No email"))
            continue

        _LOGGER.debug("Watch %s: %d days remaining, band %s", watch.id, remaining, band.value)
        due.append(
            DueOccurrence(
                key=OccurrenceKey.for_deadline(watch.id, band),
                recipient_id=recipient.id,
                channel=Channel.EMAIL,
                address=recipient.email,
                fragment=DeadlineFragment(
                    pet_name=watch.pet_name or "your pet",
                    clinic_name=watch.clinic_name,
                    service_date=watch.reference_date,
                    deadline=watch.deadline,
                    days_remaining=remaining,
                    band=band,
                ),
            )
        )

    return due, skipped
