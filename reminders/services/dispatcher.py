"""
Tick entry points: evaluate → reserve → batch → send → record.

Flow per tick:
1. Queue rows this kind left ``reserved`` in earlier ticks (bounded retries).
2. Load schedules / watches and compute due occurrences (pure evaluation).
3. Reserve every due occurrence; winners join the resumed rows in one batcher.
4. Flush one batch per (recipient, channel) through its channel sender.
5. Record the outcome through the state writer.

No outbound call is made for an occurrence before its reservation row
exists. ``PersistenceUnavailable`` aborts the tick; every other failure is
contained to its batch. Rows reserved before an abort are sent by the first
tick after ``DISPATCH_RETRY_AFTER_SECONDS``.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from datetime import datetime, timedelta
from typing import Any, Iterable, Mapping

from pydantic import ValidationError
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

import db
from config import settings
from reminders.clock import SystemClock, ensure_aware
from reminders.errors import (
    ChannelError,
    ChannelPermanentFailure,
    ChannelTimeout,
    ChannelTransientFailure,
)
from reminders.services import evaluator, state_writer
from reminders.services.batcher import DispatchBatcher
from reminders.types.dispatch_contract import (
    Channel,
    DueOccurrence,
    OccurrenceKind,
    OutboundBatch,
    ReservationOutcome,
    TickReport,
)
from reminders.utils.mail import SmtpEmailSender
from reminders.utils.sms import TelnyxSmsSender

_LOGGER = logging.getLogger(__name__)

Senders = Mapping[Channel, Any]


def default_senders() -> dict[Channel, Any]:
    return {Channel.SMS: TelnyxSmsSender(), Channel.EMAIL: SmtpEmailSender()}


# ──────────────────────────────────────────────────────────────────────────
# Delivery
# ──────────────────────────────────────────────────────────────────────────


async def _send_once(batch: OutboundBatch, sender: Any, timeout: float) -> str:
    if batch.channel is Channel.SMS:
        call = functools.partial(sender.send, batch.address, batch.text)
    else:
        call = functools.partial(sender.send, batch.address, batch.subject, batch.html, batch.text)
    try:
        return await asyncio.wait_for(asyncio.to_thread(call), timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise ChannelTimeout(
            f"{batch.channel.value} send exceeded {timeout}s", channel=batch.channel.value
        ) from exc
    except ChannelError:
        raise
    except Exception as exc:  # noqa: BLE001
        # Unclassified adapter errors leave the outcome unknown.
        raise ChannelTransientFailure(
            f"unclassified {batch.channel.value} error: {exc!r}", channel=batch.channel.value
        ) from exc


async def deliver(batch: OutboundBatch, sender: Any) -> str:
    """Send *batch*, retrying transient failures in-tick; timeouts are not retried."""
    retrying = AsyncRetrying(
        stop=stop_after_attempt(max(1, settings.SEND_RETRY_ATTEMPTS)),
        wait=wait_random_exponential(multiplier=0.5, max=settings.SEND_RETRY_WAIT_MAX),
        retry=retry_if_exception_type(ChannelTransientFailure),
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            external_id = await _send_once(batch, sender, settings.SEND_TIMEOUT_SECONDS)
    return external_id


async def _dispatch_batches(
    batches: Iterable[OutboundBatch], now: datetime, senders: Senders, report: TickReport
) -> None:
    for batch in batches:
        report.batches += 1
        count = len(batch.occurrences)
        sender = senders.get(batch.channel)
        if sender is None:
            await state_writer.record_unresolved(batch, f"no sender configured for {batch.channel.value}")
            report.pending += count
            continue
        try:
            external_id = await deliver(batch, sender)
        except ChannelPermanentFailure as exc:
            await state_writer.record_failed(batch, str(exc))
            report.failed += count
        except (ChannelTimeout, ChannelTransientFailure) as exc:
            await state_writer.record_unresolved(batch, f"{type(exc).__name__}: {exc}")
            report.pending += count
        else:
            await state_writer.record_sent(batch, external_id, now)
            report.sent += count
            _LOGGER.info(
                "Sent %s to recipient %s with %d reminder(s), id=%s",
                batch.channel.value, batch.recipient_id, count, external_id,
            )


# ──────────────────────────────────────────────────────────────────────────
# Reservation + resumption
# ──────────────────────────────────────────────────────────────────────────


async def reserve_due(
    due: Iterable[DueOccurrence], now: datetime, batcher: DispatchBatcher, report: TickReport
) -> None:
    for occurrence in due:
        outcome = await db.reserve_occurrence(occurrence, now)
        if outcome is ReservationOutcome.LOST:
            report.lost += 1
            _LOGGER.debug("Reservation lost for %s", occurrence.occurrence_key)
            continue
        report.reserved += 1
        batcher.add(occurrence)


async def resume_reservations(
    kind: OccurrenceKind, now: datetime, batcher: DispatchBatcher, report: TickReport
) -> None:
    """Queue rows still ``reserved`` after the retry window, never re-reserving them."""
    cutoff = now - timedelta(seconds=settings.DISPATCH_RETRY_AFTER_SECONDS)
    rows = await db.fetch_stale_reservations(kind, cutoff)
    for row in rows:
        key = row["occurrence_key"]
        if row["attempts"] >= settings.DISPATCH_MAX_ATTEMPTS:
            if await state_writer.give_up(key, row["attempts"], row["last_error"]):
                report.failed += 1
            continue
        try:
            occurrence = DueOccurrence.model_validate(row["payload"])
        except ValidationError as exc:
            if await state_writer.give_up(key, row["attempts"], f"unreadable payload: {exc}"):
                report.failed += 1
            continue
        if not await db.claim_retry(key, row["attempts"], now):
            continue
        report.resumed += 1
        batcher.add(occurrence)


# ──────────────────────────────────────────────────────────────────────────
# Public entry-points
# ──────────────────────────────────────────────────────────────────────────


def _log_summary(report: TickReport) -> None:
    _LOGGER.info(
        "%s tick %s: evaluated=%d due=%d reserved=%d lost=%d resumed=%d sent=%d failed=%d pending=%d skipped=%d",
        report.kind.value, report.now.isoformat(), report.evaluated, report.due, report.reserved,
        report.lost, report.resumed, report.sent, report.failed, report.pending, len(report.skipped),
    )


async def evaluate_medication_reminders(
    now: datetime | None = None, *, senders: Senders | None = None
) -> TickReport:
    now = ensure_aware(now or SystemClock().now())
    senders = senders if senders is not None else default_senders()
    report = TickReport(kind=OccurrenceKind.MEDICATION, now=now)
    batcher = DispatchBatcher()

    await resume_reservations(OccurrenceKind.MEDICATION, now, batcher, report)

    rows = await db.fetch_medication_schedules()
    due, skipped = evaluator.due_medication_occurrences(rows, now)
    report.evaluated = len(rows)
    report.due = len(due)
    report.skipped.extend(skipped)

    await reserve_due(due, now, batcher, report)
    await _dispatch_batches(batcher.flush(), now, senders, report)
    _log_summary(report)
    return report


async def evaluate_deadline_watches(
    now: datetime | None = None, *, senders: Senders | None = None
) -> TickReport:
    now = ensure_aware(now or SystemClock().now())
    senders = senders if senders is not None else default_senders()
    report = TickReport(kind=OccurrenceKind.DEADLINE, now=now)
    batcher = DispatchBatcher()

    await resume_reservations(OccurrenceKind.DEADLINE, now, batcher, report)

    rows = await db.fetch_deadline_watches()
    due, skipped = evaluator.due_deadline_occurrences(rows, now, settings.DEADLINE_TIMEZONE)
    report.evaluated = len(rows)
    report.due = len(due)
    report.skipped.extend(skipped)

    await reserve_due(due, now, batcher, report)
    await _dispatch_batches(batcher.flush(), now, senders, report)
    _log_summary(report)
    return report
