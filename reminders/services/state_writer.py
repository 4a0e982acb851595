"""
Persist send outcomes.

This is the only code path that advances ``dispatch_log.status`` or flips a
claim's ``sent_reminders`` flag.

• sent       → rows become ``sent`` with the provider id and deadline bands get
               their flag, in one transaction
• permanent  → rows become ``failed``; flags untouched
• unknown    → rows stay ``reserved`` with the error noted, for bounded resumption
"""

from __future__ import annotations

import logging
from datetime import datetime

import db
from reminders.types.dispatch_contract import OccurrenceKind, OutboundBatch

_LOGGER = logging.getLogger(__name__)


async def record_sent(batch: OutboundBatch, external_id: str | None, now: datetime) -> None:
    flags = [
        (o.key.source_id, o.key.band.value)
        for o in batch.occurrences
        if o.key.kind is OccurrenceKind.DEADLINE
    ]
    await db.mark_dispatch_sent(batch.occurrence_keys, external_id, now, claim_flags=flags)


async def record_failed(batch: OutboundBatch, err: str) -> None:
    await db.mark_dispatch_failed(batch.occurrence_keys, err)
    _LOGGER.error(
        "Permanent %s failure for recipient %s (%s): %s",
        batch.channel.value, batch.recipient_id, ", ".join(batch.occurrence_keys), err,
    )


async def record_unresolved(batch: OutboundBatch, err: str) -> None:
    await db.record_dispatch_error(batch.occurrence_keys, err)
    _LOGGER.warning(
        "Unresolved %s send for recipient %s left reserved: %s",
        batch.channel.value, batch.recipient_id, err,
    )


async def give_up(occurrence_key: str, attempts: int, last_error: str | None) -> bool:
    """Mark a reserved row failed once its retry budget is spent."""
    reason = f"retry limit exhausted after {attempts} attempts"
    if last_error:
        reason = f"{reason}: {last_error}"
    changed = await db.mark_dispatch_failed([occurrence_key], reason)
    if changed:
        _LOGGER.error("Occurrence %s needs manual review: %s", occurrence_key, reason)
    return bool(changed)
