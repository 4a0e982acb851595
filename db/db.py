"""
Async DB helpers for the reminder dispatcher.
Uses SQLAlchemy 2.0 with the asyncpg driver (aiosqlite for local runs and tests).

The ``dispatch_log`` table is the single writer of dedup truth: its unique
``occurrence_key`` column is what arbitrates concurrent ticks.
"""

from __future__ import annotations

import functools
import os
from datetime import date, datetime
from typing import Any, Iterable

from sqlalchemy import JSON, Date, DateTime, String, func, select, text, true, update, cast, literal
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.ext.asyncio import (
    create_async_engine, async_sessionmaker, AsyncSession
)

from config import settings
from reminders.errors import PersistenceUnavailable
from reminders.types.dispatch_contract import (
    DispatchStatus,
    DueOccurrence,
    OccurrenceKind,
    ReservationOutcome,
)

# ──────────────────────────────────────────────────────────────────────
# 1. Declarative metadata
# ──────────────────────────────────────────────────────────────────────
class Base(DeclarativeBase):
    pass

# ──────────────────────────────────────────────────────────────────────
# 2. Lazy engine / session factory
# ──────────────────────────────────────────────────────────────────────
_engine = None
_session_maker: async_sessionmaker[AsyncSession] | None = None

def _build_url() -> str:
    url = os.getenv("DATABASE_URL") or os.getenv("DATABASE_PUBLIC_URL")
    if not url:
        raise RuntimeError("DATABASE_URL not set")
    if url.startswith(("postgres://", "postgresql://")):
        url = url.replace("postgres://", "postgresql+asyncpg://", 1).replace(
            "postgresql://", "postgresql+asyncpg://", 1
        )
    return url

def get_engine():
    global _engine
    if _engine is None:
        url = _build_url()
        if url.startswith("postgresql"):
            _engine = create_async_engine(url, pool_size=5, max_overflow=5, pool_pre_ping=True)
        else:
            _engine = create_async_engine(url)
    return _engine

def get_session() -> AsyncSession:
    global _session_maker
    if _session_maker is None:
        _session_maker = async_sessionmaker(get_engine(), expire_on_commit=False)
    return _session_maker()


def _persistence_guard(fn):
    """Translate connection-level failures into ``PersistenceUnavailable``."""

    @functools.wraps(fn)
    async def wrapper(*args, **kwargs):
        try:
            return await fn(*args, **kwargs)
        except (OperationalError, InterfaceError, ConnectionError) as exc:
            raise PersistenceUnavailable(f"{fn.__name__}: {exc}") from exc

    return wrapper

# ──────────────────────────────────────────────────────────────────────
# 3. ORM models
# ──────────────────────────────────────────────────────────────────────

_FlagMap = JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql")


# Read-side mirrors of the external data layer (schema owned elsewhere).
class Profile(Base):
    __tablename__ = "profiles"

    id:         Mapped[str]         = mapped_column(primary_key=True)
    email:      Mapped[str | None]
    phone:      Mapped[str | None]
    sms_opt_in: Mapped[bool | None]


class Pet(Base):
    __tablename__ = "pets"

    id:                   Mapped[str] = mapped_column(primary_key=True)
    user_id:              Mapped[str]
    name:                 Mapped[str | None]
    species:              Mapped[str | None]
    filing_deadline_days: Mapped[int | None]


class Medication(Base):
    __tablename__ = "medications"

    id:              Mapped[str]         = mapped_column(primary_key=True)
    user_id:         Mapped[str]
    pet_id:          Mapped[str | None]
    medication_name: Mapped[str | None]
    reminder_times:  Mapped[Any]         = mapped_column(JSON(none_as_null=True), nullable=True)
    timezone:        Mapped[str | None]
    start_date:      Mapped[date]        = mapped_column(Date)
    end_date:        Mapped[date | None] = mapped_column(Date)


class Claim(Base):
    __tablename__ = "claims"

    id:                   Mapped[str]         = mapped_column(primary_key=True)
    user_id:              Mapped[str]
    pet_id:               Mapped[str | None]
    clinic_name:          Mapped[str | None]
    service_date:         Mapped[date | None] = mapped_column(Date)
    filing_deadline_days: Mapped[int | None]
    filing_status:        Mapped[str]         = mapped_column(default="not_filed")
    sent_reminders:       Mapped[dict[str, bool] | None] = mapped_column(_FlagMap, nullable=True)


class DispatchLog(Base):
    __tablename__ = "dispatch_log"

    id:                  Mapped[int]        = mapped_column(primary_key=True, autoincrement=True)
    occurrence_key:      Mapped[str]        = mapped_column(String(255), unique=True)
    kind:                Mapped[str]        = mapped_column(String(32), index=True)
    source_id:           Mapped[str]
    recipient_id:        Mapped[str]
    channel:             Mapped[str]        = mapped_column(String(16))
    status:              Mapped[str]        = mapped_column(String(16), default=DispatchStatus.RESERVED.value, index=True)
    attempts:            Mapped[int]        = mapped_column(default=1)
    reserved_at:         Mapped[datetime]   = mapped_column(DateTime(timezone=True))
    last_attempt_at:     Mapped[datetime]   = mapped_column(DateTime(timezone=True))
    sent_at:             Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    external_message_id: Mapped[str | None]
    last_error:          Mapped[str | None]
    payload:             Mapped[dict[str, Any]] = mapped_column(JSON)


# ──────────────────────────────────────────────────────────────────────
# 4. DDL helper (run once at startup or from Alembic)
# ──────────────────────────────────────────────────────────────────────
async def create_all():
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# ──────────────────────────────────────────────────────────────────────
# 5. Schedule sources (read-only)
# ──────────────────────────────────────────────────────────────────────

def _recipient(user_id: str, profile: Profile | None) -> dict:
    return {
        "id": user_id,
        "phone": profile.phone if profile else None,
        "email": profile.email if profile else None,
        "sms_opt_in": profile.sms_opt_in if profile else None,
    }


# 5.1 Medication schedules --------------------------------------------
@_persistence_guard
async def fetch_medication_schedules() -> list[dict]:
    """Every medication with reminder times; activity is decided per local date."""
    async with get_session() as s:
        stmt = (
            select(Medication, Pet, Profile)
            .join(Pet, Pet.id == Medication.pet_id, isouter=True)
            .join(Profile, Profile.id == Medication.user_id, isouter=True)
            .where(Medication.reminder_times.is_not(None))
            .order_by(Medication.id)
        )
        res = await s.execute(stmt)
        return [
            {
                "id": med.id,
                "recipient": _recipient(med.user_id, profile),
                "timezone": med.timezone or settings.DEFAULT_TIMEZONE,
                "start_date": med.start_date,
                "end_date": med.end_date,
                "reminder_times": med.reminder_times,
                "pet_name": pet.name if pet else None,
                "medication_name": med.medication_name,
            }
            for med, pet, profile in res.all()
        ]


# 5.2 Claim deadline watches ------------------------------------------
WATCHED_FILING_STATUSES = ("not_filed", "filed")


def _window_days(pet: Pet | None, claim: Claim) -> int:
    if pet is not None and pet.filing_deadline_days is not None:
        return pet.filing_deadline_days
    if claim.filing_deadline_days is not None:
        return claim.filing_deadline_days
    return settings.DEFAULT_FILING_WINDOW_DAYS


@_persistence_guard
async def fetch_deadline_watches() -> list[dict]:
    async with get_session() as s:
        stmt = (
            select(Claim, Pet, Profile)
            .join(Pet, Pet.id == Claim.pet_id, isouter=True)
            .join(Profile, Profile.id == Claim.user_id, isouter=True)
            .where(
                Claim.filing_status.in_(WATCHED_FILING_STATUSES),
                Claim.service_date.is_not(None),
            )
            .order_by(Claim.id)
        )
        res = await s.execute(stmt)
        return [
            {
                "id": claim.id,
                "recipient": _recipient(claim.user_id, profile),
                "reference_date": claim.service_date,
                "window_days": _window_days(pet, claim),
                "sent_flags": claim.sent_reminders,
                "pet_name": pet.name if pet else None,
                "clinic_name": claim.clinic_name,
            }
            for claim, pet, profile in res.all()
        ]


# ──────────────────────────────────────────────────────────────────────
# 6. Reservation store
# ──────────────────────────────────────────────────────────────────────

# 6.1 Reserve ----------------------------------------------------------
@_persistence_guard
async def reserve_occurrence(occurrence: DueOccurrence, now: datetime) -> ReservationOutcome:
    """Atomically claim *occurrence*; the unique key decides the race.

    The row records the first send attempt, so it must be inserted before
    any outbound call is made.
    """
    entry = DispatchLog(
        occurrence_key=occurrence.occurrence_key,
        kind=occurrence.key.kind.value,
        source_id=occurrence.key.source_id,
        recipient_id=occurrence.recipient_id,
        channel=occurrence.channel.value,
        status=DispatchStatus.RESERVED.value,
        attempts=1,
        reserved_at=now,
        last_attempt_at=now,
        payload=occurrence.model_dump(mode="json"),
    )
    async with get_session() as s:
        s.add(entry)
        try:
            await s.commit()
        except IntegrityError:
            await s.rollback()
            return ReservationOutcome.LOST
        return ReservationOutcome.WON


# 6.2 Resumption of reserved-but-unsent rows --------------------------
@_persistence_guard
async def fetch_stale_reservations(kind: OccurrenceKind, cutoff: datetime, limit: int = 500) -> list[dict]:
    async with get_session() as s:
        stmt = (
            select(DispatchLog)
            .where(
                DispatchLog.kind == kind.value,
                DispatchLog.status == DispatchStatus.RESERVED.value,
                DispatchLog.last_attempt_at <= cutoff,
            )
            .order_by(DispatchLog.id)
            .limit(limit)
        )
        res = await s.execute(stmt)
        return [
            {
                "occurrence_key": row.occurrence_key,
                "attempts": row.attempts,
                "last_error": row.last_error,
                "payload": row.payload,
            }
            for row in res.scalars()
        ]


@_persistence_guard
async def claim_retry(occurrence_key: str, seen_attempts: int, now: datetime) -> bool:
    """Compare-and-swap on ``attempts``: only one tick may re-send a row."""
    async with get_session() as s:
        res = await s.execute(
            update(DispatchLog)
            .where(
                DispatchLog.occurrence_key == occurrence_key,
                DispatchLog.status == DispatchStatus.RESERVED.value,
                DispatchLog.attempts == seen_attempts,
            )
            .values(attempts=DispatchLog.attempts + 1, last_attempt_at=now)
        )
        await s.commit()
        return res.rowcount == 1


@_persistence_guard
async def get_dispatch_entry(occurrence_key: str) -> dict | None:
    async with get_session() as s:
        res = await s.execute(
            select(DispatchLog).where(DispatchLog.occurrence_key == occurrence_key)
        )
        row = res.scalar_one_or_none()
        if row is None:
            return None
        return {
            "occurrence_key": row.occurrence_key,
            "kind": row.kind,
            "status": row.status,
            "attempts": row.attempts,
            "external_message_id": row.external_message_id,
            "last_error": row.last_error,
            "sent_at": row.sent_at,
        }


# ──────────────────────────────────────────────────────────────────────
# 7. State writes
# ──────────────────────────────────────────────────────────────────────

# 7.1 Claim threshold flags -------------------------------------------
def _flag_merge_expr(dialect: str, flag: str):
    # Partial update of a single key so concurrent claim edits are not lost.
    if dialect == "postgresql":
        return func.coalesce(Claim.sent_reminders, text("'{}'::jsonb")).op("||")(
            func.jsonb_build_object(cast(literal(flag), String), true())
        )
    return func.json_set(
        func.coalesce(Claim.sent_reminders, func.json("{}")),
        f"$.{flag}",
        func.json("true"),
    )


# 7.2 mark_sent / mark_failed / record_error --------------------------
@_persistence_guard
async def mark_dispatch_sent(
    keys: Iterable[str],
    external_id: str | None,
    now: datetime,
    claim_flags: Iterable[tuple[str, str]] = (),
):
    """Mark *keys* sent and set each ``(claim_id, flag)`` in one transaction.

    A row is never ``sent`` while its claim flag is unset: if any write
    fails nothing is committed and the rows stay ``reserved``.
    """
    dialect = get_engine().dialect.name
    async with get_session() as s:
        await s.execute(
            update(DispatchLog)
            .where(
                DispatchLog.occurrence_key.in_(list(keys)),
                DispatchLog.status == DispatchStatus.RESERVED.value,
            )
            .values(
                status=DispatchStatus.SENT.value,
                external_message_id=external_id,
                sent_at=now,
                last_error=None,
            )
        )
        for claim_id, flag in claim_flags:
            await s.execute(
                update(Claim)
                .where(Claim.id == claim_id)
                .values(sent_reminders=_flag_merge_expr(dialect, flag))
                .execution_options(synchronize_session=False)
            )
        await s.commit()


@_persistence_guard
async def mark_dispatch_failed(keys: Iterable[str], err: str) -> int:
    async with get_session() as s:
        res = await s.execute(
            update(DispatchLog)
            .where(
                DispatchLog.occurrence_key.in_(list(keys)),
                DispatchLog.status == DispatchStatus.RESERVED.value,
            )
            .values(status=DispatchStatus.FAILED.value, last_error=err)
        )
        await s.commit()
        return res.rowcount


@_persistence_guard
async def record_dispatch_error(keys: Iterable[str], err: str):
    """Note an ambiguous or transient failure; the row stays reserved."""
    async with get_session() as s:
        await s.execute(
            update(DispatchLog)
            .where(
                DispatchLog.occurrence_key.in_(list(keys)),
                DispatchLog.status == DispatchStatus.RESERVED.value,
            )
            .values(last_error=err)
        )
        await s.commit()


async def dispose_engine():
    global _engine, _session_maker
    if _engine is not None:
        await _engine.dispose()
        _engine = None
    _session_maker = None
