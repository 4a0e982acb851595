"""Pydantic models shared by the evaluator, the dispatch store and the
channel adapters.

These classes are intentionally framework-agnostic so they can be reused by
workers, API responses, and tests without pulling in FastAPI or database
layers.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Literal, NamedTuple, Optional, Union
from typing_extensions import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class Channel(str, Enum):
    SMS = "sms"
    EMAIL = "email"


class OccurrenceKind(str, Enum):
    MEDICATION = "medication"
    DEADLINE = "deadline"


class DispatchStatus(str, Enum):
    RESERVED = "reserved"
    SENT = "sent"
    FAILED = "failed"


class ReservationOutcome(str, Enum):
    WON = "won"
    LOST = "lost"


# ──────────────────────────────
# Deadline bands
# ──────────────────────────────


class DeadlineBand(str, Enum):
    """Threshold names; values are the keys stored in ``sent_reminders``."""

    DAY_7 = "day_7"
    DAY_30 = "day_30"
    DAY_60 = "day_60"
    PASSED = "deadline_passed"


class BandRule(NamedTuple):
    priority: int
    band: DeadlineBand
    matches: Callable[[int], bool]


# First match wins; the predicates are also mutually exclusive.
BAND_RULES: tuple[BandRule, ...] = tuple(
    sorted(
        (
            BandRule(1, DeadlineBand.DAY_7, lambda remaining: 0 < remaining <= 7),
            BandRule(2, DeadlineBand.DAY_30, lambda remaining: 7 < remaining <= 30),
            BandRule(3, DeadlineBand.DAY_60, lambda remaining: 30 < remaining <= 60),
            BandRule(4, DeadlineBand.PASSED, lambda remaining: remaining <= 0),
        ),
        key=lambda rule: rule.priority,
    )
)


def classify_remaining(remaining: int) -> Optional[DeadlineBand]:
    """Return the single band *remaining* days falls into, or None past 60."""
    for rule in BAND_RULES:
        if rule.matches(remaining):
            return rule.band
    return None


# ──────────────────────────────
# Source records
# ──────────────────────────────


class Recipient(BaseModel):
    id: str
    phone: Optional[str] = None
    email: Optional[str] = None
    sms_opt_in: Optional[bool] = None

    @property
    def can_receive_sms(self) -> bool:
        return bool(self.phone) and self.sms_opt_in is not False

    @property
    def can_receive_email(self) -> bool:
        return bool(self.email)


RecurrenceType = Literal["daily", "weekly", "monthly", "quarterly", "as_needed"]


class Recurrence(BaseModel):
    type: RecurrenceType = "daily"
    day_of_week: Optional[int] = Field(default=None, ge=0, le=6)  # 0 = Sunday
    day_of_month: Optional[int] = Field(default=None, ge=1, le=31)

    @model_validator(mode="after")
    def _day_required(self):
        if self.type == "weekly" and self.day_of_week is None:
            raise ValueError("weekly recurrence needs day_of_week")
        if self.type in ("monthly", "quarterly") and self.day_of_month is None:
            raise ValueError(f"{self.type} recurrence needs day_of_month")
        return self


class ReminderSchedule(BaseModel):
    """A medication dosing schedule for one recipient."""

    id: str
    recipient: Recipient
    timezone: str
    start_date: date
    end_date: Optional[date] = None
    times: List[Any] = Field(default_factory=list)  # checked per entry at match time
    recurrence: Recurrence = Field(default_factory=Recurrence)
    channel: Channel = Channel.SMS
    pet_name: Optional[str] = None
    medication_name: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _from_reminder_times(cls, data: Any):
        """Accept the stored ``reminder_times`` column in either format.

        • list of ``HH:MM`` strings → daily schedule
        • ``{"type", "time", "dayOfWeek", "dayOfMonth"}`` → single-time recurrence
        """
        if not isinstance(data, dict) or "reminder_times" not in data:
            return data
        data = dict(data)
        raw = data.pop("reminder_times")
        if isinstance(raw, list):
            data.setdefault("times", raw)
        elif isinstance(raw, dict):
            data.setdefault("times", [raw["time"]] if raw.get("time") else [])
            data.setdefault(
                "recurrence",
                {
                    "type": raw.get("type", "daily"),
                    "day_of_week": raw.get("dayOfWeek"),
                    "day_of_month": raw.get("dayOfMonth"),
                },
            )
        else:
            raise ValueError("reminder_times must be a list or an object")
        return data

    @model_validator(mode="after")
    def _check_window(self):
        if self.end_date is not None and self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        if not self.times and self.recurrence.type != "as_needed":
            raise ValueError("an active schedule needs at least one reminder time")
        return self

    def is_active_on(self, day: date) -> bool:
        if day < self.start_date:
            return False
        return self.end_date is None or day <= self.end_date


class DeadlineWatch(BaseModel):
    """A claim filing deadline for one recipient."""

    id: str
    recipient: Recipient
    reference_date: date
    window_days: int = Field(ge=0)
    sent_flags: Dict[str, bool] = Field(default_factory=dict)
    channel: Channel = Channel.EMAIL
    pet_name: Optional[str] = None
    clinic_name: Optional[str] = None

    @field_validator("sent_flags", mode="before")
    def _none_is_empty(cls, v):  # noqa: N805
        return v or {}

    @property
    def deadline(self) -> date:
        return self.reference_date + timedelta(days=self.window_days)

    def remaining_days(self, today: date) -> int:
        return (self.deadline - today).days


# ──────────────────────────────
# Occurrences
# ──────────────────────────────


class OccurrenceKey(BaseModel):
    """Identity of one reminder instance that may fire at most once."""

    model_config = ConfigDict(frozen=True)

    kind: OccurrenceKind
    source_id: str
    occurrence_date: Optional[date] = None
    occurrence_time: Optional[str] = None
    band: Optional[DeadlineBand] = None

    @model_validator(mode="after")
    def _shape_matches_kind(self):
        if self.kind is OccurrenceKind.MEDICATION:
            if self.occurrence_date is None or not self.occurrence_time or self.band is not None:
                raise ValueError("medication keys need occurrence_date and occurrence_time only")
        elif self.band is None or self.occurrence_date is not None or self.occurrence_time is not None:
            raise ValueError("deadline keys need band only")
        return self

    @classmethod
    def for_medication(cls, schedule_id: str, day: date, hhmm: str) -> "OccurrenceKey":
        return cls(
            kind=OccurrenceKind.MEDICATION,
            source_id=schedule_id,
            occurrence_date=day,
            occurrence_time=hhmm,
        )

    @classmethod
    def for_deadline(cls, watch_id: str, band: DeadlineBand) -> "OccurrenceKey":
        return cls(kind=OccurrenceKind.DEADLINE, source_id=watch_id, band=band)

    def __str__(self) -> str:
        if self.kind is OccurrenceKind.MEDICATION:
            return f"medication:{self.source_id}:{self.occurrence_date.isoformat()}:{self.occurrence_time}"
        return f"deadline:{self.source_id}:{self.band.value}"


class MedicationFragment(BaseModel):
    type: Literal["medication"] = "medication"
    pet_name: str = "your pet"
    medication_name: str = "medication"
    scheduled_time: str


class DeadlineFragment(BaseModel):
    type: Literal["deadline"] = "deadline"
    pet_name: str = "your pet"
    clinic_name: Optional[str] = None
    service_date: date
    deadline: date
    days_remaining: int
    band: DeadlineBand


Fragment = Annotated[Union[MedicationFragment, DeadlineFragment], Field(discriminator="type")]


class DueOccurrence(BaseModel):
    """A due occurrence with everything needed to render and deliver it."""

    key: OccurrenceKey
    recipient_id: str
    channel: Channel
    address: str
    fragment: Fragment

    @property
    def occurrence_key(self) -> str:
        return str(self.key)


class OutboundBatch(BaseModel):
    """One outbound message per (recipient, channel) per tick."""

    recipient_id: str
    channel: Channel
    address: str
    occurrences: List[DueOccurrence]
    text: str
    subject: Optional[str] = None
    html: Optional[str] = None

    @property
    def occurrence_keys(self) -> list[str]:
        return [o.occurrence_key for o in self.occurrences]


class SkippedRecord(BaseModel):
    source_id: Optional[str] = None
    reason: str


class TickReport(BaseModel):
    """Summary returned by each evaluator entry point."""

    kind: OccurrenceKind
    now: datetime
    evaluated: int = 0
    due: int = 0
    reserved: int = 0
    lost: int = 0
    resumed: int = 0
    sent: int = 0
    failed: int = 0
    pending: int = 0
    batches: int = 0
    skipped: List[SkippedRecord] = Field(default_factory=list)
