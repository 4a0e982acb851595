"""
Shared pytest fixtures: a throwaway SQLite dispatch store, fake channel
senders, and fast retry settings.
"""

from __future__ import annotations

import threading
import time
from datetime import date
from typing import Iterable

import pytest
import pytest_asyncio
from sqlalchemy import select

import db
from config import settings
from db.db import Claim, DispatchLog, Medication, Pet, Profile, get_session
from reminders.types.dispatch_contract import Channel


# ============================================================================
# SETTINGS
# ============================================================================


@pytest.fixture(autouse=True)
def dispatch_settings(monkeypatch):
    monkeypatch.setattr(settings, "DEFAULT_TIMEZONE", "America/Los_Angeles")
    monkeypatch.setattr(settings, "DEADLINE_TIMEZONE", "UTC")
    monkeypatch.setattr(settings, "DEFAULT_FILING_WINDOW_DAYS", 90)
    monkeypatch.setattr(settings, "SEND_TIMEOUT_SECONDS", 2.0)
    monkeypatch.setattr(settings, "SEND_RETRY_ATTEMPTS", 3)
    monkeypatch.setattr(settings, "SEND_RETRY_WAIT_MAX", 0)
    monkeypatch.setattr(settings, "DISPATCH_MAX_ATTEMPTS", 3)
    monkeypatch.setattr(settings, "DISPATCH_RETRY_AFTER_SECONDS", 60)
    monkeypatch.setattr(settings, "APP_DASHBOARD_URL", "https://example.test/dashboard")
    monkeypatch.setattr(settings, "CRON_SECRET", None)
    # Provider credentials unset: real senders stay in dev mode.
    monkeypatch.setattr(settings, "TELNYX_API_KEY", None)
    monkeypatch.setattr(settings, "TELNYX_FROM_NUMBER", None)
    monkeypatch.setattr(settings, "SMTP_SERVER", None)
    return settings


# ============================================================================
# DATABASE FIXTURES
# ============================================================================


@pytest_asyncio.fixture
async def database(tmp_path, monkeypatch):
    """Fresh SQLite file per test, schema created from the ORM metadata."""
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'dispatch.db'}")
    await db.dispose_engine()
    await db.create_all()
    yield
    await db.dispose_engine()


async def add_rows(*rows) -> None:
    async with get_session() as s:
        s.add_all(rows)
        await s.commit()


async def dispatch_rows() -> list[DispatchLog]:
    async with get_session() as s:
        res = await s.execute(select(DispatchLog).order_by(DispatchLog.id))
        return list(res.scalars())


async def claim_flags(claim_id: str) -> dict:
    async with get_session() as s:
        claim = await s.get(Claim, claim_id)
        return claim.sent_reminders or {}


def owner(user_id: str = "user-1", phone: str | None = "+15555550100",
          email: str | None = "owner@example.test", sms_opt_in: bool | None = True) -> Profile:
    return Profile(id=user_id, phone=phone, email=email, sms_opt_in=sms_opt_in)


def pet(pet_id: str = "pet-1", user_id: str = "user-1", name: str = "Bo",
        filing_deadline_days: int | None = None) -> Pet:
    return Pet(id=pet_id, user_id=user_id, name=name, species="dog",
               filing_deadline_days=filing_deadline_days)


def medication(med_id: str = "med-1", user_id: str = "user-1", pet_id: str = "pet-1",
               reminder_times=("08:00",), start: date = date(2025, 11, 1),
               end: date | None = None, tz: str | None = "America/Los_Angeles",
               name: str = "Apoquel") -> Medication:
    times = list(reminder_times) if isinstance(reminder_times, (list, tuple)) else reminder_times
    return Medication(id=med_id, user_id=user_id, pet_id=pet_id, medication_name=name,
                      reminder_times=times, timezone=tz, start_date=start, end_date=end)


def claim(claim_id: str = "claim-1", user_id: str = "user-1", pet_id: str = "pet-1",
          service_date: date = date(2025, 1, 1), window: int | None = 90,
          flags: dict | None = None, clinic: str = "Valley Vet",
          status: str = "not_filed") -> Claim:
    return Claim(id=claim_id, user_id=user_id, pet_id=pet_id, clinic_name=clinic,
                 service_date=service_date, filing_deadline_days=window,
                 filing_status=status, sent_reminders=flags)


# ============================================================================
# FAKE CHANNEL SENDERS
# ============================================================================


class FakeSmsSender:
    def __init__(self, errors: Iterable[Exception] = (), delay: float = 0.0):
        self.sent: list[tuple[str, str]] = []
        self.calls = 0
        self._errors = list(errors)
        self._delay = delay
        self._lock = threading.Lock()

    def send(self, to: str, body: str) -> str:
        with self._lock:
            self.calls += 1
            error = self._errors.pop(0) if self._errors else None
        if self._delay:
            time.sleep(self._delay)
        if error is not None:
            raise error
        with self._lock:
            self.sent.append((to, body))
            return f"sms-{len(self.sent)}"


class FakeEmailSender:
    def __init__(self, errors: Iterable[Exception] = (), repeat_error: Exception | None = None):
        self.sent: list[dict] = []
        self.calls = 0
        self._errors = list(errors)
        self._repeat_error = repeat_error
        self._lock = threading.Lock()

    def send(self, to: str, subject: str, html: str, text: str) -> str:
        with self._lock:
            self.calls += 1
            error = self._errors.pop(0) if self._errors else self._repeat_error
        if error is not None:
            raise error
        with self._lock:
            self.sent.append({"to": to, "subject": subject, "html": html, "text": text})
            return f"email-{len(self.sent)}"


@pytest.fixture
def sms_sender() -> FakeSmsSender:
    return FakeSmsSender()


@pytest.fixture
def email_sender() -> FakeEmailSender:
    return FakeEmailSender()


@pytest.fixture
def senders(sms_sender, email_sender) -> dict:
    return {Channel.SMS: sms_sender, Channel.EMAIL: email_sender}
