from datetime import date

import pytest
from pydantic import ValidationError

from reminders.types.dispatch_contract import (
    BAND_RULES,
    DeadlineBand,
    DeadlineFragment,
    DeadlineWatch,
    DueOccurrence,
    MedicationFragment,
    OccurrenceKey,
    OccurrenceKind,
    Recipient,
    ReminderSchedule,
    classify_remaining,
)


@pytest.mark.parametrize(
    "remaining, band",
    [
        (61, None),
        (60, DeadlineBand.DAY_60),
        (31, DeadlineBand.DAY_60),
        (30, DeadlineBand.DAY_30),
        (8, DeadlineBand.DAY_30),
        (7, DeadlineBand.DAY_7),
        (1, DeadlineBand.DAY_7),
        (0, DeadlineBand.PASSED),
        (-45, DeadlineBand.PASSED),
    ],
)
def test_classify_remaining(remaining, band):
    assert classify_remaining(remaining) is band


def test_bands_are_mutually_exclusive():
    for remaining in range(-120, 200):
        matching = [rule.band for rule in BAND_RULES if rule.matches(remaining)]
        assert len(matching) <= 1, (remaining, matching)


def test_band_values_are_flag_names():
    assert [b.value for b in DeadlineBand] == ["day_7", "day_30", "day_60", "deadline_passed"]


def test_occurrence_key_shapes():
    med = OccurrenceKey.for_medication("med-1", date(2025, 11, 25), "08:00")
    dl = OccurrenceKey.for_deadline("claim-1", DeadlineBand.DAY_7)
    assert str(med) == "medication:med-1:2025-11-25:08:00"
    assert str(dl) == "deadline:claim-1:day_7"
    assert med == OccurrenceKey.for_medication("med-1", date(2025, 11, 25), "08:00")


def test_occurrence_key_rejects_mixed_shape():
    with pytest.raises(ValidationError):
        OccurrenceKey(kind=OccurrenceKind.DEADLINE, source_id="c", band=DeadlineBand.DAY_7,
                      occurrence_date=date(2025, 1, 1))
    with pytest.raises(ValidationError):
        OccurrenceKey(kind=OccurrenceKind.MEDICATION, source_id="m", occurrence_date=date(2025, 1, 1))


def test_occurrence_key_is_immutable():
    key = OccurrenceKey.for_deadline("claim-1", DeadlineBand.DAY_30)
    with pytest.raises(ValidationError):
        key.source_id = "claim-2"


def _schedule(**overrides) -> dict:
    data = {
        "id": "med-1",
        "recipient": {"id": "user-1", "phone": "+15555550100"},
        "timezone": "America/Los_Angeles",
        "start_date": "2025-11-01",
        "reminder_times": ["08:00", "20:00"],
    }
    data.update(overrides)
    return data


def test_schedule_from_time_list():
    schedule = ReminderSchedule.model_validate(_schedule())
    assert schedule.times == ["08:00", "20:00"]
    assert schedule.recurrence.type == "daily"


def test_schedule_from_recurrence_object():
    schedule = ReminderSchedule.model_validate(
        _schedule(reminder_times={"type": "weekly", "time": "09:30", "dayOfWeek": 1})
    )
    assert schedule.times == ["09:30"]
    assert schedule.recurrence.type == "weekly"
    assert schedule.recurrence.day_of_week == 1


def test_schedule_weekly_needs_day():
    with pytest.raises(ValidationError):
        ReminderSchedule.model_validate(_schedule(reminder_times={"type": "weekly", "time": "09:30"}))


def test_schedule_window_and_times_checked():
    with pytest.raises(ValidationError):
        ReminderSchedule.model_validate(_schedule(start_date="2025-12-01", end_date="2025-11-01"))
    with pytest.raises(ValidationError):
        ReminderSchedule.model_validate(_schedule(reminder_times=[]))
    with pytest.raises(ValidationError):
        ReminderSchedule.model_validate(_schedule(reminder_times="08:00"))


def test_schedule_keeps_non_string_times_for_evaluation():
    schedule = ReminderSchedule.model_validate(_schedule(reminder_times=["08:00", 2000]))
    assert schedule.times == ["08:00", 2000]


def test_as_needed_schedule_may_have_no_times():
    schedule = ReminderSchedule.model_validate(_schedule(reminder_times={"type": "as_needed"}))
    assert schedule.times == []


def test_schedule_activity_window():
    schedule = ReminderSchedule.model_validate(_schedule(end_date="2025-11-30"))
    assert not schedule.is_active_on(date(2025, 10, 31))
    assert schedule.is_active_on(date(2025, 11, 1))
    assert schedule.is_active_on(date(2025, 11, 30))
    assert not schedule.is_active_on(date(2025, 12, 1))


def test_deadline_watch_dates():
    watch = DeadlineWatch(
        id="claim-1",
        recipient=Recipient(id="user-1", email="a@example.test"),
        reference_date=date(2025, 1, 1),
        window_days=90,
        sent_flags=None,
    )
    assert watch.deadline == date(2025, 4, 1)
    assert watch.remaining_days(date(2025, 3, 25)) == 7
    assert watch.remaining_days(date(2025, 4, 3)) == -2
    assert watch.sent_flags == {}


@pytest.mark.parametrize(
    "recipient, sms, email",
    [
        (Recipient(id="u", phone="+1555", email="a@b.c"), True, True),
        (Recipient(id="u", phone="+1555", sms_opt_in=False), False, False),
        (Recipient(id="u", phone=None, email=""), False, False),
    ],
)
def test_recipient_reachability(recipient, sms, email):
    assert recipient.can_receive_sms is sms
    assert recipient.can_receive_email is email


def test_due_occurrence_payload_restores_fragment_type():
    occurrence = DueOccurrence(
        key=OccurrenceKey.for_deadline("claim-1", DeadlineBand.PASSED),
        recipient_id="user-1",
        channel="email",
        address="a@example.test",
        fragment=DeadlineFragment(
            pet_name="Bo",
            service_date=date(2025, 1, 1),
            deadline=date(2025, 4, 1),
            days_remaining=0,
            band=DeadlineBand.PASSED,
        ),
    )
    restored = DueOccurrence.model_validate(occurrence.model_dump(mode="json"))
    assert isinstance(restored.fragment, DeadlineFragment)
    assert restored.occurrence_key == "deadline:claim-1:deadline_passed"
    assert not isinstance(restored.fragment, MedicationFragment)
