from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

import allure
import pytest

from agent_schedule.scheduler.due import interval_duration, is_due
from agent_schedule.scheduler.models import Job, JobStatus

pytestmark = [
    allure.epic("Job Scheduling"),
    allure.feature("Due Check"),
]

NOW = datetime(2026, 1, 1, 10, 0, tzinfo=UTC)


def _job(**overrides) -> Job:
    values = {
        "job_id": "job-1",
        "name": "digest",
        "prompt": "summarize",
        "start_date": "2026-01-01T09:00:00+00:00",
        "interval_value": 1,
        "interval_unit": "hours",
    }
    values.update(overrides)
    return Job(**values)


@pytest.mark.parametrize(
    ("value", "unit", "expected"),
    [
        (5, "minutes", timedelta(minutes=5)),
        (2, "hours", timedelta(hours=2)),
        (3, "days", timedelta(days=3)),
        (1, "weeks", timedelta(weeks=1)),
        (1, "years", timedelta(0)),
        (0, "hours", timedelta(0)),
        (-1, "days", timedelta(0)),
    ],
)
def test_interval_duration(value: int, unit: str, expected: timedelta) -> None:
    assert interval_duration(value, unit) == expected


def test_inactive_job_is_never_due() -> None:
    assert not is_due(_job(active=False, start_date="2020-01-01T00:00:00+00:00"), NOW)


@pytest.mark.parametrize("status", [JobStatus.RUNNING, JobStatus.WAITING])
def test_running_or_waiting_job_is_never_due(status: JobStatus) -> None:
    assert not is_due(_job(status=status, start_date="2020-01-01T00:00:00+00:00"), NOW)


@pytest.mark.parametrize("status", [JobStatus.PENDING, JobStatus.SUCCESS, JobStatus.FAILED])
def test_finished_states_are_eligible(status: JobStatus) -> None:
    assert is_due(_job(status=status), NOW)


def test_invalid_unit_is_not_due() -> None:
    assert not is_due(_job(interval_unit="fortnights", start_date="2020-01-01T00:00"), NOW)


def test_job_without_reference_time_is_not_due() -> None:
    assert not is_due(_job(start_date="", last_run=""), NOW)


def test_exact_boundary_is_due() -> None:
    job = _job(
        start_date="",
        last_run="2026-01-01T09:55:00+00:00",
        interval_value=5,
        interval_unit="minutes",
    )

    assert is_due(job, NOW)
    assert not is_due(job, NOW - timedelta(seconds=1))


def test_last_run_takes_precedence_over_start_date() -> None:
    job = _job(start_date="2020-01-01T00:00:00+00:00", last_run="2026-01-01T09:30:00+00:00")

    assert not is_due(job, NOW)
    assert is_due(job, NOW + timedelta(minutes=30))


def test_future_start_date_is_not_due() -> None:
    assert not is_due(_job(start_date="2026-01-01T09:30:00+00:00"), NOW)


def test_bare_local_form_and_zulu_suffix_are_accepted() -> None:
    assert is_due(_job(start_date="2026-01-01T09:00"), NOW)
    assert is_due(_job(start_date="2026-01-01T09:00:00Z"), NOW)
    assert not is_due(_job(start_date="2026-01-01T09:01"), NOW)


def test_offset_is_honored() -> None:
    # 11:00+02:00 is 09:00 UTC
    assert is_due(_job(start_date="2026-01-01T11:00:00+02:00"), NOW)


def test_unparsable_reference_is_not_due(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING, logger="agent_schedule.scheduler.due"):
        assert not is_due(_job(start_date="next tuesday"), NOW)

    assert "Cannot parse reference time" in caplog.text


def test_five_minute_job_runs_every_five_minutes() -> None:
    job = _job(interval_value=5, interval_unit="minutes", start_date="2026-01-01T10:00:00+00:00")

    assert not is_due(job, NOW + timedelta(minutes=4, seconds=59))
    assert is_due(job, NOW + timedelta(minutes=5))

    job.last_run = (NOW + timedelta(minutes=5)).isoformat()
    assert not is_due(job, NOW + timedelta(minutes=9))
    assert is_due(job, NOW + timedelta(minutes=10))


def test_interval_beyond_timedelta_range_saturates() -> None:
    assert interval_duration(10**12, "weeks") == timedelta.max


def test_overflowing_interval_is_not_due(caplog: pytest.LogCaptureFixture) -> None:
    job = _job(interval_value=600_000, interval_unit="weeks")

    with caplog.at_level(logging.WARNING, logger="agent_schedule.scheduler.due"):
        assert is_due(job, NOW) is False

    assert "overflows the calendar" in caplog.text
