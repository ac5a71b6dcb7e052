"""Interval arithmetic and the per-tick due decision."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from agent_schedule.scheduler.models import IntervalUnit, Job, JobStatus
from agent_schedule.storage.common import from_iso

logger = logging.getLogger(__name__)

_UNIT_DURATIONS: dict[str, timedelta] = {
    IntervalUnit.MINUTES.value: timedelta(minutes=1),
    IntervalUnit.HOURS.value: timedelta(hours=1),
    IntervalUnit.DAYS.value: timedelta(days=1),
    IntervalUnit.WEEKS.value: timedelta(weeks=1),
}

# Upper bound for job intervals; schedule arithmetic must stay inside datetime range.
MAX_INTERVAL = timedelta(days=365 * 100)


def interval_duration(value: int, unit: str) -> timedelta:
    """Convert a stored interval to a duration; ``timedelta(0)`` means invalid."""

    step = _UNIT_DURATIONS.get(unit)
    if step is None or value <= 0:
        return timedelta(0)
    try:
        return step * value
    except OverflowError:
        return timedelta.max


def parse_reference_time(value: str) -> datetime:
    """Parse an ISO timestamp or the bare ``YYYY-MM-DDTHH:MM`` form (read as UTC)."""

    return from_iso(value.strip())


def is_due(job: Job, now: datetime) -> bool:
    """Return True when ``job`` should be executed at ``now``."""

    if not job.active:
        return False
    if job.status in (JobStatus.RUNNING, JobStatus.WAITING):
        return False

    interval = interval_duration(job.interval_value, job.interval_unit)
    if not interval:
        return False

    reference = job.last_run or job.start_date
    if not reference:
        return False

    try:
        reference_time = parse_reference_time(reference)
    except ValueError as error:
        logger.warning(
            "Cannot parse reference time %r for job %s: %s",
            reference,
            job.job_id,
            error,
        )
        return False

    try:
        return reference_time + interval <= now
    except OverflowError:
        logger.warning("Interval of job %s overflows the calendar; not scheduling", job.job_id)
        return False
