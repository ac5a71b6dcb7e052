"""Domain models for scheduled agent jobs and their runs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class JobStatus(str, Enum):
    """Job lifecycle states."""

    PENDING = "pending"
    RUNNING = "running"
    WAITING = "waiting"
    SUCCESS = "success"
    FAILED = "failed"


class IntervalUnit(str, Enum):
    """Supported schedule interval units."""

    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"
    WEEKS = "weeks"


class McpServerType(str, Enum):
    """Connection kinds understood by the agent's MCP config."""

    HTTP = "http"
    STDIO = "stdio"


@dataclass(slots=True)
class Job:
    """A recurring instruction executed by the agent.

    Schedule timestamps are kept as strings: ``start_date`` is whatever the
    user entered (ISO with offset or bare ``YYYY-MM-DDTHH:MM``), ``last_run``
    and ``next_run`` are written by the scheduler in ISO form.
    """

    job_id: str
    name: str
    prompt: str = ""
    start_date: str = ""
    interval_value: int = 1
    interval_unit: str = IntervalUnit.HOURS.value
    active: bool = True
    status: JobStatus = JobStatus.PENDING
    output: str = ""
    last_run: str = ""
    next_run: str = ""
    pending_question: str = ""


@dataclass(slots=True)
class JobRun:
    """One historical execution attempt of a job."""

    job_id: str
    started_at: datetime
    status: JobStatus = JobStatus.RUNNING
    run_id: str = ""
    ended_at: datetime | None = None
    output: str = ""
    pending_question: str = ""


@dataclass(slots=True)
class McpServer:
    """Tool-provider configuration made available to a job's invocation."""

    name: str
    server_type: McpServerType = McpServerType.HTTP
    server_id: str = ""
    url: str = ""
    command: str = ""
    args: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class ExecuteResult:
    """Rendered transcript plus the raw stdout lines it was built from."""

    transcript: str
    raw_lines: list[str] = field(default_factory=list)
