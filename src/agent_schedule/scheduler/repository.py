"""SQLite job store backed by SQLModel."""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Sequence
from pathlib import Path
from typing import Any
from uuid import uuid4

from sqlalchemy import delete as sa_delete
from sqlalchemy import update as sa_update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from agent_schedule.scheduler.due import MAX_INTERVAL, interval_duration
from agent_schedule.scheduler.errors import JobNotFoundError, McpServerNotFoundError
from agent_schedule.scheduler.models import (
    IntervalUnit,
    Job,
    JobRun,
    JobStatus,
    McpServer,
    McpServerType,
)
from agent_schedule.storage.alembic_runner import upgrade_head
from agent_schedule.storage.common import (
    build_sqlite_engine,
    from_iso,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from agent_schedule.storage.sqlmodel_models import (
    JobMcpServerRow,
    JobRow,
    JobRunRow,
    McpServerRow,
)

logger = logging.getLogger(__name__)

MAX_RUNS_PER_JOB = 10
MAX_OUTPUT_BYTES = 100 * 1024
TRUNCATION_MARKER = "\n\n[truncated]"
RESTART_INTERRUPTED_MESSAGE = "interrupted: app was restarted"


def truncate_output(text: str) -> str:
    """Cap ``text`` at ``MAX_OUTPUT_BYTES`` of UTF-8, marking the cut."""

    encoded = text.encode("utf-8")
    if len(encoded) <= MAX_OUTPUT_BYTES:
        return text
    return encoded[:MAX_OUTPUT_BYTES].decode("utf-8", errors="ignore") + TRUNCATION_MARKER


class JobRepository:
    """Job, run and MCP server persistence facade.

    Writes go through one lock so concurrent scheduler threads never contend
    for the SQLite write lock inside this process.
    """

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine: Engine = build_sqlite_engine(
            db_path=db_path,
            busy_timeout_ms=sqlite_busy_timeout_ms,
        )
        self._write_lock = threading.RLock()

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    # Jobs

    def create_job(  # noqa: PLR0913
        self,
        *,
        name: str,
        prompt: str,
        start_date: str = "",
        interval_value: int = 1,
        interval_unit: str = IntervalUnit.HOURS.value,
        active: bool = True,
    ) -> Job:
        """Create a pending job after validating its schedule."""

        name, start_date, unit = _validate_definition(
            name=name,
            start_date=start_date,
            interval_value=interval_value,
            interval_unit=interval_unit,
        )

        now = utc_now()
        row = JobRow(
            job_id=str(uuid4()),
            name=name,
            prompt=prompt,
            start_date=start_date,
            interval_value=interval_value,
            interval_unit=unit.value,
            active=active,
            status=JobStatus.PENDING.value,
            created_at=now,
            updated_at=now,
        )
        with self._write_lock, Session(self.engine) as session:
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_job(row)

    def list_jobs(self) -> list[Job]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(JobRow).order_by(col(JobRow.created_at).asc(), col(JobRow.name).asc()),
            ).all()
            return [_to_job(row) for row in rows]

    def get_job(self, job_id: str) -> Job | None:
        with Session(self.engine) as session:
            row = session.get(JobRow, job_id)
            return _to_job(row) if row is not None else None

    def update_job(self, job: Job) -> None:
        """Persist the run state of ``job`` (status, output, schedule stamps, question).

        Definition fields are left alone so an edit made while the job runs
        is not overwritten when the run finishes; use ``update_job_definition``.
        """

        with self._write_lock, Session(self.engine) as session:
            row = session.get(JobRow, job.job_id)
            if row is None:
                raise JobNotFoundError(job.job_id)
            row.status = JobStatus(job.status).value
            row.output = truncate_output(job.output)
            row.last_run = job.last_run
            row.next_run = job.next_run
            row.pending_question = job.pending_question
            row.updated_at = utc_now()
            session.add(row)
            session.commit()

    def update_job_definition(  # noqa: PLR0913
        self,
        job_id: str,
        *,
        name: str | None = None,
        prompt: str | None = None,
        start_date: str | None = None,
        interval_value: int | None = None,
        interval_unit: str | None = None,
        active: bool | None = None,
    ) -> Job:
        """Edit the given definition fields of a job; ``None`` keeps the stored value."""

        with self._write_lock, Session(self.engine) as session:
            row = session.get(JobRow, job_id)
            if row is None:
                raise JobNotFoundError(job_id)
            row.name, row.start_date, unit = _validate_definition(
                name=row.name if name is None else name,
                start_date=row.start_date if start_date is None else start_date,
                interval_value=row.interval_value if interval_value is None else interval_value,
                interval_unit=row.interval_unit if interval_unit is None else interval_unit,
            )
            row.interval_unit = unit.value
            if interval_value is not None:
                row.interval_value = interval_value
            if prompt is not None:
                row.prompt = prompt
            if active is not None:
                row.active = active
            row.updated_at = utc_now()
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_job(row)

    def delete_job(self, job_id: str) -> None:
        """Delete a job together with its runs and MCP associations."""

        with self._write_lock, Session(self.engine) as session:
            row = session.get(JobRow, job_id)
            if row is None:
                raise JobNotFoundError(job_id)
            session.delete(row)
            session.commit()

    def reset_stuck_running_jobs(self) -> int:
        """Fail jobs left ``running`` by a previous process; return how many."""

        now = to_db_datetime(utc_now())
        with self._write_lock, Session(self.engine) as session:
            result = session.exec(
                sa_update(JobRow)
                .where(col(JobRow.status) == JobStatus.RUNNING.value)
                .values(
                    status=JobStatus.FAILED.value,
                    output=RESTART_INTERRUPTED_MESSAGE,
                    pending_question="",
                    updated_at=now,
                ),
            )
            session.exec(
                sa_update(JobRunRow)
                .where(col(JobRunRow.status) == JobStatus.RUNNING.value)
                .values(
                    status=JobStatus.FAILED.value,
                    output=RESTART_INTERRUPTED_MESSAGE,
                    pending_question="",
                    ended_at=now,
                ),
            )
            session.commit()
            return int(result.rowcount or 0)

    # Runs

    def create_run(self, run: JobRun) -> JobRun:
        """Insert ``run``; assigns ``run_id`` when empty."""

        run_id = run.run_id or str(uuid4())
        with self._write_lock, Session(self.engine) as session:
            row = JobRunRow(
                run_id=run_id,
                job_id=run.job_id,
                started_at=to_db_datetime(run.started_at),
                ended_at=to_db_datetime(run.ended_at) if run.ended_at is not None else None,
                status=JobStatus(run.status).value,
                output=truncate_output(run.output),
                pending_question=run.pending_question,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_run(row)

    def update_run(self, run: JobRun) -> None:
        with self._write_lock, Session(self.engine) as session:
            row = session.get(JobRunRow, run.run_id)
            if row is None:
                raise LookupError(f"run not found: {run.run_id}")
            row.status = JobStatus(run.status).value
            row.output = truncate_output(run.output)
            row.pending_question = run.pending_question
            row.ended_at = to_db_datetime(run.ended_at) if run.ended_at is not None else None
            session.add(row)
            session.commit()

    def get_latest_run(self, job_id: str) -> JobRun | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(JobRunRow)
                .where(JobRunRow.job_id == job_id)
                .order_by(col(JobRunRow.started_at).desc())
                .limit(1),
            ).one_or_none()
            return _to_run(row) if row is not None else None

    def list_runs_for_job(self, job_id: str) -> list[JobRun]:
        """Return retained runs, newest first."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(JobRunRow)
                .where(JobRunRow.job_id == job_id)
                .order_by(col(JobRunRow.started_at).desc())
                .limit(MAX_RUNS_PER_JOB),
            ).all()
            return [_to_run(row) for row in rows]

    def prune_runs(self, job_id: str) -> int:
        """Keep only the newest ``MAX_RUNS_PER_JOB`` runs of a job."""

        with self._write_lock, Session(self.engine) as session:
            stale_ids = session.exec(
                select(JobRunRow.run_id)
                .where(JobRunRow.job_id == job_id)
                .order_by(col(JobRunRow.started_at).desc())
                .offset(MAX_RUNS_PER_JOB),
            ).all()
            if not stale_ids:
                return 0
            session.exec(sa_delete(JobRunRow).where(col(JobRunRow.run_id).in_(stale_ids)))
            session.commit()
            return len(stale_ids)

    # MCP servers

    def list_mcp_servers(self) -> list[McpServer]:
        with Session(self.engine) as session:
            rows = session.exec(select(McpServerRow).order_by(col(McpServerRow.name).asc())).all()
            return [_to_mcp_server(row) for row in rows]

    def get_mcp_server(self, server_id: str) -> McpServer | None:
        with Session(self.engine) as session:
            row = session.get(McpServerRow, server_id)
            return _to_mcp_server(row) if row is not None else None

    def create_mcp_server(self, server: McpServer) -> McpServer:
        _validate_mcp_server(server)
        row = McpServerRow(server_id=server.server_id or str(uuid4()))
        _fill_mcp_row(row, server)
        with self._write_lock, Session(self.engine) as session:
            session.add(row)
            _commit_unique_name(session, server.name)
            session.refresh(row)
            return _to_mcp_server(row)

    def update_mcp_server(self, server: McpServer) -> None:
        _validate_mcp_server(server)
        with self._write_lock, Session(self.engine) as session:
            row = session.get(McpServerRow, server.server_id)
            if row is None:
                raise McpServerNotFoundError(server.server_id)
            _fill_mcp_row(row, server)
            session.add(row)
            _commit_unique_name(session, server.name)

    def delete_mcp_server(self, server_id: str) -> None:
        with self._write_lock, Session(self.engine) as session:
            row = session.get(McpServerRow, server_id)
            if row is None:
                raise McpServerNotFoundError(server_id)
            session.delete(row)
            session.commit()

    def get_mcp_servers_for_job(self, job_id: str) -> list[McpServer]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(McpServerRow)
                .join(JobMcpServerRow, col(JobMcpServerRow.server_id) == McpServerRow.server_id)
                .where(JobMcpServerRow.job_id == job_id)
                .order_by(col(McpServerRow.name).asc()),
            ).all()
            return [_to_mcp_server(row) for row in rows]

    def set_job_mcp_servers(self, job_id: str, server_ids: Sequence[str]) -> None:
        """Replace the job's MCP server associations."""

        unique_ids = list(dict.fromkeys(server_ids))
        with self._write_lock, Session(self.engine) as session:
            if session.get(JobRow, job_id) is None:
                raise JobNotFoundError(job_id)
            for server_id in unique_ids:
                if session.get(McpServerRow, server_id) is None:
                    raise McpServerNotFoundError(server_id)
            session.exec(sa_delete(JobMcpServerRow).where(col(JobMcpServerRow.job_id) == job_id))
            for server_id in unique_ids:
                session.add(JobMcpServerRow(job_id=job_id, server_id=server_id))
            session.commit()


def _validate_definition(
    *,
    name: str,
    start_date: str,
    interval_value: int,
    interval_unit: str,
) -> tuple[str, str, IntervalUnit]:
    name = name.strip()
    if not name:
        raise ValueError("job name is required")
    if interval_value <= 0:
        raise ValueError("interval value must be > 0")
    unit = _parse_interval_unit(interval_unit)
    if interval_duration(interval_value, unit.value) > MAX_INTERVAL:
        raise ValueError(f"interval must not exceed {MAX_INTERVAL.days} days")
    start_date = start_date.strip()
    if start_date:
        try:
            from_iso(start_date)
        except ValueError as error:
            raise ValueError(f"invalid start date: {start_date}") from error
    return name, start_date, unit


def _parse_interval_unit(value: str) -> IntervalUnit:
    try:
        return IntervalUnit(value.strip().lower())
    except ValueError as error:
        allowed = ", ".join(unit.value for unit in IntervalUnit)
        raise ValueError(f"interval unit must be one of: {allowed}") from error


def _validate_mcp_server(server: McpServer) -> None:
    if not server.name.strip():
        raise ValueError("mcp server name is required")
    try:
        server_type = McpServerType(server.server_type)
    except ValueError as error:
        raise ValueError("mcp server type must be http or stdio") from error
    if server_type is McpServerType.HTTP and not server.url.strip():
        raise ValueError("url is required for http servers")
    if server_type is McpServerType.STDIO and not server.command.strip():
        raise ValueError("command is required for stdio servers")


def _fill_mcp_row(row: McpServerRow, server: McpServer) -> None:
    row.name = server.name.strip()
    row.server_type = McpServerType(server.server_type).value
    row.url = server.url.strip()
    row.command = server.command.strip()
    row.args = json.dumps(list(server.args))
    row.env = json.dumps(dict(server.env), sort_keys=True)
    row.headers = json.dumps(dict(server.headers), sort_keys=True)


def _commit_unique_name(session: Session, name: str) -> None:
    try:
        session.commit()
    except IntegrityError as error:
        session.rollback()
        raise ValueError(f"mcp server name already exists: {name.strip()}") from error


def _to_job(row: JobRow) -> Job:
    return Job(
        job_id=row.job_id,
        name=row.name,
        prompt=row.prompt,
        start_date=row.start_date,
        interval_value=row.interval_value,
        interval_unit=row.interval_unit,
        active=row.active,
        status=JobStatus(row.status),
        output=row.output,
        last_run=row.last_run,
        next_run=row.next_run,
        pending_question=row.pending_question,
    )


def _to_run(row: JobRunRow) -> JobRun:
    return JobRun(
        run_id=row.run_id,
        job_id=row.job_id,
        started_at=to_utc_aware_datetime(row.started_at),
        ended_at=to_utc_aware_datetime(row.ended_at) if row.ended_at is not None else None,
        status=JobStatus(row.status),
        output=row.output,
        pending_question=row.pending_question,
    )


def _to_mcp_server(row: McpServerRow) -> McpServer:
    return McpServer(
        server_id=row.server_id,
        name=row.name,
        server_type=McpServerType(row.server_type),
        url=row.url,
        command=row.command,
        args=[str(item) for item in _load_json(row.args, list, field="args", row=row)],
        env=_load_str_map(row.env, field="env", row=row),
        headers=_load_str_map(row.headers, field="headers", row=row),
    )


def _load_str_map(raw: str, *, field: str, row: McpServerRow) -> dict[str, str]:
    loaded = _load_json(raw, dict, field=field, row=row)
    return {str(key): str(value) for key, value in loaded.items()}


def _load_json(raw: str, expected: type, *, field: str, row: McpServerRow) -> Any:
    try:
        value = json.loads(raw or "null")
    except json.JSONDecodeError:
        value = None
    if isinstance(value, expected):
        return value
    if raw:
        logger.warning("Ignoring malformed %s for mcp server %s", field, row.name)
    return expected()
