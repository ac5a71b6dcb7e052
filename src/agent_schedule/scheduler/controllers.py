"""Controllers for scheduler CLI commands."""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from agent_schedule.config import Settings
from agent_schedule.logging_config import setup_logging
from agent_schedule.scheduler.backend import ClaudeCliBackend
from agent_schedule.scheduler.errors import JobNotFoundError, McpServerNotFoundError
from agent_schedule.scheduler.models import Job, McpServer, McpServerType
from agent_schedule.scheduler.repository import JobRepository
from agent_schedule.scheduler.worker import Scheduler

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ServeCommand:
    """CLI input for the long-running scheduler."""

    db_path: Path | None
    tick_seconds: float | None = None
    once: bool = False


@dataclass(slots=True)
class JobAddCommand:
    """CLI input for job creation."""

    db_path: Path | None
    name: str
    prompt: str
    start_date: str
    interval_value: int
    interval_unit: str
    active: bool = True


@dataclass(slots=True)
class JobUpdateCommand:
    """CLI input for editing a job; ``None`` fields stay unchanged."""

    db_path: Path | None
    job_id: str
    name: str | None = None
    prompt: str | None = None
    start_date: str | None = None
    interval_value: int | None = None
    interval_unit: str | None = None


@dataclass(slots=True)
class JobListCommand:
    db_path: Path | None


@dataclass(slots=True)
class JobRefCommand:
    """CLI input for commands addressing a single job."""

    db_path: Path | None
    job_id: str


@dataclass(slots=True)
class JobSetMcpCommand:
    db_path: Path | None
    job_id: str
    server_ids: tuple[str, ...]


@dataclass(slots=True)
class JobAnswerCommand:
    db_path: Path | None
    job_id: str
    answer: str


@dataclass(slots=True)
class McpAddCommand:
    """CLI input for MCP server registration."""

    db_path: Path | None
    name: str
    server_type: str
    url: str = ""
    command: str = ""
    args: tuple[str, ...] = ()
    env: tuple[str, ...] = ()
    headers: tuple[str, ...] = ()


@dataclass(slots=True)
class McpUpdateCommand:
    """CLI input for editing an MCP server; empty options keep stored values."""

    db_path: Path | None
    server_id: str
    name: str | None = None
    server_type: str | None = None
    url: str | None = None
    command: str | None = None
    args: tuple[str, ...] = ()
    env: tuple[str, ...] = ()
    headers: tuple[str, ...] = ()


@dataclass(slots=True)
class McpListCommand:
    db_path: Path | None


@dataclass(slots=True)
class McpDeleteCommand:
    db_path: Path | None
    server_id: str


@dataclass(slots=True)
class SchedulerCliController:
    """Coordinates job, MCP server and scheduler CLI operations."""

    def serve(self, command: ServeCommand) -> list[str]:
        settings = _load_settings(command.db_path)
        if command.tick_seconds is not None:
            settings.scheduler.tick_interval_seconds = command.tick_seconds
            settings.validate()
        setup_logging(settings.logging.level)

        with _repository(settings) as repository:
            scheduler = _build_scheduler(settings, repository)
            if command.once:
                reset = scheduler.reset_stuck_jobs()
                started = scheduler.tick()
                return [f"Tick finished: reset={reset} executed={started}"]

            stop_requested = threading.Event()
            with _signal_handlers(stop_requested):
                scheduler.start()
                try:
                    while not stop_requested.wait(0.5):
                        pass
                finally:
                    scheduler.stop()
        return ["Scheduler stopped."]

    def add_job(self, command: JobAddCommand) -> list[str]:
        settings = _load_settings(command.db_path)
        with _repository(settings) as repository:
            job = repository.create_job(
                name=command.name,
                prompt=command.prompt,
                start_date=command.start_date,
                interval_value=command.interval_value,
                interval_unit=command.interval_unit,
                active=command.active,
            )
        return [
            f"Job created: job_id={job.job_id} name={job.name} "
            f"every={job.interval_value} {job.interval_unit} start={job.start_date or '-'}",
        ]

    def update_job(self, command: JobUpdateCommand) -> list[str]:
        settings = _load_settings(command.db_path)
        with _repository(settings) as repository:
            job = repository.update_job_definition(
                command.job_id,
                name=command.name,
                prompt=command.prompt,
                start_date=command.start_date,
                interval_value=command.interval_value,
                interval_unit=command.interval_unit,
            )
        return [
            f"Job updated: job_id={job.job_id} name={job.name} "
            f"every={job.interval_value} {job.interval_unit} start={job.start_date or '-'}",
        ]

    def set_job_active(self, command: JobRefCommand, *, active: bool) -> list[str]:
        """Pause (``active=False``) or resume a job's schedule."""

        settings = _load_settings(command.db_path)
        with _repository(settings) as repository:
            job = repository.update_job_definition(command.job_id, active=active)
        return [f"Job {'resumed' if job.active else 'paused'}: {job.job_id}"]

    def list_jobs(self, command: JobListCommand) -> list[str]:
        settings = _load_settings(command.db_path)
        with _repository(settings) as repository:
            jobs = repository.list_jobs()

        lines = [f"Jobs: {len(jobs)}"]
        for job in jobs:
            lines.append(
                f"  {job.job_id} name={job.name} status={job.status.value} "
                f"active={'yes' if job.active else 'no'} "
                f"every={job.interval_value} {job.interval_unit} "
                f"last_run={job.last_run or '-'} next_run={job.next_run or '-'}",
            )
        return lines

    def show_job(self, command: JobRefCommand) -> list[str]:
        settings = _load_settings(command.db_path)
        with _repository(settings) as repository:
            job = _require_job(repository, command.job_id)
            servers = repository.get_mcp_servers_for_job(job.job_id)
        return _job_lines(job, servers)

    def delete_job(self, command: JobRefCommand) -> list[str]:
        settings = _load_settings(command.db_path)
        with _repository(settings) as repository:
            repository.delete_job(command.job_id)
        return [f"Job deleted: {command.job_id}"]

    def list_runs(self, command: JobRefCommand) -> list[str]:
        settings = _load_settings(command.db_path)
        with _repository(settings) as repository:
            _require_job(repository, command.job_id)
            runs = repository.list_runs_for_job(command.job_id)

        lines = [f"Runs: {len(runs)}"]
        for run in runs:
            ended = run.ended_at.isoformat() if run.ended_at is not None else "-"
            lines.append(
                f"  {run.run_id} status={run.status.value} "
                f"started={run.started_at.isoformat()} ended={ended} "
                f"output_chars={len(run.output)}",
            )
        return lines

    def set_job_mcp(self, command: JobSetMcpCommand) -> list[str]:
        settings = _load_settings(command.db_path)
        with _repository(settings) as repository:
            repository.set_job_mcp_servers(command.job_id, command.server_ids)
        return [f"Job {command.job_id} MCP servers: {len(set(command.server_ids))}"]

    def run_job(self, command: JobRefCommand) -> list[str]:
        """Run a job now in this process and wait for it to finish."""

        settings = _load_settings(command.db_path)
        with _repository(settings) as repository:
            scheduler = _build_scheduler(settings, repository)
            scheduler.run_now(command.job_id)
            scheduler.wait_idle()
            job = _require_job(repository, command.job_id)
            servers = repository.get_mcp_servers_for_job(job.job_id)
        return _job_lines(job, servers)

    def answer_job(self, command: JobAnswerCommand) -> list[str]:
        settings = _load_settings(command.db_path)
        with _repository(settings) as repository:
            scheduler = _build_scheduler(settings, repository)
            scheduler.answer_question(command.job_id, command.answer)
            scheduler.wait_idle()
            job = _require_job(repository, command.job_id)
            servers = repository.get_mcp_servers_for_job(job.job_id)
        return _job_lines(job, servers)

    def add_mcp_server(self, command: McpAddCommand) -> list[str]:
        settings = _load_settings(command.db_path)
        server = McpServer(
            name=command.name,
            server_type=McpServerType(command.server_type),
            url=command.url,
            command=command.command,
            args=list(command.args),
            env=_parse_pairs(command.env, option="--env"),
            headers=_parse_pairs(command.headers, option="--header"),
        )
        with _repository(settings) as repository:
            created = repository.create_mcp_server(server)
        return [
            f"MCP server created: server_id={created.server_id} name={created.name} "
            f"type={created.server_type.value}",
        ]

    def update_mcp_server(self, command: McpUpdateCommand) -> list[str]:
        settings = _load_settings(command.db_path)
        with _repository(settings) as repository:
            server = repository.get_mcp_server(command.server_id)
            if server is None:
                raise McpServerNotFoundError(command.server_id)
            if command.name is not None:
                server.name = command.name
            if command.server_type is not None:
                server.server_type = McpServerType(command.server_type)
            if command.url is not None:
                server.url = command.url
            if command.command is not None:
                server.command = command.command
            if command.args:
                server.args = list(command.args)
            if command.env:
                server.env = _parse_pairs(command.env, option="--env")
            if command.headers:
                server.headers = _parse_pairs(command.headers, option="--header")
            repository.update_mcp_server(server)
        return [
            f"MCP server updated: server_id={server.server_id} name={server.name.strip()} "
            f"type={server.server_type.value}",
        ]

    def list_mcp_servers(self, command: McpListCommand) -> list[str]:
        settings = _load_settings(command.db_path)
        with _repository(settings) as repository:
            servers = repository.list_mcp_servers()

        lines = [f"MCP servers: {len(servers)}"]
        for server in servers:
            target = server.url if server.server_type is McpServerType.HTTP else server.command
            lines.append(
                f"  {server.server_id} name={server.name} "
                f"type={server.server_type.value} target={target}",
            )
        return lines

    def delete_mcp_server(self, command: McpDeleteCommand) -> list[str]:
        settings = _load_settings(command.db_path)
        with _repository(settings) as repository:
            repository.delete_mcp_server(command.server_id)
        return [f"MCP server deleted: {command.server_id}"]


def _load_settings(db_path: Path | None) -> Settings:
    settings = Settings.from_env(db_path=db_path)
    settings.validate()
    return settings


def _build_scheduler(settings: Settings, repository: JobRepository) -> Scheduler:
    return Scheduler(
        store=repository,
        backend=ClaudeCliBackend(settings.agent),
        tick_interval_seconds=settings.scheduler.tick_interval_seconds,
        emit=lambda event_name: logger.debug("Change signal: %s", event_name),
    )


def _require_job(repository: JobRepository, job_id: str) -> Job:
    job = repository.get_job(job_id)
    if job is None:
        raise JobNotFoundError(job_id)
    return job


def _job_lines(job: Job, servers: list[McpServer]) -> list[str]:
    lines = [
        f"Job: {job.job_id}",
        f"Name: {job.name}",
        f"Status: {job.status.value}",
        f"Active: {'yes' if job.active else 'no'}",
        f"Schedule: every {job.interval_value} {job.interval_unit} "
        f"from {job.start_date or '-'}",
        f"Last run: {job.last_run or '-'}",
        f"Next run: {job.next_run or '-'}",
        f"MCP servers: {', '.join(server.name for server in servers) or '-'}",
        f"Pending question: {job.pending_question or '-'}",
        f"Prompt: {job.prompt}",
    ]
    if job.output:
        lines.append("Output:")
        lines.append(job.output)
    return lines


def _parse_pairs(values: tuple[str, ...], *, option: str) -> dict[str, str]:
    pairs: dict[str, str] = {}
    for value in values:
        key, separator, item = value.partition("=")
        if not separator or not key.strip():
            raise ValueError(f"{option} expects KEY=VALUE, got: {value}")
        pairs[key.strip()] = item
    return pairs


@contextmanager
def _repository(settings: Settings) -> Iterator[JobRepository]:
    repository = JobRepository(
        db_path=settings.db_path,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()


@contextmanager
def _signal_handlers(stop_requested: threading.Event) -> Iterator[None]:
    if threading.current_thread() is not threading.main_thread():
        # Signal handlers can only be installed in main thread.
        yield
        return

    original_sigint = signal.getsignal(signal.SIGINT)
    original_sigterm = signal.getsignal(signal.SIGTERM)

    def _handler(signum: int, _: object | None) -> None:
        try:
            name = signal.Signals(signum).name
        except ValueError:
            name = str(signum)
        logger.info("Received %s, stopping scheduler", name)
        stop_requested.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, original_sigint)
        signal.signal(signal.SIGTERM, original_sigterm)
