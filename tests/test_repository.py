from __future__ import annotations

from datetime import UTC, datetime, timedelta

import allure
import pytest
from sqlalchemy import text

from agent_schedule.scheduler.errors import JobNotFoundError, McpServerNotFoundError
from agent_schedule.scheduler.models import JobRun, JobStatus, McpServer, McpServerType
from agent_schedule.scheduler.repository import (
    MAX_OUTPUT_BYTES,
    MAX_RUNS_PER_JOB,
    RESTART_INTERRUPTED_MESSAGE,
    TRUNCATION_MARKER,
    JobRepository,
    truncate_output,
)

pytestmark = [
    allure.epic("Job Scheduling"),
    allure.feature("Job Store"),
]

STARTED = datetime(2026, 1, 1, 9, 0, tzinfo=UTC)


def _create_job(repository: JobRepository, **overrides):
    values = {
        "name": "digest",
        "prompt": "summarize the news",
        "start_date": "2026-01-01T09:00",
        "interval_value": 1,
        "interval_unit": "hours",
    }
    values.update(overrides)
    return repository.create_job(**values)


def test_create_job_assigns_id_and_pending_status(repository: JobRepository) -> None:
    job = _create_job(repository)

    assert len(job.job_id) == 36
    assert job.status is JobStatus.PENDING
    assert repository.get_job(job.job_id) == job
    assert [item.job_id for item in repository.list_jobs()] == [job.job_id]


@pytest.mark.parametrize(
    ("overrides", "message"),
    [
        ({"name": "  "}, "job name is required"),
        ({"interval_value": 0}, "interval value must be > 0"),
        ({"interval_unit": "years"}, "interval unit must be one of"),
        ({"start_date": "tomorrow"}, "invalid start date"),
        ({"interval_value": 600_000, "interval_unit": "weeks"}, "interval must not exceed"),
    ],
)
def test_create_job_validates_input(
    repository: JobRepository,
    overrides: dict,
    message: str,
) -> None:
    with pytest.raises(ValueError, match=message):
        _create_job(repository, **overrides)


def test_get_missing_job_returns_none(repository: JobRepository) -> None:
    assert repository.get_job("missing") is None
    with pytest.raises(JobNotFoundError):
        repository.delete_job("missing")


def test_update_job_definition_edits_given_fields(repository: JobRepository) -> None:
    job = _create_job(repository)

    updated = repository.update_job_definition(
        job.job_id,
        prompt="summarize the weather",
        interval_value=30,
        interval_unit="minutes",
        active=False,
    )

    assert updated.name == "digest"
    assert updated.prompt == "summarize the weather"
    assert updated.start_date == "2026-01-01T09:00"
    assert (updated.interval_value, updated.interval_unit) == (30, "minutes")
    assert updated.active is False
    assert repository.get_job(job.job_id) == updated


@pytest.mark.parametrize(
    ("changes", "message"),
    [
        ({"name": ""}, "job name is required"),
        ({"interval_value": 0}, "interval value must be > 0"),
        ({"interval_unit": "years"}, "interval unit must be one of"),
        ({"interval_value": 10**9}, "interval must not exceed"),
        ({"start_date": "soon"}, "invalid start date"),
    ],
)
def test_update_job_definition_validates_like_create(
    repository: JobRepository,
    changes: dict,
    message: str,
) -> None:
    job = _create_job(repository)

    with pytest.raises(ValueError, match=message):
        repository.update_job_definition(job.job_id, **changes)

    assert repository.get_job(job.job_id) == job


def test_update_job_definition_unknown_job(repository: JobRepository) -> None:
    with pytest.raises(JobNotFoundError):
        repository.update_job_definition("missing", active=False)


def test_run_state_write_keeps_concurrent_edit(repository: JobRepository) -> None:
    job = _create_job(repository)
    repository.update_job_definition(job.job_id, active=False, prompt="edited")

    job.status = JobStatus.SUCCESS
    job.output = "done"
    repository.update_job(job)

    stored = repository.get_job(job.job_id)
    assert stored is not None
    assert stored.status is JobStatus.SUCCESS
    assert stored.output == "done"
    assert stored.active is False
    assert stored.prompt == "edited"


def test_truncate_output_caps_utf8_size() -> None:
    assert truncate_output("short") == "short"

    truncated = truncate_output("é" * MAX_OUTPUT_BYTES)

    assert truncated.endswith(TRUNCATION_MARKER)
    body = truncated.removesuffix(TRUNCATION_MARKER)
    assert len(body.encode("utf-8")) <= MAX_OUTPUT_BYTES


def test_job_and_run_output_are_truncated(repository: JobRepository) -> None:
    job = _create_job(repository)
    job.output = "a" * (MAX_OUTPUT_BYTES + 10)
    repository.update_job(job)
    run = repository.create_run(
        JobRun(job_id=job.job_id, started_at=STARTED, output="b" * (MAX_OUTPUT_BYTES * 2)),
    )

    stored_job = repository.get_job(job.job_id)
    stored_run = repository.get_latest_run(job.job_id)
    assert stored_job is not None
    assert stored_run is not None
    assert stored_job.output == "a" * MAX_OUTPUT_BYTES + TRUNCATION_MARKER
    assert stored_run.run_id == run.run_id
    assert stored_run.output == "b" * MAX_OUTPUT_BYTES + TRUNCATION_MARKER


def test_prune_runs_keeps_newest(repository: JobRepository) -> None:
    job = _create_job(repository)
    run_ids = [
        repository.create_run(
            JobRun(
                job_id=job.job_id,
                started_at=STARTED + timedelta(minutes=index),
                status=JobStatus.SUCCESS,
                ended_at=STARTED + timedelta(minutes=index, seconds=30),
            ),
        ).run_id
        for index in range(MAX_RUNS_PER_JOB + 2)
    ]

    assert repository.prune_runs(job.job_id) == 2
    assert repository.prune_runs(job.job_id) == 0

    runs = repository.list_runs_for_job(job.job_id)
    assert [run.run_id for run in runs] == list(reversed(run_ids[2:]))
    assert runs[0].started_at == STARTED + timedelta(minutes=MAX_RUNS_PER_JOB + 1)


def test_latest_run_is_none_without_runs(repository: JobRepository) -> None:
    job = _create_job(repository)

    assert repository.get_latest_run(job.job_id) is None


def test_update_run_persists_terminal_state(repository: JobRepository) -> None:
    job = _create_job(repository)
    run = repository.create_run(JobRun(job_id=job.job_id, started_at=STARTED))

    run.status = JobStatus.WAITING
    run.pending_question = '{"questions":[]}'
    run.output = "transcript"
    repository.update_run(run)

    stored = repository.get_latest_run(job.job_id)
    assert stored is not None
    assert stored.status is JobStatus.WAITING
    assert stored.ended_at is None
    assert stored.pending_question == '{"questions":[]}'
    assert stored.started_at == STARTED


def test_reset_stuck_running_jobs(repository: JobRepository) -> None:
    running = _create_job(repository, name="running")
    waiting = _create_job(repository, name="waiting")
    running.status = JobStatus.RUNNING
    repository.update_job(running)
    waiting.status = JobStatus.WAITING
    waiting.pending_question = '{"questions":[{"question":"?"}]}'
    repository.update_job(waiting)
    repository.create_run(JobRun(job_id=running.job_id, started_at=STARTED))

    assert repository.reset_stuck_running_jobs() == 1

    reset_job = repository.get_job(running.job_id)
    assert reset_job is not None
    assert reset_job.status is JobStatus.FAILED
    assert reset_job.output == RESTART_INTERRUPTED_MESSAGE
    untouched = repository.get_job(waiting.job_id)
    assert untouched is not None
    assert untouched.status is JobStatus.WAITING
    run = repository.get_latest_run(running.job_id)
    assert run is not None
    assert run.status is JobStatus.FAILED
    assert run.ended_at is not None
    assert repository.reset_stuck_running_jobs() == 0


def test_delete_job_removes_runs(repository: JobRepository) -> None:
    job = _create_job(repository)
    repository.create_run(JobRun(job_id=job.job_id, started_at=STARTED))

    repository.delete_job(job.job_id)

    assert repository.get_job(job.job_id) is None
    assert repository.list_runs_for_job(job.job_id) == []


def test_mcp_server_crud_and_job_association(repository: JobRepository) -> None:
    job = _create_job(repository)
    docs = repository.create_mcp_server(
        McpServer(
            name="docs",
            server_type=McpServerType.HTTP,
            url="https://mcp.example.com",
            headers={"Authorization": "Bearer t"},
        ),
    )
    files = repository.create_mcp_server(
        McpServer(
            name="files",
            server_type=McpServerType.STDIO,
            command="npx",
            args=["-y", "server-files"],
            env={"ROOT": "/tmp"},
        ),
    )

    repository.set_job_mcp_servers(job.job_id, [files.server_id, docs.server_id])

    attached = repository.get_mcp_servers_for_job(job.job_id)
    assert [server.name for server in attached] == ["docs", "files"]
    assert attached[0].headers == {"Authorization": "Bearer t"}
    assert attached[1].args == ["-y", "server-files"]
    assert attached[1].env == {"ROOT": "/tmp"}

    files.url = ""
    files.command = "uvx"
    repository.update_mcp_server(files)
    updated = repository.get_mcp_server(files.server_id)
    assert updated is not None
    assert updated.command == "uvx"

    repository.delete_mcp_server(docs.server_id)
    assert [server.name for server in repository.get_mcp_servers_for_job(job.job_id)] == ["files"]

    repository.set_job_mcp_servers(job.job_id, [])
    assert repository.get_mcp_servers_for_job(job.job_id) == []


def test_mcp_server_validation(repository: JobRepository) -> None:
    repository.create_mcp_server(
        McpServer(name="docs", server_type=McpServerType.HTTP, url="https://a.example.com"),
    )

    with pytest.raises(ValueError, match="already exists"):
        repository.create_mcp_server(
            McpServer(name="docs", server_type=McpServerType.HTTP, url="https://b.example.com"),
        )
    with pytest.raises(ValueError, match="url is required"):
        repository.create_mcp_server(McpServer(name="web", server_type=McpServerType.HTTP))
    with pytest.raises(ValueError, match="command is required"):
        repository.create_mcp_server(McpServer(name="local", server_type=McpServerType.STDIO))
    with pytest.raises(ValueError, match="name is required"):
        repository.create_mcp_server(McpServer(name=" ", url="https://c.example.com"))


def test_set_job_mcp_servers_rejects_unknown_ids(repository: JobRepository) -> None:
    job = _create_job(repository)

    with pytest.raises(McpServerNotFoundError):
        repository.set_job_mcp_servers(job.job_id, ["missing"])
    with pytest.raises(JobNotFoundError):
        repository.set_job_mcp_servers("missing", [])


def test_malformed_mcp_json_falls_back_to_empty(repository: JobRepository) -> None:
    server = repository.create_mcp_server(
        McpServer(name="files", server_type=McpServerType.STDIO, command="npx", args=["x"]),
    )
    with repository.engine.begin() as connection:
        connection.execute(
            text("UPDATE mcp_servers SET args = 'not json', env = '[]' WHERE server_id = :id"),
            {"id": server.server_id},
        )

    loaded = repository.get_mcp_server(server.server_id)

    assert loaded is not None
    assert loaded.args == []
    assert loaded.env == {}
