"""Shared test fixtures."""

from __future__ import annotations

import json
import shlex
import sys
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from agent_schedule.config import AgentSettings
from agent_schedule.scheduler.repository import JobRepository

ECHO_AGENT_COMMAND = (sys.executable, "-m", "agent_schedule.scheduler.backend.echo_agent")


@pytest.fixture()
def echo_state(tmp_path: Path, monkeypatch) -> Path:
    """Point the echo agent at per-test session storage and argv log."""

    state_dir = tmp_path / "echo-sessions"
    monkeypatch.setenv("AGENT_SCHEDULE_ECHO_STATE_DIR", str(state_dir))
    monkeypatch.setenv("AGENT_SCHEDULE_ECHO_ARGV_LOG", str(tmp_path / "echo-argv.jsonl"))
    return state_dir


@pytest.fixture()
def agent_settings(echo_state: Path) -> AgentSettings:
    return AgentSettings(command=ECHO_AGENT_COMMAND, graceful_shutdown_seconds=1.0)


@pytest.fixture()
def echo_agent_env(echo_state: Path, monkeypatch) -> Path:
    """Make ``Settings.from_env`` launch the echo agent instead of claude."""

    monkeypatch.setenv(
        "AGENT_SCHEDULE_AGENT_COMMAND",
        " ".join(shlex.quote(part) for part in ECHO_AGENT_COMMAND),
    )
    return echo_state


@pytest.fixture()
def repository(tmp_path: Path) -> Iterator[JobRepository]:
    repo = JobRepository(tmp_path / "schedule.db")
    repo.init_schema()
    try:
        yield repo
    finally:
        repo.close()


@pytest.fixture()
def invocations(tmp_path: Path, echo_state: Path) -> Callable[[], list[dict]]:
    """Return a reader for the echo agent argv log."""

    log_path = tmp_path / "echo-argv.jsonl"

    def _read() -> list[dict]:
        if not log_path.exists():
            return []
        return [json.loads(line) for line in log_path.read_text("utf-8").splitlines() if line]

    return _read
