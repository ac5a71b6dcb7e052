"""Subprocess-based backend runner for the agent CLI."""

from __future__ import annotations

import logging
import signal
import subprocess
import threading
from collections.abc import Sequence
from pathlib import Path
from typing import IO

from agent_schedule.config import AgentSettings
from agent_schedule.scheduler.backend.base import (
    AgentRunError,
    AgentSpawnError,
    McpConfigError,
)
from agent_schedule.scheduler.backend.mcp_config import allowed_tool_patterns, mcp_config_file
from agent_schedule.scheduler.backend.transcript import build_transcript, extract_error
from agent_schedule.scheduler.models import ExecuteResult, Job, McpServer
from agent_schedule.storage.common import utc_now

__all__ = ["AgentRunError", "AgentSpawnError", "ClaudeCliBackend", "McpConfigError"]

logger = logging.getLogger(__name__)

_POLL_SECONDS = 0.1
_READER_JOIN_SECONDS = 5.0
_CREATION_FLAGS = getattr(subprocess, "CREATE_NO_WINDOW", 0)


class ClaudeCliBackend:
    """Run job prompts through the agent CLI and render its event stream."""

    def __init__(self, settings: AgentSettings | None = None) -> None:
        self._settings = settings or AgentSettings()

    @property
    def agent_name(self) -> str:
        return Path(self._settings.command[0]).name

    def execute(
        self,
        job: Job,
        mcp_servers: Sequence[McpServer],
        *,
        cancel_event: threading.Event | None = None,
    ) -> ExecuteResult:
        """Resume the job's conversation, or start it when none exists yet."""

        with mcp_config_file(mcp_servers) as config_path:
            args = self._build_args(job.prompt, mcp_servers, config_path)
            try:
                return self._invoke([*args, "--resume", job.job_id], cancel_event)
            except AgentSpawnError:
                raise
            except AgentRunError as error:
                if not error.session_missing:
                    raise
                logger.info("No conversation for job %s yet, starting a new one", job.job_id)

            fresh_args = list(args)
            if self._settings.fresh_session_flag:
                fresh_args.extend([self._settings.fresh_session_flag, job.job_id])
            return self._invoke(fresh_args, cancel_event)

    def answer(
        self,
        job: Job,
        mcp_servers: Sequence[McpServer],
        answer_text: str,
        *,
        cancel_event: threading.Event | None = None,
    ) -> ExecuteResult:
        with mcp_config_file(mcp_servers) as config_path:
            args = self._build_args(answer_text, mcp_servers, config_path)
            return self._invoke([*args, "--resume", job.job_id], cancel_event)

    def _build_args(
        self,
        prompt: str,
        mcp_servers: Sequence[McpServer],
        config_path: Path | None,
    ) -> list[str]:
        args = self._settings.base_args()
        tools = [*self._settings.allowed_tools, *allowed_tool_patterns(mcp_servers)]
        if tools:
            args.extend(["--allowedTools", ",".join(tools)])
        if config_path is not None:
            args.extend(["--mcp-config", str(config_path)])
        args.extend(["-p", prompt])
        return args

    def _invoke(self, args: list[str], cancel_event: threading.Event | None) -> ExecuteResult:
        command = [*self._settings.command, *args]
        returncode, lines, stderr, cancelled = self._run_process(command, cancel_event)
        self._dump_debug(lines)

        agent = self.agent_name
        if cancelled:
            raise AgentRunError(f"{agent}: run cancelled", stderr=stderr)
        if returncode != 0:
            raise _compose_failure(agent, returncode=returncode, lines=lines, stderr=stderr)
        if not lines:
            raise AgentRunError(f"empty response from {agent}", stderr=stderr)

        transcript = build_transcript(lines)
        if not transcript:
            logger.warning("%s produced no renderable events, storing raw output", agent)
            transcript = "\n".join(lines)
        return ExecuteResult(transcript=transcript, raw_lines=lines)

    def _run_process(
        self,
        command: list[str],
        cancel_event: threading.Event | None,
    ) -> tuple[int, list[str], str, bool]:
        try:
            process = subprocess.Popen(  # noqa: S603
                command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                creationflags=_CREATION_FLAGS,
            )
        except FileNotFoundError as error:
            raise AgentSpawnError(f"agent command not found: {command[0]}") from error
        except OSError as error:
            raise AgentSpawnError(f"agent failed to start: {error}") from error

        lines: list[str] = []
        stderr_chunks: list[bytes] = []
        readers = [
            threading.Thread(
                target=_read_lines,
                args=(process.stdout, lines, self._settings.max_line_bytes),
                daemon=True,
            ),
            threading.Thread(target=_read_all, args=(process.stderr, stderr_chunks), daemon=True),
        ]
        for reader in readers:
            reader.start()

        cancel = cancel_event or threading.Event()
        cancelled = False
        while process.poll() is None:
            if cancel.wait(_POLL_SECONDS):
                cancelled = True
                logger.info("Cancelling agent process %s", process.pid)
                _terminate_process(process, grace_seconds=self._settings.graceful_shutdown_seconds)
                break

        for reader in readers:
            reader.join(timeout=_READER_JOIN_SECONDS)
        returncode = process.wait()
        stderr = b"".join(stderr_chunks).decode("utf-8", errors="replace")
        return returncode, lines, stderr, cancelled

    def _dump_debug(self, lines: list[str]) -> None:
        debug_dir = self._settings.debug_dir
        if debug_dir is None:
            return
        path = debug_dir / utc_now().strftime("run-%Y%m%d-%H%M%S-%f.jsonl")
        try:
            debug_dir.mkdir(parents=True, exist_ok=True)
            path.write_text("".join(f"{line}\n" for line in lines), "utf-8")
        except OSError as error:
            logger.warning("Cannot write agent debug output to %s: %s", path, error)


def _compose_failure(
    agent: str,
    *,
    returncode: int,
    lines: list[str],
    stderr: str,
) -> AgentRunError:
    message = extract_error(lines)
    if message:
        return AgentRunError(message, stderr=stderr)

    parts = [part for part in (stderr.strip(), "\n".join(lines).strip()) if part]
    if parts:
        return AgentRunError(f"{agent}: " + "\n".join(parts), stderr=stderr)
    return AgentRunError(f"{agent}: {_describe_exit(returncode)}", stderr=stderr)


def _describe_exit(returncode: int) -> str:
    if returncode < 0:
        try:
            name = signal.Signals(-returncode).name
        except ValueError:
            name = str(-returncode)
        return f"terminated by signal {name}"
    return f"exit status {returncode}"


def _read_lines(stream: IO[bytes], lines: list[str], max_line_bytes: int) -> None:
    """Collect stdout lines, skipping any line longer than ``max_line_bytes``."""

    with stream:
        while True:
            raw = stream.readline(max_line_bytes + 1)
            if not raw:
                return
            if len(raw) > max_line_bytes and not raw.endswith(b"\n"):
                skipped = len(raw)
                while raw and not raw.endswith(b"\n"):
                    raw = stream.readline(max_line_bytes + 1)
                    skipped += len(raw)
                logger.warning("Skipped agent output line of %d bytes", skipped)
                continue
            line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            if line.strip():
                lines.append(line)


def _read_all(stream: IO[bytes], chunks: list[bytes]) -> None:
    with stream:
        chunks.append(stream.read())


def _terminate_process(process: subprocess.Popen[bytes], *, grace_seconds: float) -> None:
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=max(grace_seconds, 0.1))
    except subprocess.TimeoutExpired:
        try:
            process.kill()
        except OSError:
            return
        process.wait(timeout=2)
