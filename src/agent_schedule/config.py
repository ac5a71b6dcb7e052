"""Runtime configuration for the scheduler and the agent CLI backend."""

from __future__ import annotations

import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_SYSTEM_PROMPT_APPEND = (
    "You have access to WebSearch and WebFetch tools. Use them whenever the task requires "
    "current or real-time information such as weather, news, prices, or live data. Do not "
    "tell the user to check a website themselves - use your tools to fetch the information "
    "directly."
)
DEFAULT_ALLOWED_TOOLS: tuple[str, ...] = ("Bash", "Read", "Write", "Edit", "WebFetch", "WebSearch")
DEFAULT_MAX_LINE_BYTES = 10 * 1024 * 1024


@dataclass(slots=True)
class AgentSettings:
    """How the agent CLI is invoked for every job run."""

    command: tuple[str, ...] = ("claude",)
    output_format: str = "stream-json"
    verbose: bool = True
    skip_permissions: bool = True
    system_prompt_append: str = DEFAULT_SYSTEM_PROMPT_APPEND
    allowed_tools: tuple[str, ...] = DEFAULT_ALLOWED_TOOLS
    fresh_session_flag: str | None = "--session-id"
    max_line_bytes: int = DEFAULT_MAX_LINE_BYTES
    graceful_shutdown_seconds: float = 5.0
    debug_dir: Path | None = None

    def base_args(self) -> list[str]:
        """Flags shared by every invocation, before the allowed-tools list."""

        args = ["--output-format", self.output_format]
        if self.verbose:
            args.append("--verbose")
        if self.skip_permissions:
            args.append("--dangerously-skip-permissions")
        if self.system_prompt_append:
            args.extend(["--append-system-prompt", self.system_prompt_append])
        return args


@dataclass(slots=True)
class SchedulerSettings:
    """Tick loop settings."""

    tick_interval_seconds: float = 60.0


@dataclass(slots=True)
class LoggingSettings:
    """Console logging settings."""

    level: str = "INFO"


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    db_path: Path = Path(".agent_schedule.db")
    sqlite_busy_timeout_ms: int = 5_000
    scheduler: SchedulerSettings = field(default_factory=SchedulerSettings)
    agent: AgentSettings = field(default_factory=AgentSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local use."""

        debug_dir = os.getenv("AGENT_SCHEDULE_DEBUG_DIR", "").strip()
        return cls(
            db_path=db_path or Path(os.getenv("AGENT_SCHEDULE_DB_PATH", ".agent_schedule.db")),
            sqlite_busy_timeout_ms=int(os.getenv("AGENT_SCHEDULE_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            scheduler=SchedulerSettings(
                tick_interval_seconds=float(
                    os.getenv("AGENT_SCHEDULE_TICK_INTERVAL_SECONDS", "60"),
                ),
            ),
            agent=AgentSettings(
                command=tuple(shlex.split(os.getenv("AGENT_SCHEDULE_AGENT_COMMAND", "claude"))),
                system_prompt_append=os.getenv(
                    "AGENT_SCHEDULE_SYSTEM_PROMPT_APPEND",
                    DEFAULT_SYSTEM_PROMPT_APPEND,
                ),
                allowed_tools=_collect_allowed_tools(),
                fresh_session_flag=os.getenv("AGENT_SCHEDULE_FRESH_SESSION_FLAG", "--session-id")
                or None,
                max_line_bytes=int(
                    os.getenv("AGENT_SCHEDULE_MAX_LINE_BYTES", str(DEFAULT_MAX_LINE_BYTES)),
                ),
                graceful_shutdown_seconds=float(
                    os.getenv("AGENT_SCHEDULE_GRACEFUL_SHUTDOWN_SECONDS", "5"),
                ),
                debug_dir=Path(debug_dir) if debug_dir else None,
            ),
            logging=LoggingSettings(level=os.getenv("AGENT_SCHEDULE_LOG_LEVEL", "INFO")),
        )

    def validate(self) -> None:
        """Raise configuration error for values the engine cannot run with."""

        if self.scheduler.tick_interval_seconds <= 0:
            raise ValueError("AGENT_SCHEDULE_TICK_INTERVAL_SECONDS must be > 0.")
        if not self.agent.command:
            raise ValueError("AGENT_SCHEDULE_AGENT_COMMAND must not be empty.")
        if self.agent.max_line_bytes <= 0:
            raise ValueError("AGENT_SCHEDULE_MAX_LINE_BYTES must be > 0.")
        if self.agent.graceful_shutdown_seconds < 0:
            raise ValueError("AGENT_SCHEDULE_GRACEFUL_SHUTDOWN_SECONDS must be >= 0.")
        if self.sqlite_busy_timeout_ms <= 0:
            raise ValueError("AGENT_SCHEDULE_SQLITE_BUSY_TIMEOUT_MS must be > 0.")


def _collect_allowed_tools() -> tuple[str, ...]:
    raw = os.getenv("AGENT_SCHEDULE_ALLOWED_TOOLS", "").strip()
    if not raw:
        return DEFAULT_ALLOWED_TOOLS

    tools: list[str] = []
    seen: set[str] = set()
    for part in raw.split(","):
        tool = part.strip()
        if not tool or tool in seen:
            continue
        seen.add(tool)
        tools.append(tool)
    return tuple(tools)
