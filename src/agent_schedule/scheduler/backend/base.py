"""Backend interface for agent job execution."""

from __future__ import annotations

import threading
from collections.abc import Sequence
from typing import Protocol

from agent_schedule.scheduler.models import ExecuteResult, Job, McpServer

SESSION_MISSING_MARKER = "No conversation found"


class AgentRunError(RuntimeError):
    """Agent invocation failed; the message is what the job output shows."""

    def __init__(self, message: str, *, stderr: str = "") -> None:
        super().__init__(message)
        self.stderr = stderr

    @property
    def session_missing(self) -> bool:
        """True when the agent had no prior conversation to resume."""

        return SESSION_MISSING_MARKER in str(self) or SESSION_MISSING_MARKER in self.stderr


class AgentSpawnError(AgentRunError):
    """The agent process could not be started."""


class McpConfigError(AgentRunError):
    """A job's MCP server configuration cannot be turned into a config document."""


class AgentBackend(Protocol):
    """Protocol implemented by agent runners."""

    def execute(
        self,
        job: Job,
        mcp_servers: Sequence[McpServer],
        *,
        cancel_event: threading.Event | None = None,
    ) -> ExecuteResult:
        """Run the job prompt, resuming the job's conversation when one exists."""

    def answer(
        self,
        job: Job,
        mcp_servers: Sequence[McpServer],
        answer_text: str,
        *,
        cancel_event: threading.Event | None = None,
    ) -> ExecuteResult:
        """Resume the job's conversation with the user's answer."""
