"""Scheduler-specific exceptions."""

from __future__ import annotations


class SchedulerError(Exception):
    """Base exception for all scheduler errors."""


class JobNotFoundError(SchedulerError, LookupError):
    """Raised when a requested job does not exist."""

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        super().__init__(f"job not found: {job_id}")


class McpServerNotFoundError(SchedulerError, LookupError):
    """Raised when a requested MCP server does not exist."""

    def __init__(self, server_id: str) -> None:
        self.server_id = server_id
        super().__init__(f"mcp server not found: {server_id}")


class JobStateError(SchedulerError):
    """Raised when a job is not in a state that allows the requested action."""

    def __init__(self, job_id: str, message: str) -> None:
        self.job_id = job_id
        super().__init__(message)


class SchedulerStoppedError(SchedulerError):
    """Raised when work is submitted after the scheduler was stopped."""
