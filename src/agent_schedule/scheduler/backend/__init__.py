"""Agent CLI backend implementations."""

from agent_schedule.scheduler.backend.base import (
    AgentBackend,
    AgentRunError,
    AgentSpawnError,
    McpConfigError,
)
from agent_schedule.scheduler.backend.cli_backend import ClaudeCliBackend

__all__ = [
    "AgentBackend",
    "AgentRunError",
    "AgentSpawnError",
    "ClaudeCliBackend",
    "McpConfigError",
]
