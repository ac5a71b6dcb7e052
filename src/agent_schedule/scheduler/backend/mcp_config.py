"""MCP server configuration document for the agent CLI ``--mcp-config`` flag."""

from __future__ import annotations

import json
import os
import tempfile
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from agent_schedule.scheduler.backend.base import McpConfigError
from agent_schedule.scheduler.models import McpServer, McpServerType


def build_mcp_config(servers: Sequence[McpServer]) -> dict[str, Any]:
    """Build ``{"mcpServers": {...}}`` for ``servers``; empty fields are omitted."""

    entries: dict[str, dict[str, Any]] = {}
    for server in servers:
        name = server.name.strip()
        if not name:
            raise McpConfigError("mcp server name is required")
        if name in entries:
            raise McpConfigError(f"duplicate mcp server name: {name}")
        entries[name] = _server_entry(server, name=name)
    return {"mcpServers": entries}


def allowed_tool_patterns(servers: Sequence[McpServer]) -> list[str]:
    return [f"mcp__{server.name.strip()}__*" for server in servers if server.name.strip()]


@contextmanager
def mcp_config_file(servers: Sequence[McpServer]) -> Iterator[Path | None]:
    """Write the config document to a temp file for one invocation.

    Yields ``None`` when there are no servers. The file is removed on exit,
    including when the invocation raises.
    """

    if not servers:
        yield None
        return

    payload = build_mcp_config(servers)
    fd, raw_path = tempfile.mkstemp(prefix="agent-schedule-mcp-", suffix=".json")
    path = Path(raw_path)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, ensure_ascii=False)
        yield path
    finally:
        path.unlink(missing_ok=True)


def _server_entry(server: McpServer, *, name: str) -> dict[str, Any]:
    try:
        server_type = McpServerType(server.server_type)
    except ValueError as error:
        raise McpConfigError(
            f"mcp server {name}: unsupported type {server.server_type!r}",
        ) from error

    entry: dict[str, Any] = {"type": server_type.value}
    if server_type is McpServerType.HTTP:
        if not server.url.strip():
            raise McpConfigError(f"mcp server {name}: url is required for http servers")
        entry["url"] = server.url.strip()
        if server.headers:
            entry["headers"] = dict(server.headers)
        return entry

    if not server.command.strip():
        raise McpConfigError(f"mcp server {name}: command is required for stdio servers")
    entry["command"] = server.command.strip()
    if server.args:
        entry["args"] = list(server.args)
    if server.env:
        entry["env"] = dict(server.env)
    return entry
