"""CLI entrypoint for agent-schedule."""

from collections.abc import Callable
from pathlib import Path

import rich_click as click

from agent_schedule import __version__
from agent_schedule.scheduler.backend import AgentRunError
from agent_schedule.scheduler.controllers import (
    JobAddCommand,
    JobAnswerCommand,
    JobListCommand,
    JobRefCommand,
    JobSetMcpCommand,
    JobUpdateCommand,
    McpAddCommand,
    McpDeleteCommand,
    McpListCommand,
    McpUpdateCommand,
    SchedulerCliController,
    ServeCommand,
)
from agent_schedule.scheduler.errors import SchedulerError
from agent_schedule.scheduler.models import IntervalUnit, McpServerType

click.rich_click.USE_MARKDOWN = True
SCHEDULER_CONTROLLER = SchedulerCliController()

_DB_PATH_OPTION = click.option(
    "--db-path",
    type=click.Path(path_type=Path),
    default=None,
    help="SQLite DB path.",
)


@click.group()
@click.version_option(version=__version__, prog_name="agent-schedule")
def agent_schedule() -> None:
    """Scheduled runs of the claude CLI."""


@agent_schedule.command("serve")
@_DB_PATH_OPTION
@click.option(
    "--tick-seconds",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Override the tick interval (default from AGENT_SCHEDULE_TICK_INTERVAL_SECONDS).",
)
@click.option("--once", is_flag=True, help="Run a single tick and exit.")
def serve(db_path: Path | None, tick_seconds: float | None, once: bool) -> None:
    """Run the scheduler until interrupted with Ctrl+C or SIGTERM."""

    _emit_lines(
        _call(
            lambda: SCHEDULER_CONTROLLER.serve(
                ServeCommand(db_path=db_path, tick_seconds=tick_seconds, once=once),
            ),
        ),
    )


@agent_schedule.group()
def jobs() -> None:
    """Job commands."""


@jobs.command("add")
@_DB_PATH_OPTION
@click.option("--name", required=True, help="Job name.")
@click.option("--prompt", required=True, help="Instruction sent to the agent on every run.")
@click.option(
    "--start",
    "start_date",
    default="",
    help="First run time, ISO-8601 (e.g. 2026-01-01T09:00 or 2026-01-01T09:00:00+00:00).",
)
@click.option(
    "--every",
    "interval_value",
    type=click.IntRange(min=1),
    default=1,
    show_default=True,
    help="Interval value.",
)
@click.option(
    "--unit",
    "interval_unit",
    type=click.Choice([unit.value for unit in IntervalUnit]),
    default=IntervalUnit.HOURS.value,
    show_default=True,
    help="Interval unit.",
)
@click.option("--inactive", is_flag=True, help="Create the job paused.")
def jobs_add(  # noqa: PLR0913
    db_path: Path | None,
    name: str,
    prompt: str,
    start_date: str,
    interval_value: int,
    interval_unit: str,
    inactive: bool,
) -> None:
    """Create a recurring job."""

    _emit_lines(
        _call(
            lambda: SCHEDULER_CONTROLLER.add_job(
                JobAddCommand(
                    db_path=db_path,
                    name=name,
                    prompt=prompt,
                    start_date=start_date,
                    interval_value=interval_value,
                    interval_unit=interval_unit,
                    active=not inactive,
                ),
            ),
        ),
    )


@jobs.command("update")
@_DB_PATH_OPTION
@click.argument("job_id")
@click.option("--name", default=None, help="New job name.")
@click.option("--prompt", default=None, help="New instruction for the agent.")
@click.option("--start", "start_date", default=None, help="New first run time; empty clears it.")
@click.option(
    "--every",
    "interval_value",
    type=click.IntRange(min=1),
    default=None,
    help="New interval value.",
)
@click.option(
    "--unit",
    "interval_unit",
    type=click.Choice([unit.value for unit in IntervalUnit]),
    default=None,
    help="New interval unit.",
)
def jobs_update(  # noqa: PLR0913
    db_path: Path | None,
    job_id: str,
    name: str | None,
    prompt: str | None,
    start_date: str | None,
    interval_value: int | None,
    interval_unit: str | None,
) -> None:
    """Edit a job's name, prompt or schedule. Omitted options are kept."""

    _emit_lines(
        _call(
            lambda: SCHEDULER_CONTROLLER.update_job(
                JobUpdateCommand(
                    db_path=db_path,
                    job_id=job_id,
                    name=name,
                    prompt=prompt,
                    start_date=start_date,
                    interval_value=interval_value,
                    interval_unit=interval_unit,
                ),
            ),
        ),
    )


@jobs.command("pause")
@_DB_PATH_OPTION
@click.argument("job_id")
def jobs_pause(db_path: Path | None, job_id: str) -> None:
    """Stop scheduling a job; on-demand runs still work."""

    _emit_lines(
        _call(
            lambda: SCHEDULER_CONTROLLER.set_job_active(
                JobRefCommand(db_path=db_path, job_id=job_id),
                active=False,
            ),
        ),
    )


@jobs.command("resume")
@_DB_PATH_OPTION
@click.argument("job_id")
def jobs_resume(db_path: Path | None, job_id: str) -> None:
    """Resume scheduling a paused job."""

    _emit_lines(
        _call(
            lambda: SCHEDULER_CONTROLLER.set_job_active(
                JobRefCommand(db_path=db_path, job_id=job_id),
                active=True,
            ),
        ),
    )


@jobs.command("list")
@_DB_PATH_OPTION
def jobs_list(db_path: Path | None) -> None:
    """List jobs with their live status."""

    _emit_lines(_call(lambda: SCHEDULER_CONTROLLER.list_jobs(JobListCommand(db_path=db_path))))


@jobs.command("show")
@_DB_PATH_OPTION
@click.argument("job_id")
def jobs_show(db_path: Path | None, job_id: str) -> None:
    """Show one job including its latest output."""

    _emit_lines(
        _call(lambda: SCHEDULER_CONTROLLER.show_job(JobRefCommand(db_path=db_path, job_id=job_id))),
    )


@jobs.command("delete")
@_DB_PATH_OPTION
@click.argument("job_id")
def jobs_delete(db_path: Path | None, job_id: str) -> None:
    """Delete a job and its run history."""

    _emit_lines(
        _call(
            lambda: SCHEDULER_CONTROLLER.delete_job(JobRefCommand(db_path=db_path, job_id=job_id)),
        ),
    )


@jobs.command("runs")
@_DB_PATH_OPTION
@click.argument("job_id")
def jobs_runs(db_path: Path | None, job_id: str) -> None:
    """List retained runs of a job, newest first."""

    _emit_lines(
        _call(
            lambda: SCHEDULER_CONTROLLER.list_runs(JobRefCommand(db_path=db_path, job_id=job_id)),
        ),
    )


@jobs.command("set-mcp")
@_DB_PATH_OPTION
@click.argument("job_id")
@click.option(
    "--server-id",
    "server_ids",
    multiple=True,
    help="MCP server id. Can be repeated; omit to clear.",
)
def jobs_set_mcp(db_path: Path | None, job_id: str, server_ids: tuple[str, ...]) -> None:
    """Replace the MCP servers available to a job."""

    _emit_lines(
        _call(
            lambda: SCHEDULER_CONTROLLER.set_job_mcp(
                JobSetMcpCommand(db_path=db_path, job_id=job_id, server_ids=server_ids),
            ),
        ),
    )


@jobs.command("run")
@_DB_PATH_OPTION
@click.argument("job_id")
def jobs_run(db_path: Path | None, job_id: str) -> None:
    """Run a job now and wait for it to finish."""

    _emit_lines(
        _call(lambda: SCHEDULER_CONTROLLER.run_job(JobRefCommand(db_path=db_path, job_id=job_id))),
    )


@jobs.command("answer")
@_DB_PATH_OPTION
@click.argument("job_id")
@click.argument("answer")
def jobs_answer(db_path: Path | None, job_id: str, answer: str) -> None:
    """Answer the pending question of a waiting job."""

    _emit_lines(
        _call(
            lambda: SCHEDULER_CONTROLLER.answer_job(
                JobAnswerCommand(db_path=db_path, job_id=job_id, answer=answer),
            ),
        ),
    )


@agent_schedule.group()
def mcp() -> None:
    """MCP server commands."""


@mcp.command("add")
@_DB_PATH_OPTION
@click.option("--name", required=True, help="Server name; tools are exposed as mcp__<name>__*.")
@click.option(
    "--type",
    "server_type",
    type=click.Choice([server_type.value for server_type in McpServerType]),
    default=McpServerType.HTTP.value,
    show_default=True,
    help="Connection type.",
)
@click.option("--url", default="", help="Server URL (http).")
@click.option("--command", "server_command", default="", help="Executable (stdio).")
@click.option("--arg", "args", multiple=True, help="Command argument (stdio). Can be repeated.")
@click.option("--env", "env", multiple=True, help="KEY=VALUE environment (stdio). Repeatable.")
@click.option("--header", "headers", multiple=True, help="KEY=VALUE HTTP header. Repeatable.")
def mcp_add(  # noqa: PLR0913
    db_path: Path | None,
    name: str,
    server_type: str,
    url: str,
    server_command: str,
    args: tuple[str, ...],
    env: tuple[str, ...],
    headers: tuple[str, ...],
) -> None:
    """Register an MCP server."""

    _emit_lines(
        _call(
            lambda: SCHEDULER_CONTROLLER.add_mcp_server(
                McpAddCommand(
                    db_path=db_path,
                    name=name,
                    server_type=server_type,
                    url=url,
                    command=server_command,
                    args=args,
                    env=env,
                    headers=headers,
                ),
            ),
        ),
    )


@mcp.command("update")
@_DB_PATH_OPTION
@click.argument("server_id")
@click.option("--name", default=None, help="New server name.")
@click.option(
    "--type",
    "server_type",
    type=click.Choice([server_type.value for server_type in McpServerType]),
    default=None,
    help="New connection type.",
)
@click.option("--url", default=None, help="New server URL (http).")
@click.option("--command", "server_command", default=None, help="New executable (stdio).")
@click.option("--arg", "args", multiple=True, help="Replaces all arguments when given.")
@click.option("--env", "env", multiple=True, help="KEY=VALUE; replaces the environment.")
@click.option("--header", "headers", multiple=True, help="KEY=VALUE; replaces the headers.")
def mcp_update(  # noqa: PLR0913
    db_path: Path | None,
    server_id: str,
    name: str | None,
    server_type: str | None,
    url: str | None,
    server_command: str | None,
    args: tuple[str, ...],
    env: tuple[str, ...],
    headers: tuple[str, ...],
) -> None:
    """Edit a registered MCP server. Omitted options are kept."""

    _emit_lines(
        _call(
            lambda: SCHEDULER_CONTROLLER.update_mcp_server(
                McpUpdateCommand(
                    db_path=db_path,
                    server_id=server_id,
                    name=name,
                    server_type=server_type,
                    url=url,
                    command=server_command,
                    args=args,
                    env=env,
                    headers=headers,
                ),
            ),
        ),
    )


@mcp.command("list")
@_DB_PATH_OPTION
def mcp_list(db_path: Path | None) -> None:
    """List registered MCP servers."""

    _emit_lines(
        _call(lambda: SCHEDULER_CONTROLLER.list_mcp_servers(McpListCommand(db_path=db_path))),
    )


@mcp.command("delete")
@_DB_PATH_OPTION
@click.argument("server_id")
def mcp_delete(db_path: Path | None, server_id: str) -> None:
    """Delete an MCP server and detach it from jobs."""

    _emit_lines(
        _call(
            lambda: SCHEDULER_CONTROLLER.delete_mcp_server(
                McpDeleteCommand(db_path=db_path, server_id=server_id),
            ),
        ),
    )


def _call(action: Callable[[], list[str]]) -> list[str]:
    try:
        return action()
    except (SchedulerError, AgentRunError, ValueError) as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    agent_schedule()
