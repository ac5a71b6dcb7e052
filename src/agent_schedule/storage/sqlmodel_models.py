"""SQLModel ORM tables for the job store."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text, UniqueConstraint
from sqlmodel import Field, SQLModel

__all__ = ["JobMcpServerRow", "JobRow", "JobRunRow", "McpServerRow", "SQLModel"]


class JobRow(SQLModel, table=True):
    __tablename__ = "jobs"  # type: ignore[bad-override]

    job_id: str = Field(primary_key=True)
    name: str = Field(index=True)
    prompt: str = Field(default="", sa_column=Column(Text, nullable=False, server_default=""))
    start_date: str = ""
    interval_value: int = 0
    interval_unit: str = "hours"
    active: bool = True
    status: str = Field(default="pending", index=True)
    output: str = Field(default="", sa_column=Column(Text, nullable=False, server_default=""))
    last_run: str = ""
    next_run: str = ""
    pending_question: str = Field(
        default="",
        sa_column=Column(Text, nullable=False, server_default=""),
    )
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class JobRunRow(SQLModel, table=True):
    __tablename__ = "job_runs"  # type: ignore[bad-override]
    __table_args__ = (Index("ix_job_runs_job_started", "job_id", "started_at"),)

    run_id: str = Field(primary_key=True)
    job_id: str = Field(
        sa_column=Column(
            ForeignKey("jobs.job_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    started_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    ended_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    status: str = "running"
    output: str = Field(default="", sa_column=Column(Text, nullable=False, server_default=""))
    pending_question: str = Field(
        default="",
        sa_column=Column(Text, nullable=False, server_default=""),
    )


class McpServerRow(SQLModel, table=True):
    __tablename__ = "mcp_servers"  # type: ignore[bad-override]
    __table_args__ = (UniqueConstraint("name", name="uq_mcp_servers_name"),)

    server_id: str = Field(primary_key=True)
    name: str
    server_type: str = "http"
    url: str = ""
    command: str = ""
    args: str = Field(default="[]", sa_column=Column(Text, nullable=False, server_default="[]"))
    env: str = Field(default="{}", sa_column=Column(Text, nullable=False, server_default="{}"))
    headers: str = Field(default="{}", sa_column=Column(Text, nullable=False, server_default="{}"))


class JobMcpServerRow(SQLModel, table=True):
    __tablename__ = "job_mcp_servers"  # type: ignore[bad-override]

    job_id: str = Field(
        sa_column=Column(
            ForeignKey("jobs.job_id", ondelete="CASCADE"),
            primary_key=True,
        ),
    )
    server_id: str = Field(
        sa_column=Column(
            ForeignKey("mcp_servers.server_id", ondelete="CASCADE"),
            primary_key=True,
        ),
    )
