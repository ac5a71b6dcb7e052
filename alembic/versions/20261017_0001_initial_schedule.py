"""Initial job scheduling schema."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261017_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "jobs",
        sa.Column("job_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("prompt", sa.Text(), nullable=False, server_default=""),
        sa.Column("start_date", sa.String(), nullable=False, server_default=""),
        sa.Column("interval_value", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("interval_unit", sa.String(), nullable=False, server_default="hours"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("output", sa.Text(), nullable=False, server_default=""),
        sa.Column("last_run", sa.String(), nullable=False, server_default=""),
        sa.Column("next_run", sa.String(), nullable=False, server_default=""),
        sa.Column("pending_question", sa.Text(), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("job_id"),
    )
    op.create_index("ix_jobs_name", "jobs", ["name"])
    op.create_index("ix_jobs_status", "jobs", ["status"])

    op.create_table(
        "job_runs",
        sa.Column("run_id", sa.String(), nullable=False),
        sa.Column("job_id", sa.String(), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="running"),
        sa.Column("output", sa.Text(), nullable=False, server_default=""),
        sa.Column("pending_question", sa.Text(), nullable=False, server_default=""),
        sa.ForeignKeyConstraint(["job_id"], ["jobs.job_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("run_id"),
    )
    op.create_index("ix_job_runs_job_id", "job_runs", ["job_id"])
    op.create_index("ix_job_runs_job_started", "job_runs", ["job_id", "started_at"])

    op.create_table(
        "mcp_servers",
        sa.Column("server_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("server_type", sa.String(), nullable=False, server_default="http"),
        sa.Column("url", sa.String(), nullable=False, server_default=""),
        sa.Column("command", sa.String(), nullable=False, server_default=""),
        sa.Column("args", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("env", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("headers", sa.Text(), nullable=False, server_default="{}"),
        sa.PrimaryKeyConstraint("server_id"),
        sa.UniqueConstraint("name", name="uq_mcp_servers_name"),
    )

    op.create_table(
        "job_mcp_servers",
        sa.Column("job_id", sa.String(), nullable=False),
        sa.Column("server_id", sa.String(), nullable=False),
        sa.ForeignKeyConstraint(["job_id"], ["jobs.job_id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["server_id"], ["mcp_servers.server_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("job_id", "server_id"),
    )


def downgrade() -> None:
    op.drop_table("job_mcp_servers")
    op.drop_table("mcp_servers")
    op.drop_index("ix_job_runs_job_started", table_name="job_runs")
    op.drop_index("ix_job_runs_job_id", table_name="job_runs")
    op.drop_table("job_runs")
    op.drop_index("ix_jobs_status", table_name="jobs")
    op.drop_index("ix_jobs_name", table_name="jobs")
    op.drop_table("jobs")
