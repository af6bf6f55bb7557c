"""Automation jobs, tasks, conversation contexts and execution identities."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "execution_users",
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("tenant_key", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("role", sa.String(), nullable=False, server_default="user"),
        sa.Column("status", sa.String(), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("user_id"),
    )
    op.create_index(
        "idx_execution_users_tenant",
        "execution_users",
        ["tenant_key", "user_id"],
        unique=False,
    )

    op.create_table(
        "execution_user_roles",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_key", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("role", sa.String(), nullable=False),
        sa.Column("scope_id", sa.String(), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["execution_users.user_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_execution_user_roles_user",
        "execution_user_roles",
        ["tenant_key", "user_id"],
        unique=False,
    )

    op.create_table(
        "thread_groups",
        sa.Column("thread_group_id", sa.String(), nullable=False),
        sa.Column("tenant_key", sa.String(), nullable=False),
        sa.Column("project_id", sa.String(), nullable=False),
        sa.Column("kind", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("thread_group_id"),
    )
    op.create_index(
        "idx_thread_groups_tenant",
        "thread_groups",
        ["tenant_key", "thread_group_id"],
        unique=False,
    )

    op.create_table(
        "thread_messages",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("thread_group_id", sa.String(), nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("role", sa.String(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["thread_group_id"],
            ["thread_groups.thread_group_id"],
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_thread_messages_group_seq",
        "thread_messages",
        ["thread_group_id", "seq"],
        unique=False,
    )

    op.create_table(
        "automation_jobs",
        sa.Column("job_id", sa.String(), nullable=False),
        sa.Column("tenant_key", sa.String(), nullable=False),
        sa.Column("project_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("trigger", sa.String(), nullable=False),
        sa.Column("schedule_json", sa.String(), nullable=True),
        sa.Column("model_json", sa.String(), nullable=True),
        sa.Column("prompt_template", sa.Text(), nullable=True),
        sa.Column("snapshot_prompt", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_seconds", sa.Integer(), nullable=True),
        sa.Column("lease_id", sa.String(), nullable=True),
        sa.Column("lease_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_run_id", sa.String(), nullable=True),
        sa.Column("retry_limit", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("parallelism", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("execution_user_id", sa.String(), nullable=True),
        sa.Column("estimated_cost_usd", sa.Float(), nullable=True),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column("updated_by", sa.String(), nullable=True),
        sa.Column("created_ip", sa.String(), nullable=True),
        sa.Column("updated_ip", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("job_id"),
    )
    op.create_index(
        "idx_automation_jobs_poll",
        "automation_jobs",
        ["status", "completed_at", "lease_expires_at"],
        unique=False,
    )
    op.create_index(
        "idx_automation_jobs_tenant_project",
        "automation_jobs",
        ["tenant_key", "project_id"],
        unique=False,
    )
    op.create_index(
        "idx_automation_jobs_tenant_status",
        "automation_jobs",
        ["tenant_key", "status"],
        unique=False,
    )
    op.create_index(
        "idx_automation_jobs_updated",
        "automation_jobs",
        ["updated_at"],
        unique=False,
    )

    op.create_table(
        "automation_tasks",
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("tenant_key", sa.String(), nullable=False),
        sa.Column("job_id", sa.String(), nullable=False),
        sa.Column("project_id", sa.String(), nullable=False),
        sa.Column("thread_group_id", sa.String(), nullable=True),
        sa.Column("task_type", sa.String(), nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("template_task_id", sa.String(), nullable=True),
        sa.Column("run_id", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("input_preview", sa.Text(), nullable=True),
        sa.Column("output_preview", sa.Text(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("tokens", sa.Integer(), nullable=True),
        sa.Column("duration_seconds", sa.Float(), nullable=True),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column("updated_by", sa.String(), nullable=True),
        sa.Column("created_ip", sa.String(), nullable=True),
        sa.Column("updated_ip", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["job_id"], ["automation_jobs.job_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("task_id"),
    )
    op.create_index(
        "idx_automation_tasks_job_type_seq",
        "automation_tasks",
        ["tenant_key", "job_id", "task_type", "seq"],
        unique=False,
    )
    op.create_index(
        "idx_automation_tasks_job_status",
        "automation_tasks",
        ["tenant_key", "job_id", "status"],
        unique=False,
    )
    op.create_index(
        "uq_automation_tasks_template_run",
        "automation_tasks",
        ["job_id", "template_task_id", "run_id"],
        unique=True,
        sqlite_where=sa.text("task_type = 'execution' AND template_task_id IS NOT NULL"),
    )


def downgrade() -> None:
    op.drop_index("uq_automation_tasks_template_run", table_name="automation_tasks")
    op.drop_index("idx_automation_tasks_job_status", table_name="automation_tasks")
    op.drop_index("idx_automation_tasks_job_type_seq", table_name="automation_tasks")
    op.drop_table("automation_tasks")
    op.drop_index("idx_automation_jobs_updated", table_name="automation_jobs")
    op.drop_index("idx_automation_jobs_tenant_status", table_name="automation_jobs")
    op.drop_index("idx_automation_jobs_tenant_project", table_name="automation_jobs")
    op.drop_index("idx_automation_jobs_poll", table_name="automation_jobs")
    op.drop_table("automation_jobs")
    op.drop_index("idx_thread_messages_group_seq", table_name="thread_messages")
    op.drop_table("thread_messages")
    op.drop_index("idx_thread_groups_tenant", table_name="thread_groups")
    op.drop_table("thread_groups")
    op.drop_index("idx_execution_user_roles_user", table_name="execution_user_roles")
    op.drop_table("execution_user_roles")
    op.drop_index("idx_execution_users_tenant", table_name="execution_users")
    op.drop_table("execution_users")
