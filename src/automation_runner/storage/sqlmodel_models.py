"""SQLModel ORM tables for automation jobs, tasks and their collaborators."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text
from sqlmodel import Field, SQLModel

DEFAULT_TENANT_KEY = "default"
DEFAULT_SYSTEM_IP = "127.0.0.1"


class ExecutionUser(SQLModel, table=True):
    __tablename__ = "execution_users"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_execution_users_tenant", "tenant_key", "user_id"),)

    user_id: str = Field(primary_key=True)
    tenant_key: str = Field(index=True)
    name: str | None = None
    email: str
    role: str = "user"
    status: str = "active"
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class ExecutionUserRole(SQLModel, table=True):
    __tablename__ = "execution_user_roles"  # type: ignore[bad-override]

    id: int | None = Field(default=None, primary_key=True)
    tenant_key: str = Field(index=True)
    user_id: str = Field(
        sa_column=Column(
            ForeignKey("execution_users.user_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    role: str
    scope_id: str | None = None


class ThreadGroup(SQLModel, table=True):
    __tablename__ = "thread_groups"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_thread_groups_tenant", "tenant_key", "thread_group_id"),)

    thread_group_id: str = Field(primary_key=True)
    tenant_key: str = Field(index=True)
    project_id: str
    kind: str = Field(index=True)
    title: str
    description: str | None = Field(default=None, sa_column=Column(Text))
    created_by: str | None = None
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class ThreadMessage(SQLModel, table=True):
    __tablename__ = "thread_messages"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_thread_messages_group_seq", "thread_group_id", "seq"),)

    id: int | None = Field(default=None, primary_key=True)
    thread_group_id: str = Field(
        sa_column=Column(
            ForeignKey("thread_groups.thread_group_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    seq: int = 0
    role: str
    content: str = Field(sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class AutomationJob(SQLModel, table=True):
    __tablename__ = "automation_jobs"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_automation_jobs_poll", "status", "completed_at", "lease_expires_at"),
        Index("idx_automation_jobs_tenant_project", "tenant_key", "project_id"),
        Index("idx_automation_jobs_tenant_status", "tenant_key", "status"),
    )

    job_id: str = Field(primary_key=True)
    tenant_key: str = Field(index=True)
    project_id: str
    name: str
    description: str | None = Field(default=None, sa_column=Column(Text))
    status: str = Field(index=True)
    trigger: str = Field(index=True)
    schedule_json: str | None = None
    model_json: str | None = None
    prompt_template: str | None = Field(default=None, sa_column=Column(Text))
    snapshot_prompt: str | None = Field(default=None, sa_column=Column(Text))
    started_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    completed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    duration_seconds: int | None = None
    lease_id: str | None = Field(default=None, index=True)
    lease_expires_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True)),
    )
    last_run_id: str | None = None
    retry_limit: int = Field(default=0)
    parallelism: int = Field(default=1)
    execution_user_id: str | None = None
    estimated_cost_usd: float | None = None
    created_by: str | None = None
    updated_by: str | None = None
    created_ip: str | None = None
    updated_ip: str | None = None
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class AutomationTask(SQLModel, table=True):
    __tablename__ = "automation_tasks"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_automation_tasks_job_type_seq", "tenant_key", "job_id", "task_type", "seq"),
        Index("idx_automation_tasks_job_status", "tenant_key", "job_id", "status"),
        Index("idx_automation_tasks_template", "tenant_key", "job_id", "template_task_id"),
    )

    task_id: str = Field(primary_key=True)
    tenant_key: str = Field(index=True)
    job_id: str = Field(
        sa_column=Column(
            ForeignKey("automation_jobs.job_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    project_id: str
    thread_group_id: str | None = None
    task_type: str = Field(index=True)
    seq: int = Field(default=0)
    template_task_id: str | None = None
    run_id: str | None = None
    status: str = Field(index=True)
    input_preview: str | None = Field(default=None, sa_column=Column(Text))
    output_preview: str | None = Field(default=None, sa_column=Column(Text))
    error_message: str | None = Field(default=None, sa_column=Column(Text))
    tokens: int | None = None
    duration_seconds: float | None = None
    created_by: str | None = None
    updated_by: str | None = None
    created_ip: str | None = None
    updated_ip: str | None = None
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
