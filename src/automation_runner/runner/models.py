"""Domain models for automation jobs, tasks and their execution."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class JobStatus(str, Enum):
    """Durable job lifecycle states."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"
    STOPPED = "stopped"


class JobTrigger(str, Enum):
    MANUAL = "manual"
    SCHEDULE = "schedule"


class TaskStatus(str, Enum):
    """Durable task lifecycle states."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"
    STOPPED = "stopped"


class TaskType(str, Enum):
    """Template tasks are authored once; execution tasks are cloned per run."""

    TEMPLATE = "template"
    EXECUTION = "execution"


class JobAction(str, Enum):
    """Out-of-band operator actions on a job."""

    STOP = "stop"
    CANCEL = "cancel"
    RETRY = "retry"
    RETRY_ERRORS = "retryErrors"
    RESUME = "resume"


class ThreadGroupKind(str, Enum):
    TASK_TEMPLATE = "automation_task_template"
    EXECUTION = "automation_execution"


UNSETTLED_TASK_STATUSES = frozenset({TaskStatus.PENDING, TaskStatus.RUNNING})
TERMINAL_JOB_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.ERROR, JobStatus.STOPPED})


class TaskRunOutcome(str, Enum):
    """How the retry controller left one task."""

    COMPLETED = "completed"
    ERROR = "error"
    LEASE_LOST = "lease_lost"
    STOPPED = "stopped"


class FinalizeOutcome(str, Enum):
    """Result of one finalization attempt."""

    FINALIZED = "finalized"
    PENDING = "pending"
    LEASE_LOST = "lease_lost"
    EXTERNALLY_CHANGED = "externally_changed"


@dataclass(slots=True)
class JobSchedule:
    """Cron expression persisted with scheduled jobs; evaluated outside this engine."""

    cron: str
    timezone: str = "UTC"


@dataclass(slots=True)
class JobModel:
    provider: str
    model_id: str


@dataclass(slots=True)
class JobCreate:
    """Input payload for creating an automation job with one template task."""

    project_id: str
    name: str
    prompt_template: str
    execution_user_id: str
    trigger: JobTrigger = JobTrigger.MANUAL
    description: str | None = None
    schedule: JobSchedule | None = None
    model: JobModel | None = None
    retry_limit: int = 0
    parallelism: int = 1
    created_ip: str | None = None


@dataclass(slots=True)
class JobView:
    """Readable job view for runner logic and reporting."""

    job_id: str
    tenant_key: str
    project_id: str
    name: str
    description: str | None
    status: JobStatus
    trigger: JobTrigger
    schedule: JobSchedule | None
    model: JobModel | None
    prompt_template: str | None
    snapshot_prompt: str | None
    started_at: datetime | None
    completed_at: datetime | None
    duration_seconds: int | None
    lease_id: str | None
    lease_expires_at: datetime | None
    last_run_id: str | None
    retry_limit: int
    parallelism: int
    execution_user_id: str | None
    estimated_cost_usd: float | None
    created_by: str | None
    updated_by: str | None
    created_ip: str | None
    updated_ip: str | None
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class TaskView:
    """Readable task view for runner logic and reporting."""

    task_id: str
    tenant_key: str
    job_id: str
    project_id: str
    thread_group_id: str | None
    task_type: TaskType
    seq: int
    template_task_id: str | None
    run_id: str | None
    status: TaskStatus
    input_preview: str | None
    output_preview: str | None
    error_message: str | None
    tokens: int | None
    duration_seconds: float | None
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class ThreadGroupView:
    thread_group_id: str
    tenant_key: str
    project_id: str
    kind: ThreadGroupKind
    title: str
    description: str | None


@dataclass(slots=True)
class Lease:
    """Lease held by this runner over one job row.

    ``expires_at`` mirrors the value last written by this runner and is
    advanced in place on renewal.
    """

    job_id: str
    tenant_key: str
    lease_id: str
    expires_at: datetime


@dataclass(slots=True)
class ClaimedJob:
    job: JobView
    lease: Lease


@dataclass(slots=True)
class AuditActor:
    """Who a system-side write is attributed to."""

    user_id: str | None
    ip: str


@dataclass(slots=True)
class TaskExecutionResult:
    """Outcome reported by a task executor for one attempt."""

    status: TaskStatus
    output_preview: str | None = None
    tokens: int | None = None
    duration_seconds: float | None = None
    error_message: str | None = None


@dataclass(slots=True)
class ExecutionIdentity:
    """User, role and permission context a task runs under."""

    user_id: str
    tenant_key: str
    email: str
    role: str
    status: str
    name: str | None = None
    roles: tuple[str, ...] = ()


@dataclass(slots=True)
class JobDetails:
    """Job with its tasks and per-status progress counts."""

    job: JobView
    tasks: list[TaskView]
    progress: dict[str, int] = field(default_factory=dict)


@dataclass(slots=True)
class RunnerSummary:
    """Aggregate runner counters for CLI reporting."""

    processed: int = 0
    finalized: int = 0
    tasks_completed: int = 0
    tasks_errored: int = 0
    lease_lost: int = 0
    idle_polls: int = 0

    def merge(self, other: RunnerSummary) -> None:
        self.processed += other.processed
        self.finalized += other.finalized
        self.tasks_completed += other.tasks_completed
        self.tasks_errored += other.tasks_errored
        self.lease_lost += other.lease_lost
        self.idle_polls += other.idle_polls

    def as_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "finalized": self.finalized,
            "tasks_completed": self.tasks_completed,
            "tasks_errored": self.tasks_errored,
            "lease_lost": self.lease_lost,
            "idle_polls": self.idle_polls,
        }
