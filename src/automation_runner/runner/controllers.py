"""Controllers for automation runner CLI commands."""

from __future__ import annotations

import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from automation_runner.config import Settings
from automation_runner.runner.models import (
    JobAction,
    JobStatus,
    JobTrigger,
    JobView,
    RunnerSummary,
    TaskStatus,
)
from automation_runner.runner.poller import JobPoller
from automation_runner.runner.repository import AutomationRepository
from automation_runner.runner.services import (
    AutomationJobService,
    CreateAutomationJob,
    build_poller,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DbInitCommand:
    db_path: Path | None


@dataclass(slots=True)
class UserCreateCommand:
    """CLI input for registering an execution user."""

    db_path: Path | None
    email: str
    name: str | None
    role: str
    roles: tuple[str, ...]
    user_id: str | None = None


@dataclass(slots=True)
class JobCreateCommand:
    """CLI input for job authoring."""

    db_path: Path | None
    project_id: str
    name: str
    prompt: str
    execution_user_id: str
    trigger: str
    description: str | None
    cron: str | None
    timezone: str
    provider: str | None
    model_id: str | None
    retry_limit: int
    parallelism: int
    extra_prompts: tuple[str, ...] = ()


@dataclass(slots=True)
class JobListCommand:
    db_path: Path | None
    status: str | None
    limit: int


@dataclass(slots=True)
class JobInspectCommand:
    db_path: Path | None
    job_id: str


@dataclass(slots=True)
class JobActionCommand:
    """CLI input for stop/cancel/retry/retryErrors/resume."""

    db_path: Path | None
    job_id: str
    action: JobAction
    user_id: str | None = None
    ip: str | None = None


@dataclass(slots=True)
class RunnerCommand:
    """CLI input for runner execution."""

    db_path: Path | None
    once: bool
    max_seconds: float | None = None


class AutomationCliController:
    """Coordinates job authoring, operator actions and runner CLI operations."""

    def init_db(self, command: DbInitCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings):
            pass
        return [f"Database ready: {settings.db_path}"]

    def create_user(self, command: UserCreateCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            identity = repository.create_execution_user(
                email=command.email,
                name=command.name,
                role=command.role,
                roles=command.roles,
                user_id=command.user_id,
            )
        return [
            f"User created: user_id={identity.user_id} email={identity.email} "
            f"role={identity.role} tenant={identity.tenant_key}",
        ]

    def create_job(self, command: JobCreateCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            service = AutomationJobService(repository=repository)
            job, templates = service.create_job(
                CreateAutomationJob(
                    project_id=command.project_id,
                    name=command.name,
                    prompt_template=command.prompt,
                    execution_user_id=command.execution_user_id,
                    trigger=JobTrigger(command.trigger),
                    description=command.description,
                    cron=command.cron,
                    timezone=command.timezone,
                    provider=command.provider,
                    model_id=command.model_id,
                    retry_limit=command.retry_limit,
                    parallelism=command.parallelism,
                    extra_prompts=command.extra_prompts,
                ),
            )
        return [
            f"Job created: job_id={job.job_id} status={job.status.value} "
            f"trigger={job.trigger.value} project_id={job.project_id}",
            f"Template tasks: {len(templates)}",
        ]

    def list_jobs(self, command: JobListCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        status_filter = _parse_status(command.status)
        with _repository(settings) as repository:
            jobs = repository.list_jobs(status=status_filter, limit=command.limit)

        lines = [f"Jobs: {len(jobs)}"]
        for job in jobs:
            lines.append(
                f"  {job.job_id} name={job.name} status={job.status.value} "
                f"trigger={job.trigger.value} run_id={job.last_run_id or '-'} "
                f"cost_usd={_format_cost(job)}",
            )
        return lines

    def inspect_job(self, command: JobInspectCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            details = repository.get_job_details(job_id=command.job_id)
        if details is None:
            return [f"Job not found: {command.job_id}"]

        job = details.job
        progress = " ".join(
            f"{status.value}={details.progress.get(status.value, 0)}" for status in TaskStatus
        )
        lines = [
            f"Job: {job.job_id}",
            f"Name: {job.name}",
            f"Status: {job.status.value}",
            f"Trigger: {job.trigger.value}",
            f"Run id: {job.last_run_id or '-'}",
            f"Started: {job.started_at.isoformat() if job.started_at else '-'}",
            f"Completed: {job.completed_at.isoformat() if job.completed_at else '-'}",
            f"Duration seconds: {job.duration_seconds if job.duration_seconds is not None else '-'}",
            f"Estimated cost USD: {_format_cost(job)}",
            f"Retry limit: {job.retry_limit}",
            f"Lease: {job.lease_id or '-'}",
            f"Progress: total={details.progress.get('total', 0)} {progress}",
        ]
        for task in details.tasks:
            lines.append(
                f"  task {task.task_id} seq={task.seq} status={task.status.value} "
                f"tokens={task.tokens if task.tokens is not None else '-'} "
                f"error={task.error_message or '-'}",
            )
        return lines

    def apply_action(self, command: JobActionCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            service = AutomationJobService(repository=repository)
            actor = service.operator_actor(
                job_id=command.job_id,
                user_id=command.user_id,
                ip=command.ip,
            )
            job = service.apply_action(job_id=command.job_id, action=command.action, actor=actor)
        return [
            f"Action applied: job_id={job.job_id} action={command.action.value} "
            f"status={job.status.value}",
        ]

    def run(self, command: RunnerCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate()
        with _repository(settings) as repository:
            poller = build_poller(settings=settings, repository=repository)
            if command.once:
                try:
                    summary = poller.run_once()
                finally:
                    poller.stop(wait=True)
            else:
                summary = _run_loop(poller=poller, max_seconds=command.max_seconds)
        return [_render_summary(summary)]


def _run_loop(*, poller: JobPoller, max_seconds: float | None) -> RunnerSummary:
    deadline = time.monotonic() + max_seconds if max_seconds is not None else None
    poller.start()
    try:
        while deadline is None or time.monotonic() < deadline:
            time.sleep(0.2)
    except KeyboardInterrupt:
        logger.info("Interrupted; waiting for in-flight jobs")
    finally:
        poller.stop(wait=True)
    return poller.summary


def _render_summary(summary: RunnerSummary) -> str:
    return "Runner summary: " + " ".join(f"{key}={value}" for key, value in summary.as_dict().items())


def _format_cost(job: JobView) -> str:
    if job.estimated_cost_usd is None:
        return "-"
    return f"{job.estimated_cost_usd:.4f}"


def _parse_status(value: str | None) -> JobStatus | None:
    if value is None:
        return None
    try:
        return JobStatus(value.lower())
    except ValueError as error:
        raise ValueError(f"Unsupported job status: {value!r}") from error


@contextmanager
def _repository(settings: Settings) -> Iterator[AutomationRepository]:
    repository = AutomationRepository(
        db_path=settings.db_path,
        tenant_key=settings.tenant_key,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()
