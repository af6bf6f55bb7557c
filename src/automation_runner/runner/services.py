"""Use-case services for automation jobs and runner assembly."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta

from automation_runner.config import Settings
from automation_runner.runner.backoff import BackoffPolicy
from automation_runner.runner.errors import InvalidJobActionError, JobNotFoundError
from automation_runner.runner.executor import (
    ChatTaskExecutor,
    EchoCompletionBackend,
    TaskExecutor,
)
from automation_runner.runner.finalizer import Finalizer
from automation_runner.runner.identity import RepositoryIdentityResolver
from automation_runner.runner.lease import LeaseManager
from automation_runner.runner.materializer import TaskMaterializer
from automation_runner.runner.models import (
    AuditActor,
    JobAction,
    JobCreate,
    JobModel,
    JobSchedule,
    JobTrigger,
    JobView,
    TaskView,
)
from automation_runner.runner.poller import JobPoller
from automation_runner.runner.processor import JobProcessor
from automation_runner.runner.repository import AutomationRepository
from automation_runner.runner.retry import RetryController
from automation_runner.storage.sqlmodel_models import DEFAULT_SYSTEM_IP


@dataclass(slots=True)
class CreateAutomationJob:
    """High-level command to author a job with its first template task."""

    project_id: str
    name: str
    prompt_template: str
    execution_user_id: str
    trigger: JobTrigger = JobTrigger.MANUAL
    description: str | None = None
    cron: str | None = None
    timezone: str = "UTC"
    provider: str | None = None
    model_id: str | None = None
    retry_limit: int = 0
    parallelism: int = 1
    extra_prompts: tuple[str, ...] = ()
    created_ip: str | None = None


class AutomationJobService:
    """Validates operator input before it reaches the repository."""

    def __init__(self, *, repository: AutomationRepository) -> None:
        self.repository = repository

    def create_job(self, command: CreateAutomationJob) -> tuple[JobView, list[TaskView]]:
        if not command.name.strip():
            raise ValueError("Job name must not be empty.")
        if not command.prompt_template.strip():
            raise ValueError("Prompt template must not be empty.")
        if command.retry_limit < 0:
            raise ValueError("retry_limit must be >= 0.")
        if command.parallelism < 1:
            raise ValueError("parallelism must be >= 1.")
        if command.trigger == JobTrigger.SCHEDULE and not command.cron:
            raise ValueError("Schedule payload is required when trigger is schedule.")
        if (command.provider is None) != (command.model_id is None):
            raise ValueError("Model provider and model id must be given together.")

        identity = self.repository.get_execution_identity(
            tenant_key=self.repository.tenant_key,
            user_id=command.execution_user_id,
        )
        if identity is None:
            raise ValueError(f"Execution user not found: {command.execution_user_id}")

        job = self.repository.create_job(
            JobCreate(
                project_id=command.project_id,
                name=command.name.strip(),
                prompt_template=command.prompt_template,
                execution_user_id=command.execution_user_id,
                trigger=command.trigger,
                description=command.description,
                schedule=(
                    JobSchedule(cron=command.cron, timezone=command.timezone)
                    if command.trigger == JobTrigger.SCHEDULE and command.cron
                    else None
                ),
                model=(
                    JobModel(provider=command.provider, model_id=command.model_id)
                    if command.provider is not None and command.model_id is not None
                    else None
                ),
                retry_limit=command.retry_limit,
                parallelism=command.parallelism,
                created_ip=command.created_ip,
            ),
        )
        for index, prompt in enumerate(command.extra_prompts, start=2):
            self.repository.add_template_task(
                job_id=job.job_id,
                title=f"{job.name} #{index}",
                prompt=prompt,
            )
        templates = self.repository.list_tasks(tenant_key=job.tenant_key, job_id=job.job_id)
        return job, templates

    def apply_action(self, *, job_id: str, action: JobAction | str, actor: AuditActor) -> JobView:
        try:
            parsed = JobAction(action)
        except ValueError as error:
            allowed = ", ".join(item.value for item in JobAction)
            raise InvalidJobActionError(
                f"Unsupported job action: {action!r} (expected one of: {allowed})",
            ) from error
        return self.repository.apply_job_action(job_id=job_id, action=parsed, actor=actor)

    def operator_actor(self, *, job_id: str, user_id: str | None, ip: str | None) -> AuditActor:
        """Attribute an operator action, defaulting to the job's execution user."""

        if user_id is None:
            job = self.repository.get_job(job_id=job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            user_id = job.execution_user_id
        return AuditActor(user_id=user_id, ip=ip or DEFAULT_SYSTEM_IP)


def build_poller(
    *,
    settings: Settings,
    repository: AutomationRepository,
    executor: TaskExecutor | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> JobPoller:
    """Wire lease manager, materializer, retry controller and finalizer into a poller."""

    runner = settings.runner
    lease_manager = LeaseManager(
        repository=repository,
        lease_duration=timedelta(seconds=runner.lease_seconds),
    )
    executor = executor or ChatTaskExecutor(
        repository=repository,
        identity_resolver=RepositoryIdentityResolver(repository=repository),
        backend=EchoCompletionBackend(),
    )
    processor = JobProcessor(
        repository=repository,
        lease_manager=lease_manager,
        materializer=TaskMaterializer(repository=repository),
        retry_controller=RetryController(
            repository=repository,
            lease_manager=lease_manager,
            executor=executor,
            backoff=BackoffPolicy(
                base_seconds=runner.backoff_base_seconds,
                cap_seconds=runner.backoff_cap_seconds,
            ),
            sleep=sleep,
        ),
        finalizer=Finalizer(repository=repository, lease_manager=lease_manager),
    )
    return JobPoller(
        repository=repository,
        lease_manager=lease_manager,
        processor=processor,
        poll_interval_seconds=runner.poll_interval_seconds,
        batch_size=runner.batch_size,
        max_workers=runner.effective_max_workers,
        runner_id=runner.runner_id,
    )
