"""Expand immutable template tasks into per-run execution tasks."""

from __future__ import annotations

import logging
from typing import Protocol
from uuid import uuid4

from sqlmodel import Session, col, select

from automation_runner.runner.models import (
    AuditActor,
    JobView,
    TaskStatus,
    TaskType,
    TaskView,
    ThreadGroupKind,
)
from automation_runner.runner.repository import AutomationRepository, find_thread_group
from automation_runner.storage.common import utc_now
from automation_runner.storage.sqlmodel_models import AutomationTask, ThreadGroup, ThreadMessage

logger = logging.getLogger(__name__)

DEFAULT_TASK_PREVIEW_CHARS = 180


def new_run_id() -> str:
    return f"run_{uuid4().hex[:12]}"


class ThreadCloner(Protocol):
    """Duplicates a template's conversation context into an execution task."""

    def clone(  # noqa: PLR0913
        self,
        *,
        session: Session,
        template_task: TaskView,
        thread_group: ThreadGroup,
        run_id: str,
        actor: AuditActor,
    ) -> AutomationTask:
        """Add the cloned context and execution task to ``session`` and return the task."""


class SqlThreadCloner:
    """Clones thread groups and their messages inside the caller's transaction."""

    def clone(  # noqa: PLR0913
        self,
        *,
        session: Session,
        template_task: TaskView,
        thread_group: ThreadGroup,
        run_id: str,
        actor: AuditActor,
    ) -> AutomationTask:
        now = utc_now()
        execution_group = ThreadGroup(
            thread_group_id=str(uuid4()),
            tenant_key=thread_group.tenant_key,
            project_id=thread_group.project_id,
            kind=ThreadGroupKind.EXECUTION.value,
            title=f"[Run:{run_id}] {thread_group.title}",
            description=thread_group.description,
            created_by=actor.user_id,
            created_at=now,
        )
        session.add(execution_group)

        messages = session.exec(
            select(ThreadMessage)
            .where(ThreadMessage.thread_group_id == thread_group.thread_group_id)
            .order_by(col(ThreadMessage.seq).asc(), col(ThreadMessage.id).asc()),
        ).all()
        for message in messages:
            session.add(
                ThreadMessage(
                    thread_group_id=execution_group.thread_group_id,
                    seq=message.seq,
                    role=message.role,
                    content=message.content,
                    created_at=now,
                ),
            )

        task = AutomationTask(
            task_id=str(uuid4()),
            tenant_key=template_task.tenant_key,
            job_id=template_task.job_id,
            project_id=template_task.project_id,
            thread_group_id=execution_group.thread_group_id,
            task_type=TaskType.EXECUTION.value,
            seq=template_task.seq,
            template_task_id=template_task.task_id,
            run_id=run_id,
            status=TaskStatus.PENDING.value,
            input_preview=template_task.input_preview,
            created_by=actor.user_id,
            updated_by=actor.user_id,
            created_ip=actor.ip,
            updated_ip=actor.ip,
            created_at=now,
            updated_at=now,
        )
        session.add(task)
        return task


class TaskMaterializer:
    """Ensures a job has execution tasks, creating them at most once.

    Execution tasks already present for the job are always reused, which is
    what makes a pass resumable after a crash: the second pass finds the rows
    the first one committed and never clones again.
    """

    def __init__(
        self,
        *,
        repository: AutomationRepository,
        cloner: ThreadCloner | None = None,
    ) -> None:
        self.repository = repository
        self.cloner = cloner or SqlThreadCloner()

    def ensure_tasks(self, *, job: JobView, actor: AuditActor) -> list[TaskView]:
        """Return the job's execution tasks in sequence order."""

        templates = self.repository.list_tasks(
            tenant_key=job.tenant_key,
            job_id=job.job_id,
            task_type=TaskType.TEMPLATE,
        )
        if templates:
            existing = self.repository.list_tasks(
                tenant_key=job.tenant_key,
                job_id=job.job_id,
                task_type=TaskType.EXECUTION,
            )
            if existing:
                return existing
            return self._clone_templates(job=job, templates=templates, actor=actor)

        existing = self.repository.list_tasks(tenant_key=job.tenant_key, job_id=job.job_id)
        if existing:
            return existing
        return [self._create_default_task(job=job, actor=actor)]

    def _clone_templates(
        self,
        *,
        job: JobView,
        templates: list[TaskView],
        actor: AuditActor,
    ) -> list[TaskView]:
        run_id = job.last_run_id or new_run_id()
        with self.repository.transaction() as session:
            if _has_execution_tasks(session=session, job=job):
                logger.info("Execution tasks already materialized for job %s", job.job_id)
            else:
                cloned = self._clone_each(
                    session=session,
                    job=job,
                    templates=templates,
                    run_id=run_id,
                    actor=actor,
                )
                logger.info(
                    "Materialized %d/%d execution tasks for job %s (run_id=%s)",
                    cloned,
                    len(templates),
                    job.job_id,
                    run_id,
                )
        return self.repository.list_tasks(
            tenant_key=job.tenant_key,
            job_id=job.job_id,
            task_type=TaskType.EXECUTION,
        )

    def _clone_each(  # noqa: PLR0913
        self,
        *,
        session: Session,
        job: JobView,
        templates: list[TaskView],
        run_id: str,
        actor: AuditActor,
    ) -> int:
        cloned = 0
        for template in templates:
            thread_group = find_thread_group(
                session=session,
                tenant_key=job.tenant_key,
                thread_group_id=template.thread_group_id,
            )
            if thread_group is None:
                logger.error(
                    "Thread group not found for template task: job_id=%s "
                    "template_task_id=%s thread_group_id=%s",
                    job.job_id,
                    template.task_id,
                    template.thread_group_id,
                )
                continue
            self.cloner.clone(
                session=session,
                template_task=template,
                thread_group=thread_group,
                run_id=run_id,
                actor=actor,
            )
            cloned += 1
        return cloned

    def _create_default_task(self, *, job: JobView, actor: AuditActor) -> TaskView:
        preview_source = job.prompt_template or job.snapshot_prompt or job.name
        input_preview = (
            preview_source[:DEFAULT_TASK_PREVIEW_CHARS] if preview_source else f"Job {job.name}"
        )
        return self.repository.create_default_task(
            job=job,
            run_id=job.last_run_id,
            input_preview=input_preview,
            actor=actor,
        )


def _has_execution_tasks(*, session: Session, job: JobView) -> bool:
    """Must be read in the same transaction that writes the clones."""

    row = session.exec(
        select(AutomationTask.task_id)
        .where(
            AutomationTask.tenant_key == job.tenant_key,
            AutomationTask.job_id == job.job_id,
            AutomationTask.task_type == TaskType.EXECUTION.value,
        )
        .limit(1),
    ).first()
    return row is not None
