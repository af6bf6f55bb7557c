"""Persistent job/task repository for the automation runner."""

from __future__ import annotations

import json
from collections import Counter
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from uuid import uuid4

from sqlalchemy import and_, or_
from sqlalchemy import update as sa_update
from sqlalchemy.sql.dml import Update
from sqlmodel import Session, col, select

from automation_runner.runner.errors import (
    ConcurrentModificationError,
    InvalidJobActionError,
    JobNotFoundError,
)
from automation_runner.runner.models import (
    TERMINAL_JOB_STATUSES,
    AuditActor,
    ExecutionIdentity,
    JobAction,
    JobCreate,
    JobDetails,
    JobModel,
    JobSchedule,
    JobStatus,
    JobTrigger,
    JobView,
    TaskStatus,
    TaskType,
    TaskView,
    ThreadGroupKind,
    ThreadGroupView,
)
from automation_runner.storage.alembic_runner import upgrade_head
from automation_runner.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from automation_runner.storage.sqlmodel_models import (
    DEFAULT_TENANT_KEY,
    AutomationJob,
    AutomationTask,
    ExecutionUser,
    ExecutionUserRole,
    ThreadGroup,
    ThreadMessage,
)

_CLAIMABLE_STATUS_FILTER = or_(
    col(AutomationJob.status) == JobStatus.RUNNING.value,
    and_(
        col(AutomationJob.status) == JobStatus.PENDING.value,
        col(AutomationJob.trigger) == JobTrigger.SCHEDULE.value,
    ),
)


def _update_statement(model: type[AutomationJob] | type[AutomationTask]) -> Update:
    """Bulk UPDATE whose ``rowcount`` is the compare-and-swap verdict."""

    return sa_update(model).execution_options(synchronize_session=False)


class AutomationRepository:
    """Job/task persistence facade backed by SQLModel + SQLite.

    Every state transition the runner depends on is a single conditioned
    ``UPDATE``; callers treat an affected-row count other than one as a lost
    race.  ``tenant_key`` scopes operator-facing reads and actions, while the
    runner-facing methods take the tenant from the job they act on.
    """

    def __init__(
        self,
        db_path: Path,
        *,
        tenant_key: str = DEFAULT_TENANT_KEY,
        sqlite_busy_timeout_ms: int = 5_000,
    ) -> None:
        self.db_path = db_path
        self.tenant_key = tenant_key
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Session committed on success and rolled back on any error."""

        with Session(self.engine) as session:
            try:
                yield session
                session.commit()
            except Exception:
                session.rollback()
                raise

    # -- identities and job authoring -----------------------------------------

    def create_execution_user(
        self,
        *,
        email: str,
        name: str | None = None,
        role: str = "user",
        roles: tuple[str, ...] = (),
        user_id: str | None = None,
    ) -> ExecutionIdentity:
        """Register a user that jobs can execute as."""

        user_id = user_id or str(uuid4())
        with self.transaction() as session:
            session.add(
                ExecutionUser(
                    user_id=user_id,
                    tenant_key=self.tenant_key,
                    name=name,
                    email=email,
                    role=role,
                    status="active",
                    created_at=utc_now(),
                ),
            )
            for extra_role in roles:
                session.add(
                    ExecutionUserRole(tenant_key=self.tenant_key, user_id=user_id, role=extra_role),
                )
        return ExecutionIdentity(
            user_id=user_id,
            tenant_key=self.tenant_key,
            email=email,
            role=role,
            status="active",
            name=name,
            roles=roles,
        )

    def get_execution_identity(self, *, tenant_key: str, user_id: str) -> ExecutionIdentity | None:
        with Session(self.engine) as session:
            user = session.exec(
                select(ExecutionUser).where(
                    ExecutionUser.tenant_key == tenant_key,
                    ExecutionUser.user_id == user_id,
                ),
            ).one_or_none()
            if user is None:
                return None
            roles = session.exec(
                select(ExecutionUserRole)
                .where(
                    ExecutionUserRole.tenant_key == tenant_key,
                    ExecutionUserRole.user_id == user_id,
                )
                .order_by(col(ExecutionUserRole.id).asc()),
            ).all()
            return ExecutionIdentity(
                user_id=user.user_id,
                tenant_key=user.tenant_key,
                email=user.email,
                role=user.role,
                status=user.status,
                name=user.name,
                roles=tuple(row.role for row in roles),
            )

    def create_job(self, payload: JobCreate) -> JobView:
        """Create a pending job together with its first template task."""

        now = utc_now()
        job_id = str(uuid4())
        ip = payload.created_ip or "127.0.0.1"
        with self.transaction() as session:
            row = AutomationJob(
                job_id=job_id,
                tenant_key=self.tenant_key,
                project_id=payload.project_id,
                name=payload.name,
                description=payload.description,
                status=JobStatus.PENDING.value,
                trigger=payload.trigger.value,
                schedule_json=_dump_schedule(payload.schedule)
                if payload.trigger == JobTrigger.SCHEDULE
                else None,
                model_json=_dump_model(payload.model),
                prompt_template=payload.prompt_template,
                snapshot_prompt=payload.prompt_template,
                retry_limit=payload.retry_limit,
                parallelism=payload.parallelism,
                execution_user_id=payload.execution_user_id,
                estimated_cost_usd=0.0,
                created_by=payload.execution_user_id,
                updated_by=payload.execution_user_id,
                created_ip=ip,
                updated_ip=ip,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.flush()
            self._add_template_task(
                session=session,
                job=row,
                title=payload.name,
                description=payload.description,
                prompt=payload.prompt_template,
                seq=0,
            )
            session.flush()
            session.refresh(row)
            return _to_job_view(row)

    def add_template_task(
        self,
        *,
        job_id: str,
        title: str,
        prompt: str,
        seq: int | None = None,
    ) -> TaskView:
        """Append another template task (and its conversation context) to a job."""

        with self.transaction() as session:
            job = self._get_job_row(session=session, tenant_key=self.tenant_key, job_id=job_id)
            if seq is None:
                existing = session.exec(
                    select(AutomationTask).where(
                        AutomationTask.tenant_key == self.tenant_key,
                        AutomationTask.job_id == job_id,
                        AutomationTask.task_type == TaskType.TEMPLATE.value,
                    ),
                ).all()
                seq = max((task.seq for task in existing), default=-1) + 1
            task = self._add_template_task(
                session=session,
                job=job,
                title=title,
                description=None,
                prompt=prompt,
                seq=seq,
            )
            session.flush()
            session.refresh(task)
            return _to_task_view(task)

    def _add_template_task(  # noqa: PLR0913
        self,
        *,
        session: Session,
        job: AutomationJob,
        title: str,
        description: str | None,
        prompt: str,
        seq: int,
    ) -> AutomationTask:
        now = utc_now()
        thread_group = ThreadGroup(
            thread_group_id=str(uuid4()),
            tenant_key=job.tenant_key,
            project_id=job.project_id,
            kind=ThreadGroupKind.TASK_TEMPLATE.value,
            title=title,
            description=description or "",
            created_by=job.created_by,
            created_at=now,
        )
        session.add(thread_group)
        session.add(
            ThreadMessage(
                thread_group_id=thread_group.thread_group_id,
                seq=0,
                role="user",
                content=prompt,
                created_at=now,
            ),
        )
        task = AutomationTask(
            task_id=str(uuid4()),
            tenant_key=job.tenant_key,
            job_id=job.job_id,
            project_id=job.project_id,
            thread_group_id=thread_group.thread_group_id,
            task_type=TaskType.TEMPLATE.value,
            seq=seq,
            status=TaskStatus.PENDING.value,
            input_preview=prompt[:180] if prompt else None,
            created_by=job.created_by,
            updated_by=job.created_by,
            created_ip=job.created_ip,
            updated_ip=job.created_ip,
            created_at=now,
            updated_at=now,
        )
        session.add(task)
        return task

    # -- reads ---------------------------------------------------------------

    def get_job(self, *, job_id: str, tenant_key: str | None = None) -> JobView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(AutomationJob).where(
                    AutomationJob.tenant_key == (tenant_key or self.tenant_key),
                    AutomationJob.job_id == job_id,
                ),
            ).one_or_none()
            return _to_job_view(row) if row is not None else None

    def list_jobs(self, *, status: JobStatus | None = None, limit: int = 50) -> list[JobView]:
        """List recent jobs for the repository tenant, optionally filtered by status."""

        with Session(self.engine) as session:
            statement = (
                select(AutomationJob)
                .where(AutomationJob.tenant_key == self.tenant_key)
                .order_by(col(AutomationJob.created_at).desc())
                .limit(limit)
            )
            if status is not None:
                statement = statement.where(AutomationJob.status == status.value)
            rows = session.exec(statement).all()
        return [_to_job_view(row) for row in rows]

    def get_job_details(self, *, job_id: str) -> JobDetails | None:
        """Return a job with its execution tasks and per-status counts."""

        job = self.get_job(job_id=job_id)
        if job is None:
            return None
        tasks = self.list_tasks(
            tenant_key=job.tenant_key,
            job_id=job.job_id,
            task_type=TaskType.EXECUTION,
        )
        counts = Counter(task.status.value for task in tasks)
        progress = {status.value: counts.get(status.value, 0) for status in TaskStatus}
        progress["total"] = len(tasks)
        return JobDetails(job=job, tasks=tasks, progress=progress)

    def list_tasks(
        self,
        *,
        tenant_key: str,
        job_id: str,
        task_type: TaskType | None = None,
    ) -> list[TaskView]:
        """Tasks of one job in execution order."""

        with Session(self.engine) as session:
            statement = (
                select(AutomationTask)
                .where(
                    AutomationTask.tenant_key == tenant_key,
                    AutomationTask.job_id == job_id,
                )
                .order_by(col(AutomationTask.seq).asc(), col(AutomationTask.created_at).asc())
            )
            if task_type is not None:
                statement = statement.where(AutomationTask.task_type == task_type.value)
            rows = session.exec(statement).all()
        return [_to_task_view(row) for row in rows]

    def get_task(self, *, tenant_key: str, task_id: str) -> TaskView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(AutomationTask).where(
                    AutomationTask.tenant_key == tenant_key,
                    AutomationTask.task_id == task_id,
                ),
            ).one_or_none()
            return _to_task_view(row) if row is not None else None

    def get_thread_group(self, *, tenant_key: str, thread_group_id: str) -> ThreadGroupView | None:
        with Session(self.engine) as session:
            row = find_thread_group(
                session=session,
                tenant_key=tenant_key,
                thread_group_id=thread_group_id,
            )
            return _to_thread_group_view(row) if row is not None else None

    def last_user_message(self, *, thread_group_id: str) -> str | None:
        """Latest user-authored message of a conversation context."""

        with Session(self.engine) as session:
            row = session.exec(
                select(ThreadMessage)
                .where(
                    ThreadMessage.thread_group_id == thread_group_id,
                    ThreadMessage.role == "user",
                )
                .order_by(col(ThreadMessage.seq).desc(), col(ThreadMessage.id).desc())
                .limit(1),
            ).one_or_none()
            return row.content if row is not None else None

    # -- lease transitions ---------------------------------------------------

    def list_claimable_jobs(self, *, now: datetime, limit: int) -> list[JobView]:
        """Unfinished jobs whose lease is free or expired, oldest update first.

        The scan spans all tenants; each claim is still keyed by tenant.
        """

        with Session(self.engine) as session:
            rows = session.exec(
                select(AutomationJob)
                .where(
                    _CLAIMABLE_STATUS_FILTER,
                    col(AutomationJob.completed_at).is_(None),
                    or_(
                        col(AutomationJob.lease_id).is_(None),
                        col(AutomationJob.lease_expires_at) <= to_db_datetime(now),
                    ),
                )
                .order_by(col(AutomationJob.updated_at).asc())
                .limit(limit),
            ).all()
        return [_to_job_view(row) for row in rows]

    def claim_job(  # noqa: PLR0913
        self,
        *,
        job: JobView,
        lease_id: str,
        lease_expires_at: datetime,
        now: datetime,
        actor: AuditActor,
    ) -> bool:
        """Compare-and-swap the lease onto a job; true only for the single winner."""

        values: dict[str, object] = {
            "lease_id": lease_id,
            "lease_expires_at": to_db_datetime(lease_expires_at),
            "updated_at": to_db_datetime(now),
        }
        if job.status == JobStatus.PENDING and job.trigger == JobTrigger.SCHEDULE:
            values["status"] = JobStatus.RUNNING.value
            values["updated_by"] = actor.user_id
            values["updated_ip"] = actor.ip

        with Session(self.engine) as session:
            result = session.exec(
                _update_statement(AutomationJob)
                .where(
                    col(AutomationJob.tenant_key) == job.tenant_key,
                    col(AutomationJob.job_id) == job.job_id,
                    col(AutomationJob.completed_at).is_(None),
                    or_(
                        col(AutomationJob.lease_id).is_(None),
                        col(AutomationJob.lease_expires_at) <= to_db_datetime(now),
                    ),
                    _CLAIMABLE_STATUS_FILTER,
                )
                .values(**values),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def renew_lease(  # noqa: PLR0913
        self,
        *,
        tenant_key: str,
        job_id: str,
        lease_id: str,
        lease_expires_at: datetime,
        now: datetime,
    ) -> bool:
        """Extend a lease that is still held and not yet expired."""

        with Session(self.engine) as session:
            result = session.exec(
                _update_statement(AutomationJob)
                .where(
                    col(AutomationJob.tenant_key) == tenant_key,
                    col(AutomationJob.job_id) == job_id,
                    col(AutomationJob.lease_id) == lease_id,
                    col(AutomationJob.lease_expires_at) > to_db_datetime(now),
                )
                .values(
                    lease_expires_at=to_db_datetime(lease_expires_at),
                    updated_at=to_db_datetime(now),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def release_lease(self, *, tenant_key: str, job_id: str, lease_id: str) -> bool:
        """Clear lease fields if this lease still owns the job."""

        with Session(self.engine) as session:
            result = session.exec(
                _update_statement(AutomationJob)
                .where(
                    col(AutomationJob.tenant_key) == tenant_key,
                    col(AutomationJob.job_id) == job_id,
                    col(AutomationJob.lease_id) == lease_id,
                )
                .values(lease_id=None, lease_expires_at=None),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def start_run(  # noqa: PLR0913
        self,
        *,
        tenant_key: str,
        job_id: str,
        lease_id: str,
        run_id: str,
        started_at: datetime,
        actor: AuditActor,
    ) -> bool:
        """Stamp ``started_at`` and the run id exactly once, under the held lease."""

        with Session(self.engine) as session:
            result = session.exec(
                _update_statement(AutomationJob)
                .where(
                    col(AutomationJob.tenant_key) == tenant_key,
                    col(AutomationJob.job_id) == job_id,
                    col(AutomationJob.lease_id) == lease_id,
                    col(AutomationJob.started_at).is_(None),
                )
                .values(
                    started_at=to_db_datetime(started_at),
                    last_run_id=run_id,
                    updated_by=actor.user_id,
                    updated_ip=actor.ip,
                    updated_at=to_db_datetime(started_at),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def finalize_job(  # noqa: PLR0913
        self,
        *,
        tenant_key: str,
        job_id: str,
        lease_id: str,
        status: JobStatus,
        completed_at: datetime,
        duration_seconds: int | None,
        estimated_cost_usd: float,
        actor: AuditActor,
    ) -> bool:
        """Write the terminal job state and drop the lease in one conditioned update."""

        if status not in TERMINAL_JOB_STATUSES:
            raise ValueError(f"Unsupported terminal status: {status}")

        with Session(self.engine) as session:
            result = session.exec(
                _update_statement(AutomationJob)
                .where(
                    col(AutomationJob.tenant_key) == tenant_key,
                    col(AutomationJob.job_id) == job_id,
                    col(AutomationJob.lease_id) == lease_id,
                )
                .values(
                    status=status.value,
                    completed_at=to_db_datetime(completed_at),
                    duration_seconds=duration_seconds,
                    estimated_cost_usd=estimated_cost_usd,
                    lease_id=None,
                    lease_expires_at=None,
                    updated_by=actor.user_id,
                    updated_ip=actor.ip,
                    updated_at=to_db_datetime(completed_at),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    # -- task transitions ----------------------------------------------------

    def create_default_task(
        self,
        *,
        job: JobView,
        run_id: str | None,
        input_preview: str,
        actor: AuditActor,
    ) -> TaskView:
        """Seed the single execution task of a job that has no templates."""

        now = utc_now()
        with self.transaction() as session:
            row = AutomationTask(
                task_id=str(uuid4()),
                tenant_key=job.tenant_key,
                job_id=job.job_id,
                project_id=job.project_id,
                thread_group_id=None,
                task_type=TaskType.EXECUTION.value,
                seq=0,
                run_id=run_id,
                status=TaskStatus.PENDING.value,
                input_preview=input_preview,
                created_by=actor.user_id,
                updated_by=actor.user_id,
                created_ip=actor.ip,
                updated_ip=actor.ip,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.flush()
            session.refresh(row)
            return _to_task_view(row)

    def mark_task_running(self, *, task: TaskView, lease_id: str, actor: AuditActor) -> bool:
        """Move a pending/running task to running while the job lease is held."""

        return self._update_task(
            task=task,
            lease_id=lease_id,
            allowed_statuses=(TaskStatus.PENDING, TaskStatus.RUNNING),
            values={
                "status": TaskStatus.RUNNING.value,
                "updated_by": actor.user_id,
                "updated_ip": actor.ip,
            },
        )

    def complete_task(  # noqa: PLR0913
        self,
        *,
        task: TaskView,
        lease_id: str,
        output_preview: str | None,
        tokens: int,
        duration_seconds: float,
        actor: AuditActor,
    ) -> bool:
        return self._update_task(
            task=task,
            lease_id=lease_id,
            allowed_statuses=(TaskStatus.RUNNING,),
            values={
                "status": TaskStatus.COMPLETED.value,
                "output_preview": output_preview,
                "tokens": tokens,
                "duration_seconds": duration_seconds,
                "error_message": None,
                "updated_by": actor.user_id,
                "updated_ip": actor.ip,
            },
        )

    def fail_task(
        self,
        *,
        task: TaskView,
        lease_id: str,
        error_message: str,
        duration_seconds: float,
        actor: AuditActor,
    ) -> bool:
        return self._update_task(
            task=task,
            lease_id=lease_id,
            allowed_statuses=(TaskStatus.RUNNING,),
            values={
                "status": TaskStatus.ERROR.value,
                "error_message": error_message,
                "duration_seconds": duration_seconds,
                "updated_by": actor.user_id,
                "updated_ip": actor.ip,
            },
        )

    def _update_task(
        self,
        *,
        task: TaskView,
        lease_id: str,
        allowed_statuses: tuple[TaskStatus, ...],
        values: dict[str, object],
    ) -> bool:
        lease_holder = select(AutomationJob.job_id).where(
            AutomationJob.tenant_key == task.tenant_key,
            AutomationJob.job_id == task.job_id,
            AutomationJob.lease_id == lease_id,
        )
        with Session(self.engine) as session:
            result = session.exec(
                _update_statement(AutomationTask)
                .where(
                    col(AutomationTask.tenant_key) == task.tenant_key,
                    col(AutomationTask.task_id) == task.task_id,
                    col(AutomationTask.status).in_([status.value for status in allowed_statuses]),
                    col(AutomationTask.job_id).in_(lease_holder),
                )
                .values(**values, updated_at=to_db_datetime(utc_now())),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    # -- operator actions ----------------------------------------------------

    def apply_job_action(
        self,
        *,
        job_id: str,
        action: JobAction,
        actor: AuditActor,
    ) -> JobView:
        """Apply an out-of-band stop/retry/resume action.

        These writes bypass the lease on purpose: the runner notices them on its
        next conditioned update or refetch and backs off.
        """

        now = utc_now()
        with self.transaction() as session:
            row = self._get_job_row(session=session, tenant_key=self.tenant_key, job_id=job_id)
            previous = JobStatus(row.status)
            job_values: dict[str, object] = {
                "lease_id": None,
                "lease_expires_at": None,
                "updated_by": actor.user_id,
                "updated_ip": actor.ip,
                "updated_at": to_db_datetime(now),
            }

            if action in {JobAction.STOP, JobAction.CANCEL}:
                if previous not in {JobStatus.PENDING, JobStatus.RUNNING}:
                    raise InvalidJobActionError(
                        f"Job cannot be stopped from status={previous.value}",
                    )
                self._set_execution_task_status(
                    session=session,
                    job_id=job_id,
                    from_statuses=(TaskStatus.PENDING, TaskStatus.RUNNING),
                    to_status=TaskStatus.STOPPED,
                    actor=actor,
                    now=now,
                )
                started_at = (
                    to_utc_aware_datetime(row.started_at) if row.started_at is not None else None
                )
                job_values.update(
                    status=JobStatus.STOPPED.value,
                    completed_at=to_db_datetime(now),
                    duration_seconds=_elapsed_seconds(started_at, now),
                )
            elif action in {JobAction.RETRY, JobAction.RETRY_ERRORS}:
                from_statuses = (
                    tuple(TaskStatus) if action == JobAction.RETRY else (TaskStatus.ERROR,)
                )
                self._set_execution_task_status(
                    session=session,
                    job_id=job_id,
                    from_statuses=from_statuses,
                    to_status=TaskStatus.PENDING,
                    actor=actor,
                    now=now,
                )
                job_values.update(
                    status=JobStatus.PENDING.value,
                    started_at=None,
                    completed_at=None,
                    duration_seconds=None,
                    last_run_id=None,
                )
            elif action == JobAction.RESUME:
                job_values.update(
                    status=JobStatus.RUNNING.value,
                    completed_at=None,
                    duration_seconds=None,
                )
            else:  # pragma: no cover - exhaustive over JobAction
                raise InvalidJobActionError(f"Unsupported job action: {action}")

            result = session.exec(
                _update_statement(AutomationJob)
                .where(
                    col(AutomationJob.tenant_key) == self.tenant_key,
                    col(AutomationJob.job_id) == job_id,
                    col(AutomationJob.status) == previous.value,
                )
                .values(**job_values),
            )
            if result.rowcount != 1:
                raise ConcurrentModificationError(job_id, action.value)

            session.expire_all()
            refreshed = self._get_job_row(session=session, tenant_key=self.tenant_key, job_id=job_id)
            return _to_job_view(refreshed)

    def _set_execution_task_status(  # noqa: PLR0913
        self,
        *,
        session: Session,
        job_id: str,
        from_statuses: tuple[TaskStatus, ...],
        to_status: TaskStatus,
        actor: AuditActor,
        now: datetime,
    ) -> None:
        session.exec(
            _update_statement(AutomationTask)
            .where(
                col(AutomationTask.tenant_key) == self.tenant_key,
                col(AutomationTask.job_id) == job_id,
                col(AutomationTask.task_type) == TaskType.EXECUTION.value,
                col(AutomationTask.status).in_([status.value for status in from_statuses]),
            )
            .values(
                status=to_status.value,
                updated_by=actor.user_id,
                updated_ip=actor.ip,
                updated_at=to_db_datetime(now),
            ),
        )

    def _get_job_row(self, *, session: Session, tenant_key: str, job_id: str) -> AutomationJob:
        row = session.exec(
            select(AutomationJob).where(
                AutomationJob.tenant_key == tenant_key,
                AutomationJob.job_id == job_id,
            ),
        ).one_or_none()
        if row is None:
            raise JobNotFoundError(job_id)
        return row


def find_thread_group(
    *,
    session: Session,
    tenant_key: str,
    thread_group_id: str | None,
) -> ThreadGroup | None:
    if thread_group_id is None:
        return None
    return session.exec(
        select(ThreadGroup).where(
            ThreadGroup.tenant_key == tenant_key,
            ThreadGroup.thread_group_id == thread_group_id,
        ),
    ).one_or_none()


def _elapsed_seconds(started_at: datetime | None, now: datetime) -> int | None:
    if started_at is None:
        return None
    return max(0, round((now - started_at).total_seconds()))


def _dump_schedule(schedule: JobSchedule | None) -> str | None:
    if schedule is None:
        return None
    return json.dumps({"cron": schedule.cron, "timezone": schedule.timezone}, sort_keys=True)


def _dump_model(model: JobModel | None) -> str | None:
    if model is None:
        return None
    return json.dumps({"provider": model.provider, "model_id": model.model_id}, sort_keys=True)


def _load_schedule(raw: str | None) -> JobSchedule | None:
    if not raw:
        return None
    parsed = json.loads(raw)
    if not isinstance(parsed, dict) or "cron" not in parsed:
        return None
    return JobSchedule(cron=str(parsed["cron"]), timezone=str(parsed.get("timezone", "UTC")))


def _load_model(raw: str | None) -> JobModel | None:
    if not raw:
        return None
    parsed = json.loads(raw)
    if not isinstance(parsed, dict):
        return None
    return JobModel(
        provider=str(parsed.get("provider", "")),
        model_id=str(parsed.get("model_id", "")),
    )


def _optional_aware(value: datetime | None) -> datetime | None:
    return to_utc_aware_datetime(value) if value is not None else None


def _to_job_view(row: AutomationJob) -> JobView:
    return JobView(
        job_id=row.job_id,
        tenant_key=row.tenant_key,
        project_id=row.project_id,
        name=row.name,
        description=row.description,
        status=JobStatus(row.status),
        trigger=JobTrigger(row.trigger),
        schedule=_load_schedule(row.schedule_json),
        model=_load_model(row.model_json),
        prompt_template=row.prompt_template,
        snapshot_prompt=row.snapshot_prompt,
        started_at=_optional_aware(row.started_at),
        completed_at=_optional_aware(row.completed_at),
        duration_seconds=row.duration_seconds,
        lease_id=row.lease_id,
        lease_expires_at=_optional_aware(row.lease_expires_at),
        last_run_id=row.last_run_id,
        retry_limit=row.retry_limit,
        parallelism=row.parallelism,
        execution_user_id=row.execution_user_id,
        estimated_cost_usd=row.estimated_cost_usd,
        created_by=row.created_by,
        updated_by=row.updated_by,
        created_ip=row.created_ip,
        updated_ip=row.updated_ip,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )


def _to_task_view(row: AutomationTask) -> TaskView:
    return TaskView(
        task_id=row.task_id,
        tenant_key=row.tenant_key,
        job_id=row.job_id,
        project_id=row.project_id,
        thread_group_id=row.thread_group_id,
        task_type=TaskType(row.task_type),
        seq=row.seq,
        template_task_id=row.template_task_id,
        run_id=row.run_id,
        status=TaskStatus(row.status),
        input_preview=row.input_preview,
        output_preview=row.output_preview,
        error_message=row.error_message,
        tokens=row.tokens,
        duration_seconds=row.duration_seconds,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )


def _to_thread_group_view(row: ThreadGroup) -> ThreadGroupView:
    return ThreadGroupView(
        thread_group_id=row.thread_group_id,
        tenant_key=row.tenant_key,
        project_id=row.project_id,
        kind=ThreadGroupKind(row.kind),
        title=row.title,
        description=row.description,
    )
