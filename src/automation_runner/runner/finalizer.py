"""Derive and persist a job's terminal state once all its tasks settled."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from automation_runner.runner.lease import LeaseManager
from automation_runner.runner.models import (
    UNSETTLED_TASK_STATUSES,
    AuditActor,
    FinalizeOutcome,
    JobStatus,
    JobView,
    Lease,
    TaskStatus,
    TaskType,
    TaskView,
)
from automation_runner.runner.pricing import estimate_job_cost_usd
from automation_runner.runner.repository import AutomationRepository
from automation_runner.storage.common import utc_now

logger = logging.getLogger(__name__)


def resolve_job_status(tasks: list[TaskView]) -> JobStatus:
    """Stopped wins over error, error wins over completed."""

    statuses = {task.status for task in tasks}
    if TaskStatus.STOPPED in statuses:
        return JobStatus.STOPPED
    if TaskStatus.ERROR in statuses:
        return JobStatus.ERROR
    return JobStatus.COMPLETED


class Finalizer:
    def __init__(
        self,
        *,
        repository: AutomationRepository,
        lease_manager: LeaseManager,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.repository = repository
        self.lease_manager = lease_manager
        self._clock = clock

    def finalize(self, *, job: JobView, lease: Lease, actor: AuditActor) -> FinalizeOutcome:
        """Write the terminal status if nothing is left to run and the lease is ours."""

        tasks = self.repository.list_tasks(
            tenant_key=job.tenant_key,
            job_id=job.job_id,
            task_type=TaskType.EXECUTION,
        )
        if any(task.status in UNSETTLED_TASK_STATUSES for task in tasks):
            return FinalizeOutcome.PENDING

        fresh = self.repository.get_job(job_id=job.job_id, tenant_key=job.tenant_key)
        if fresh is None or fresh.lease_id != lease.lease_id:
            return FinalizeOutcome.LEASE_LOST
        if fresh.status != JobStatus.RUNNING:
            logger.info(
                "Job %s changed externally to %s; releasing lease",
                fresh.job_id,
                fresh.status.value,
            )
            self.lease_manager.release(lease)
            return FinalizeOutcome.EXTERNALLY_CHANGED

        now = self._clock()
        started_at = fresh.started_at
        duration_seconds = (
            max(0, round((now - started_at).total_seconds())) if started_at is not None else None
        )
        status = resolve_job_status(tasks)
        finalized = self.repository.finalize_job(
            tenant_key=fresh.tenant_key,
            job_id=fresh.job_id,
            lease_id=lease.lease_id,
            status=status,
            completed_at=now,
            duration_seconds=duration_seconds,
            estimated_cost_usd=estimate_job_cost_usd(tasks),
            actor=actor,
        )
        if not finalized:
            return FinalizeOutcome.LEASE_LOST
        logger.info(
            "Job %s finalized: status=%s tasks=%d duration_seconds=%s",
            fresh.job_id,
            status.value,
            len(tasks),
            duration_seconds,
        )
        return FinalizeOutcome.FINALIZED
