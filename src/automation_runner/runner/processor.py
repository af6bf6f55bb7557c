"""One processing pass over a claimed automation job."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from automation_runner.runner.finalizer import Finalizer
from automation_runner.runner.lease import LeaseManager, system_actor
from automation_runner.runner.materializer import TaskMaterializer, new_run_id
from automation_runner.runner.models import (
    UNSETTLED_TASK_STATUSES,
    ClaimedJob,
    FinalizeOutcome,
    JobStatus,
    RunnerSummary,
    TaskRunOutcome,
)
from automation_runner.runner.repository import AutomationRepository
from automation_runner.runner.retry import RetryController
from automation_runner.storage.common import utc_now

logger = logging.getLogger(__name__)


class JobProcessor:
    """Runs a claimed job from lease check to finalization.

    Every step is idempotent against a crash: a later pass by any runner
    reuses the run stamp and the execution tasks this pass committed.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: AutomationRepository,
        lease_manager: LeaseManager,
        materializer: TaskMaterializer,
        retry_controller: RetryController,
        finalizer: Finalizer,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.repository = repository
        self.lease_manager = lease_manager
        self.materializer = materializer
        self.retry_controller = retry_controller
        self.finalizer = finalizer
        self._clock = clock

    def process(self, claimed: ClaimedJob) -> RunnerSummary:  # noqa: C901, PLR0911
        summary = RunnerSummary(processed=1)
        lease = claimed.lease

        if not self.lease_manager.ensure(lease):
            summary.lease_lost = 1
            return summary

        job = self.repository.get_job(job_id=lease.job_id, tenant_key=lease.tenant_key)
        if job is None or job.lease_id != lease.lease_id:
            summary.lease_lost = 1
            return summary
        if job.status != JobStatus.RUNNING:
            logger.info("Job %s is %s, nothing to run", job.job_id, job.status.value)
            return summary

        actor = system_actor(job)
        if job.started_at is None:
            started_at = self._clock()
            run_id = new_run_id()
            started = self.repository.start_run(
                tenant_key=job.tenant_key,
                job_id=job.job_id,
                lease_id=lease.lease_id,
                run_id=run_id,
                started_at=started_at,
                actor=actor,
            )
            if not started:
                logger.warning("Could not stamp run start for job %s; aborting pass", job.job_id)
                summary.lease_lost = 1
                return summary
            job.started_at = started_at
            job.last_run_id = run_id
            logger.info("Job %s started run %s", job.job_id, run_id)

        tasks = self.materializer.ensure_tasks(job=job, actor=actor)
        for task in sorted(tasks, key=lambda item: item.seq):
            if not self.lease_manager.ensure(lease):
                summary.lease_lost = 1
                return summary
            if task.status not in UNSETTLED_TASK_STATUSES:
                continue

            outcome = self.retry_controller.run_task(job=job, task=task, lease=lease, actor=actor)
            if outcome == TaskRunOutcome.COMPLETED:
                summary.tasks_completed += 1
            elif outcome == TaskRunOutcome.ERROR:
                summary.tasks_errored += 1
            elif outcome == TaskRunOutcome.LEASE_LOST:
                summary.lease_lost = 1
                return summary

        finalized = self.finalizer.finalize(job=job, lease=lease, actor=actor)
        if finalized == FinalizeOutcome.FINALIZED:
            summary.finalized = 1
        elif finalized == FinalizeOutcome.LEASE_LOST:
            summary.lease_lost = 1
        return summary
