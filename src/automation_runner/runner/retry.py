"""Bounded per-task retry loop with exponential backoff."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from automation_runner.runner.backoff import BackoffPolicy
from automation_runner.runner.executor import TaskExecutor
from automation_runner.runner.lease import LeaseManager
from automation_runner.runner.models import (
    AuditActor,
    JobView,
    Lease,
    TaskRunOutcome,
    TaskStatus,
    TaskView,
)
from automation_runner.runner.repository import AutomationRepository

logger = logging.getLogger(__name__)

MIN_TASK_DURATION_SECONDS = 0.1


class RetryController:
    """Drives one execution task through at most ``retry_limit + 1`` attempts."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: AutomationRepository,
        lease_manager: LeaseManager,
        executor: TaskExecutor,
        backoff: BackoffPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.repository = repository
        self.lease_manager = lease_manager
        self.executor = executor
        self.backoff = backoff or BackoffPolicy()
        self._sleep = sleep
        self._clock = clock

    def run_task(
        self,
        *,
        job: JobView,
        task: TaskView,
        lease: Lease,
        actor: AuditActor,
    ) -> TaskRunOutcome:
        started = self._clock()
        max_attempts = max(0, job.retry_limit) + 1
        last_error: str | None = None

        for attempt in range(max_attempts):
            if not self.lease_manager.ensure(lease):
                return TaskRunOutcome.LEASE_LOST

            if not self.repository.mark_task_running(task=task, lease_id=lease.lease_id, actor=actor):
                logger.info(
                    "Task no longer runnable, skipping: job_id=%s task_id=%s",
                    job.job_id,
                    task.task_id,
                )
                return TaskRunOutcome.STOPPED

            try:
                result = self.executor.execute(job, task)
            except Exception as error:  # noqa: BLE001
                last_error = str(error) or type(error).__name__
                logger.error(
                    "Task execution raised: job_id=%s task_id=%s attempt=%d/%d error=%s",
                    job.job_id,
                    task.task_id,
                    attempt + 1,
                    max_attempts,
                    last_error,
                )
            else:
                if not self.lease_manager.ensure(lease):
                    return TaskRunOutcome.LEASE_LOST
                if result.status == TaskStatus.COMPLETED:
                    return self._complete(
                        job=job,
                        task=task,
                        lease=lease,
                        actor=actor,
                        output_preview=result.output_preview or task.output_preview,
                        tokens=result.tokens if result.tokens is not None else task.tokens or 0,
                        duration_seconds=(
                            result.duration_seconds
                            if result.duration_seconds is not None
                            else self._elapsed(started)
                        ),
                    )
                last_error = result.error_message or "Task execution failed"
                logger.warning(
                    "Task attempt failed: job_id=%s task_id=%s attempt=%d/%d error=%s",
                    job.job_id,
                    task.task_id,
                    attempt + 1,
                    max_attempts,
                    last_error,
                )

            if attempt + 1 < max_attempts:
                self._sleep(self.backoff.delay(attempt))

        if not self.lease_manager.ensure(lease):
            return TaskRunOutcome.LEASE_LOST
        failed = self.repository.fail_task(
            task=task,
            lease_id=lease.lease_id,
            error_message=last_error or "Unknown error after retries",
            duration_seconds=self._elapsed(started),
            actor=actor,
        )
        if not failed:
            return TaskRunOutcome.STOPPED
        return TaskRunOutcome.ERROR

    def _complete(  # noqa: PLR0913
        self,
        *,
        job: JobView,
        task: TaskView,
        lease: Lease,
        actor: AuditActor,
        output_preview: str | None,
        tokens: int,
        duration_seconds: float,
    ) -> TaskRunOutcome:
        completed = self.repository.complete_task(
            task=task,
            lease_id=lease.lease_id,
            output_preview=output_preview,
            tokens=tokens,
            duration_seconds=duration_seconds,
            actor=actor,
        )
        if not completed:
            logger.info(
                "Task changed while executing, result dropped: job_id=%s task_id=%s",
                job.job_id,
                task.task_id,
            )
            return TaskRunOutcome.STOPPED
        return TaskRunOutcome.COMPLETED

    def _elapsed(self, started: float) -> float:
        return round(max(MIN_TASK_DURATION_SECONDS, self._clock() - started), 2)
