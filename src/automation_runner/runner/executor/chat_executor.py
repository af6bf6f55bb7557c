"""Task executor that answers a task's conversation through a completion backend."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from automation_runner.runner.errors import MissingExecutionIdentityError, TaskExecutionError
from automation_runner.runner.executor.base import CompletionBackend, CompletionRequest
from automation_runner.runner.identity import IdentityResolver
from automation_runner.runner.models import (
    ExecutionIdentity,
    JobView,
    TaskExecutionResult,
    TaskStatus,
    TaskView,
)
from automation_runner.runner.repository import AutomationRepository

logger = logging.getLogger(__name__)

OUTPUT_PREVIEW_CHARS = 500


class ChatTaskExecutor:
    """Runs a task as its job's execution user.

    A missing execution user raises, so the attempt is retried and recorded
    like any other thrown failure. Problems after the identity is known are
    reported as an ``error`` result instead.
    """

    def __init__(
        self,
        *,
        repository: AutomationRepository,
        identity_resolver: IdentityResolver,
        backend: CompletionBackend,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.repository = repository
        self.identity_resolver = identity_resolver
        self.backend = backend
        self._clock = clock

    def execute(self, job: JobView, task: TaskView) -> TaskExecutionResult:
        identity = self._resolve_identity(job)
        started = self._clock()
        try:
            prompt = self._load_prompt(job=job, task=task)
            completion = self.backend.complete(
                CompletionRequest(
                    task_id=task.task_id,
                    prompt=prompt,
                    identity=identity,
                    model=job.model,
                ),
            )
        except Exception as error:  # noqa: BLE001
            logger.error(
                "Task execution failed: job_id=%s task_id=%s error=%s",
                job.job_id,
                task.task_id,
                error,
            )
            return TaskExecutionResult(
                status=TaskStatus.ERROR,
                error_message=str(error) or type(error).__name__,
                duration_seconds=0,
            )

        duration_seconds = self._clock() - started
        logger.info(
            "Task executed: job_id=%s task_id=%s user_id=%s tokens=%d output_chars=%d",
            job.job_id,
            task.task_id,
            identity.user_id,
            completion.total_tokens,
            len(completion.text),
        )
        return TaskExecutionResult(
            status=TaskStatus.COMPLETED,
            output_preview=completion.text[:OUTPUT_PREVIEW_CHARS],
            tokens=completion.total_tokens,
            duration_seconds=duration_seconds,
        )

    def _resolve_identity(self, job: JobView) -> ExecutionIdentity:
        if not job.execution_user_id:
            raise MissingExecutionIdentityError(None)
        identity = self.identity_resolver.resolve(
            tenant_key=job.tenant_key,
            user_id=job.execution_user_id,
        )
        if identity is None:
            raise MissingExecutionIdentityError(job.execution_user_id)
        return identity

    def _load_prompt(self, *, job: JobView, task: TaskView) -> str:
        # Default tasks carry no conversation; they run the job prompt.
        if task.thread_group_id is None:
            prompt = job.snapshot_prompt or job.prompt_template or task.input_preview
            if not prompt:
                raise TaskExecutionError(f"No prompt available for task {task.task_id}")
            return prompt

        thread_group = self.repository.get_thread_group(
            tenant_key=task.tenant_key,
            thread_group_id=task.thread_group_id,
        )
        if thread_group is None:
            raise TaskExecutionError(f"Thread group not found: {task.thread_group_id}")
        message = self.repository.last_user_message(thread_group_id=thread_group.thread_group_id)
        if message is None:
            raise TaskExecutionError(
                f"No user messages found for thread group: {thread_group.thread_group_id}",
            )
        return message
