"""Executor and completion backend interfaces for automation tasks."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from automation_runner.runner.models import (
    ExecutionIdentity,
    JobModel,
    JobView,
    TaskExecutionResult,
    TaskView,
)


@dataclass(slots=True)
class CompletionRequest:
    """Inputs required to produce one completion for a task attempt."""

    task_id: str
    prompt: str
    identity: ExecutionIdentity
    model: JobModel | None = None


@dataclass(slots=True)
class CompletionResult:
    """Completion text and the token usage the backend reported."""

    text: str
    total_tokens: int = 0


class CompletionBackend(Protocol):
    """Protocol implemented by completion backends."""

    def complete(self, request: CompletionRequest) -> CompletionResult:
        """Run one completion and return its text and usage."""


class TaskExecutor(Protocol):
    """Runs one attempt of an execution task.

    Implementations may raise; the retry controller records the exception
    message as the attempt's error.
    """

    def execute(self, job: JobView, task: TaskView) -> TaskExecutionResult:
        """Execute ``task`` on behalf of ``job`` and report the outcome."""
