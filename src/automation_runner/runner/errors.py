"""Exceptions raised by the automation runner and its operator actions."""

from __future__ import annotations


class AutomationRunnerError(RuntimeError):
    """Base exception for automation runner errors."""


class JobNotFoundError(AutomationRunnerError):
    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        super().__init__(f"Automation job not found: {job_id}")


class InvalidJobActionError(AutomationRunnerError):
    """Raised when an operator action is not allowed from the job's current state."""


class ConcurrentModificationError(AutomationRunnerError):
    """Raised when a conditioned update from an operator action hit zero rows."""

    def __init__(self, job_id: str, action: str) -> None:
        self.job_id = job_id
        self.action = action
        super().__init__(
            f"Job state changed concurrently while applying {action}; "
            f"please retry command (job_id={job_id}).",
        )


class TaskExecutionError(AutomationRunnerError):
    """Raised by executors when one task attempt cannot run."""


class MissingExecutionIdentityError(TaskExecutionError):
    def __init__(self, user_id: str | None) -> None:
        self.user_id = user_id
        if user_id is None:
            super().__init__("Job execution user not found")
        else:
            super().__init__(f"Execution user not found: {user_id}")
