"""Shared test fixtures."""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterator
from datetime import datetime, timedelta
from pathlib import Path

import pytest
from sqlalchemy import update
from sqlmodel import col

from automation_runner.runner.models import (
    ExecutionIdentity,
    JobCreate,
    JobSchedule,
    JobTrigger,
    JobView,
    TaskExecutionResult,
    TaskStatus,
    TaskView,
)
from automation_runner.runner.repository import AutomationRepository
from automation_runner.storage.common import to_db_datetime
from automation_runner.storage.sqlmodel_models import AutomationJob


class ScriptedExecutor:
    """Task executor replaying a fixed script of results and exceptions.

    The last entry repeats once the script is exhausted.
    """

    def __init__(self, script: list[TaskExecutionResult | Exception]) -> None:
        self.script = list(script)
        self.calls: list[tuple[str, str]] = []
        self._lock = threading.Lock()

    def execute(self, job: JobView, task: TaskView) -> TaskExecutionResult:
        with self._lock:
            self.calls.append((job.job_id, task.task_id))
            index = min(len(self.calls), len(self.script)) - 1
        step = self.script[index]
        if isinstance(step, Exception):
            raise step
        return step


def completed_result(*, tokens: int = 100, text: str = "done") -> TaskExecutionResult:
    return TaskExecutionResult(
        status=TaskStatus.COMPLETED,
        output_preview=text,
        tokens=tokens,
        duration_seconds=0.5,
    )


def error_result(message: str = "backend failed") -> TaskExecutionResult:
    return TaskExecutionResult(status=TaskStatus.ERROR, error_message=message, duration_seconds=0)


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "automation.db"


@pytest.fixture()
def repository(db_path: Path) -> Iterator[AutomationRepository]:
    repo = AutomationRepository(db_path)
    repo.init_schema()
    try:
        yield repo
    finally:
        repo.close()


@pytest.fixture()
def execution_user(repository: AutomationRepository) -> ExecutionIdentity:
    return repository.create_execution_user(
        email="runner@example.com",
        name="Runner",
        roles=("automation",),
        user_id="user-runner",
    )


@pytest.fixture()
def make_job(
    repository: AutomationRepository,
    execution_user: ExecutionIdentity,
) -> Callable[..., JobView]:
    """Create a job; scheduled jobs are immediately claimable."""

    def _make(
        *,
        name: str = "Daily digest",
        prompt: str = "Summarize yesterday's tickets.",
        trigger: JobTrigger = JobTrigger.SCHEDULE,
        retry_limit: int = 0,
        execution_user_id: str | None = None,
    ) -> JobView:
        return repository.create_job(
            JobCreate(
                project_id="project-1",
                name=name,
                prompt_template=prompt,
                execution_user_id=execution_user_id or execution_user.user_id,
                trigger=trigger,
                schedule=(
                    JobSchedule(cron="0 9 * * *", timezone="UTC")
                    if trigger == JobTrigger.SCHEDULE
                    else None
                ),
                retry_limit=retry_limit,
                created_ip="10.0.0.1",
            ),
        )

    return _make


@pytest.fixture()
def set_job_columns(repository: AutomationRepository) -> Callable[..., None]:
    """Write job columns directly, bypassing every runner condition."""

    def _set(job_id: str, **values: object) -> None:
        converted = {
            key: to_db_datetime(value) if isinstance(value, datetime) else value
            for key, value in values.items()
        }
        with repository.transaction() as session:
            session.exec(
                update(AutomationJob)
                .where(col(AutomationJob.job_id) == job_id)
                .values(**converted)
                .execution_options(synchronize_session=False),
            )

    return _set


class FakeClock:
    """Mutable UTC clock for lease arithmetic."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)
