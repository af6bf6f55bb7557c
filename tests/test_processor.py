from __future__ import annotations

import allure
import pytest
from conftest import ScriptedExecutor, completed_result, error_result

from automation_runner.config import RunnerSettings, Settings
from automation_runner.runner.backoff import BackoffPolicy
from automation_runner.runner.finalizer import Finalizer
from automation_runner.runner.lease import LeaseManager, system_actor
from automation_runner.runner.materializer import TaskMaterializer
from automation_runner.runner.models import (
    AuditActor,
    JobAction,
    JobStatus,
    TaskStatus,
    TaskType,
)
from automation_runner.runner.processor import JobProcessor
from automation_runner.runner.retry import RetryController
from automation_runner.runner.services import build_poller
from automation_runner.storage.common import utc_now

pytestmark = [
    allure.epic("Automation Runner"),
    allure.feature("Processing Pass"),
]


def _processor(repository, executor) -> tuple[LeaseManager, JobProcessor]:
    manager = LeaseManager(repository=repository)
    processor = JobProcessor(
        repository=repository,
        lease_manager=manager,
        materializer=TaskMaterializer(repository=repository),
        retry_controller=RetryController(
            repository=repository,
            lease_manager=manager,
            executor=executor,
            backoff=BackoffPolicy(base_seconds=0),
            sleep=lambda _seconds: None,
        ),
        finalizer=Finalizer(repository=repository, lease_manager=manager),
    )
    return manager, processor


def test_echo_pass_completes_job_end_to_end(db_path, repository, make_job, monkeypatch) -> None:
    monkeypatch.setenv("AUTOMATION_RUNNER_PRICE_PER_TOKEN", "0.01")
    job = make_job(prompt="Summarize open incidents")
    poller = build_poller(
        settings=Settings(db_path=db_path, runner=RunnerSettings(batch_size=2)),
        repository=repository,
    )

    summary = poller.run_once()

    assert summary.processed == 1
    assert summary.finalized == 1
    assert summary.tasks_completed == 1
    details = repository.get_job_details(job_id=job.job_id)
    assert details is not None
    assert details.job.status == JobStatus.COMPLETED
    assert details.job.started_at is not None
    assert details.job.last_run_id is not None
    assert details.job.lease_id is None
    assert details.job.estimated_cost_usd == pytest.approx(0.07)
    assert details.progress["completed"] == 1
    assert details.progress["total"] == 1
    task = details.tasks[0]
    assert task.output_preview == "echo: Summarize open incidents"
    assert task.tokens == 7
    assert task.run_id == details.job.last_run_id


def test_run_start_is_stamped_once(repository, make_job) -> None:
    job = make_job()
    manager = LeaseManager(repository=repository)
    claimed = manager.claim(job)
    assert claimed is not None
    started_at = utc_now()
    actor = system_actor(claimed.job)

    assert repository.start_run(
        tenant_key=job.tenant_key,
        job_id=job.job_id,
        lease_id=claimed.lease.lease_id,
        run_id="run_aaaaaaaaaaaa",
        started_at=started_at,
        actor=actor,
    )
    assert not repository.start_run(
        tenant_key=job.tenant_key,
        job_id=job.job_id,
        lease_id=claimed.lease.lease_id,
        run_id="run_bbbbbbbbbbbb",
        started_at=utc_now(),
        actor=actor,
    )

    stored = repository.get_job(job_id=job.job_id)
    assert stored is not None
    assert stored.last_run_id == "run_aaaaaaaaaaaa"


def test_resumed_pass_keeps_run_and_skips_settled_tasks(repository, make_job) -> None:
    job = make_job()
    repository.add_template_task(job_id=job.job_id, title="Second", prompt="Second prompt")
    first_executor = ScriptedExecutor([completed_result(tokens=5)])
    manager, _ = _processor(repository, first_executor)

    # First runner stamps the run and finishes one task, then disappears.
    claimed = manager.claim(job)
    assert claimed is not None
    assert repository.start_run(
        tenant_key=job.tenant_key,
        job_id=job.job_id,
        lease_id=claimed.lease.lease_id,
        run_id="run_cccccccccccc",
        started_at=utc_now(),
        actor=system_actor(claimed.job),
    )
    stamped = repository.get_job(job_id=job.job_id)
    assert stamped is not None
    tasks = TaskMaterializer(repository=repository).ensure_tasks(
        job=stamped,
        actor=system_actor(stamped),
    )
    RetryController(
        repository=repository,
        lease_manager=manager,
        executor=first_executor,
    ).run_task(job=stamped, task=tasks[0], lease=claimed.lease, actor=system_actor(stamped))
    manager.release(claimed.lease)

    second_executor = ScriptedExecutor([completed_result(tokens=7)])
    second_manager, processor = _processor(repository, second_executor)
    reclaimed = second_manager.claim(stamped)
    assert reclaimed is not None
    summary = processor.process(reclaimed)

    assert summary.tasks_completed == 1
    assert summary.finalized == 1
    assert [task_id for _job_id, task_id in second_executor.calls] == [tasks[1].task_id]
    stored = repository.get_job(job_id=job.job_id)
    assert stored is not None
    assert stored.status == JobStatus.COMPLETED
    assert stored.last_run_id == "run_cccccccccccc"
    assert stored.started_at == stamped.started_at
    executions = repository.list_tasks(
        tenant_key=job.tenant_key,
        job_id=job.job_id,
        task_type=TaskType.EXECUTION,
    )
    assert len(executions) == 2
    assert {task.run_id for task in executions} == {"run_cccccccccccc"}


def test_lost_lease_aborts_pass(repository, make_job, set_job_columns) -> None:
    job = make_job()
    executor = ScriptedExecutor([completed_result()])
    manager, processor = _processor(repository, executor)
    claimed = manager.claim(job)
    assert claimed is not None
    set_job_columns(job.job_id, lease_id="other-runner")

    summary = processor.process(claimed)

    assert summary.lease_lost == 1
    assert executor.calls == []
    stored = repository.get_job(job_id=job.job_id)
    assert stored is not None
    assert stored.started_at is None


def test_stopped_job_is_left_alone(repository, make_job, set_job_columns) -> None:
    job = make_job()
    executor = ScriptedExecutor([completed_result()])
    manager, processor = _processor(repository, executor)
    claimed = manager.claim(job)
    assert claimed is not None
    set_job_columns(job.job_id, status=JobStatus.STOPPED.value)

    summary = processor.process(claimed)

    assert summary.finalized == 0
    assert executor.calls == []


def test_missing_execution_user_fails_task_and_job(db_path, repository, make_job) -> None:
    job = make_job(execution_user_id="ghost-user")
    poller = build_poller(settings=Settings(db_path=db_path), repository=repository)

    poller.run_once()

    details = repository.get_job_details(job_id=job.job_id)
    assert details is not None
    assert details.job.status == JobStatus.ERROR
    assert details.tasks[0].status == TaskStatus.ERROR
    assert details.tasks[0].error_message == "Execution user not found: ghost-user"


def test_retry_action_runs_job_again(db_path, repository, make_job) -> None:
    job = make_job()
    poller = build_poller(settings=Settings(db_path=db_path), repository=repository)
    poller.run_once()
    first = repository.get_job(job_id=job.job_id)
    assert first is not None
    assert first.status == JobStatus.COMPLETED

    repository.apply_job_action(
        job_id=job.job_id,
        action=JobAction.RETRY,
        actor=AuditActor(user_id="operator", ip="10.0.0.9"),
    )
    summary = poller.run_once()

    assert summary.finalized == 1
    second = repository.get_job(job_id=job.job_id)
    assert second is not None
    assert second.status == JobStatus.COMPLETED
    assert second.last_run_id is not None
    assert second.last_run_id != first.last_run_id


def test_task_failing_once_then_succeeding_completes_job(repository, make_job) -> None:
    job = make_job(retry_limit=1)
    executor = ScriptedExecutor([error_result("flaky backend"), completed_result(tokens=20)])
    manager, processor = _processor(repository, executor)
    claimed = manager.claim(job)
    assert claimed is not None

    summary = processor.process(claimed)

    assert len(executor.calls) == 2
    assert summary.tasks_completed == 1
    assert summary.tasks_errored == 0
    assert summary.finalized == 1
    details = repository.get_job_details(job_id=job.job_id)
    assert details is not None
    assert details.job.status == JobStatus.COMPLETED
    assert [task.status for task in details.tasks] == [TaskStatus.COMPLETED]
    assert details.tasks[0].error_message is None
    assert details.tasks[0].tokens == 20
