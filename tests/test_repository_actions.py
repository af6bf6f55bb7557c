from __future__ import annotations

import allure
import pytest

from automation_runner.runner.errors import InvalidJobActionError, JobNotFoundError
from automation_runner.runner.lease import LeaseManager, system_actor
from automation_runner.runner.materializer import TaskMaterializer
from automation_runner.runner.models import (
    AuditActor,
    JobAction,
    JobStatus,
    JobTrigger,
    TaskStatus,
    TaskType,
    ThreadGroupKind,
)
from automation_runner.runner.repository import AutomationRepository
from automation_runner.runner.services import AutomationJobService, CreateAutomationJob
from automation_runner.storage.common import utc_now

pytestmark = [
    allure.epic("Automation Runner"),
    allure.feature("Operator Actions"),
]

OPERATOR = AuditActor(user_id="operator", ip="10.0.0.9")


def _claim_and_materialize(repository, job):
    claimed = LeaseManager(repository=repository).claim(job)
    assert claimed is not None
    tasks = TaskMaterializer(repository=repository).ensure_tasks(
        job=claimed.job,
        actor=system_actor(claimed.job),
    )
    return claimed, tasks


def _set_task_status(repository, task, status: TaskStatus, lease_id: str) -> None:
    assert repository.mark_task_running(task=task, lease_id=lease_id, actor=OPERATOR)
    if status == TaskStatus.COMPLETED:
        assert repository.complete_task(
            task=task,
            lease_id=lease_id,
            output_preview="ok",
            tokens=10,
            duration_seconds=0.2,
            actor=OPERATOR,
        )
    elif status == TaskStatus.ERROR:
        assert repository.fail_task(
            task=task,
            lease_id=lease_id,
            error_message="bad",
            duration_seconds=0.2,
            actor=OPERATOR,
        )


@pytest.mark.parametrize("action", [JobAction.STOP, JobAction.CANCEL])
def test_stop_settles_execution_tasks_only(repository, make_job, action) -> None:
    job = make_job()
    claimed, tasks = _claim_and_materialize(repository, job)
    assert repository.start_run(
        tenant_key=job.tenant_key,
        job_id=job.job_id,
        lease_id=claimed.lease.lease_id,
        run_id="run_111111111111",
        started_at=utc_now(),
        actor=system_actor(claimed.job),
    )

    stopped = repository.apply_job_action(job_id=job.job_id, action=action, actor=OPERATOR)

    assert stopped.status == JobStatus.STOPPED
    assert stopped.completed_at is not None
    assert stopped.duration_seconds is not None
    assert stopped.lease_id is None
    assert stopped.updated_by == "operator"
    assert stopped.updated_ip == "10.0.0.9"
    executions = repository.list_tasks(
        tenant_key=job.tenant_key,
        job_id=job.job_id,
        task_type=TaskType.EXECUTION,
    )
    assert [task.task_id for task in executions] == [task.task_id for task in tasks]
    assert {task.status for task in executions} == {TaskStatus.STOPPED}
    templates = repository.list_tasks(
        tenant_key=job.tenant_key,
        job_id=job.job_id,
        task_type=TaskType.TEMPLATE,
    )
    assert {task.status for task in templates} == {TaskStatus.PENDING}


def test_stop_is_rejected_for_finished_job(repository, make_job, set_job_columns) -> None:
    job = make_job()
    set_job_columns(job.job_id, status=JobStatus.COMPLETED.value)

    with pytest.raises(InvalidJobActionError, match="status=completed"):
        repository.apply_job_action(job_id=job.job_id, action=JobAction.STOP, actor=OPERATOR)


def test_retry_resets_every_execution_task(repository, make_job, set_job_columns) -> None:
    job = make_job()
    repository.add_template_task(job_id=job.job_id, title="Second", prompt="Second prompt")
    claimed, tasks = _claim_and_materialize(repository, job)
    _set_task_status(repository, tasks[0], TaskStatus.COMPLETED, claimed.lease.lease_id)
    _set_task_status(repository, tasks[1], TaskStatus.ERROR, claimed.lease.lease_id)
    set_job_columns(job.job_id, status=JobStatus.ERROR.value, last_run_id="run_222222222222")

    retried = repository.apply_job_action(job_id=job.job_id, action=JobAction.RETRY, actor=OPERATOR)

    assert retried.status == JobStatus.PENDING
    assert retried.started_at is None
    assert retried.last_run_id is None
    assert retried.lease_id is None
    statuses = [
        task.status
        for task in repository.list_tasks(
            tenant_key=job.tenant_key,
            job_id=job.job_id,
            task_type=TaskType.EXECUTION,
        )
    ]
    assert statuses == [TaskStatus.PENDING, TaskStatus.PENDING]
    assert [claimable.job_id for claimable in repository.list_claimable_jobs(now=utc_now(), limit=5)] == [
        job.job_id,
    ]


def test_retry_errors_resets_only_failed_tasks(repository, make_job, set_job_columns) -> None:
    job = make_job()
    repository.add_template_task(job_id=job.job_id, title="Second", prompt="Second prompt")
    claimed, tasks = _claim_and_materialize(repository, job)
    _set_task_status(repository, tasks[0], TaskStatus.COMPLETED, claimed.lease.lease_id)
    _set_task_status(repository, tasks[1], TaskStatus.ERROR, claimed.lease.lease_id)
    set_job_columns(job.job_id, status=JobStatus.ERROR.value)

    repository.apply_job_action(job_id=job.job_id, action=JobAction.RETRY_ERRORS, actor=OPERATOR)

    statuses = [
        task.status
        for task in repository.list_tasks(
            tenant_key=job.tenant_key,
            job_id=job.job_id,
            task_type=TaskType.EXECUTION,
        )
    ]
    assert statuses == [TaskStatus.COMPLETED, TaskStatus.PENDING]


def test_resume_makes_manual_job_claimable(repository, make_job) -> None:
    job = make_job(trigger=JobTrigger.MANUAL)
    assert repository.list_claimable_jobs(now=utc_now(), limit=5) == []

    resumed = repository.apply_job_action(job_id=job.job_id, action=JobAction.RESUME, actor=OPERATOR)

    assert resumed.status == JobStatus.RUNNING
    claimable = repository.list_claimable_jobs(now=utc_now(), limit=5)
    assert [candidate.job_id for candidate in claimable] == [job.job_id]


def test_action_on_unknown_job_raises(repository) -> None:
    with pytest.raises(JobNotFoundError, match="missing-job"):
        repository.apply_job_action(job_id="missing-job", action=JobAction.STOP, actor=OPERATOR)


def test_job_details_report_progress(repository, make_job) -> None:
    job = make_job()
    repository.add_template_task(job_id=job.job_id, title="Second", prompt="Second prompt")
    claimed, tasks = _claim_and_materialize(repository, job)
    _set_task_status(repository, tasks[0], TaskStatus.COMPLETED, claimed.lease.lease_id)

    details = repository.get_job_details(job_id=job.job_id)

    assert details is not None
    assert details.progress["total"] == 2
    assert details.progress["completed"] == 1
    assert details.progress["pending"] == 1
    assert details.progress["error"] == 0
    assert repository.get_job_details(job_id="missing-job") is None


def test_create_job_builds_template_context(repository, make_job) -> None:
    job = make_job(prompt="Draft the weekly report")

    assert job.status == JobStatus.PENDING
    assert job.snapshot_prompt == "Draft the weekly report"
    assert job.schedule is not None
    assert job.schedule.cron == "0 9 * * *"
    assert job.created_ip == "10.0.0.1"
    templates = repository.list_tasks(tenant_key=job.tenant_key, job_id=job.job_id)
    assert len(templates) == 1
    template = templates[0]
    assert template.task_type == TaskType.TEMPLATE
    assert template.seq == 0
    assert template.thread_group_id is not None
    group = repository.get_thread_group(
        tenant_key=job.tenant_key,
        thread_group_id=template.thread_group_id,
    )
    assert group is not None
    assert group.kind == ThreadGroupKind.TASK_TEMPLATE
    assert repository.last_user_message(thread_group_id=template.thread_group_id) == (
        "Draft the weekly report"
    )


def test_list_jobs_is_tenant_scoped(db_path, repository, make_job) -> None:
    job = make_job()
    other_tenant = AutomationRepository(db_path, tenant_key="tenant-b")
    try:
        assert other_tenant.list_jobs() == []
        assert other_tenant.get_job(job_id=job.job_id) is None
        with pytest.raises(JobNotFoundError):
            other_tenant.apply_job_action(job_id=job.job_id, action=JobAction.STOP, actor=OPERATOR)
    finally:
        other_tenant.close()

    assert [listed.job_id for listed in repository.list_jobs()] == [job.job_id]
    assert repository.list_jobs(status=JobStatus.COMPLETED) == []


def _command(**overrides) -> CreateAutomationJob:  # noqa: ANN003
    values = {
        "project_id": "project-1",
        "name": "Weekly report",
        "prompt_template": "Draft the weekly report",
        "execution_user_id": "user-runner",
    }
    values.update(overrides)
    return CreateAutomationJob(**values)


def test_service_creates_extra_templates(repository, execution_user) -> None:
    service = AutomationJobService(repository=repository)

    job, templates = service.create_job(
        _command(
            trigger=JobTrigger.SCHEDULE,
            cron="0 * * * *",
            provider="openai",
            model_id="gpt-4o-mini",
            extra_prompts=("List blockers", "List risks"),
        ),
    )

    assert job.model is not None
    assert job.model.model_id == "gpt-4o-mini"
    assert [template.seq for template in templates] == [0, 1, 2]
    assert [
        repository.get_thread_group(
            tenant_key=job.tenant_key,
            thread_group_id=template.thread_group_id,
        ).title
        for template in templates
    ] == ["Weekly report", "Weekly report #2", "Weekly report #3"]


@pytest.mark.parametrize(
    ("overrides", "message"),
    [
        ({"name": "  "}, "Job name must not be empty"),
        ({"prompt_template": ""}, "Prompt template must not be empty"),
        ({"retry_limit": -1}, "retry_limit must be >= 0"),
        ({"parallelism": 0}, "parallelism must be >= 1"),
        ({"trigger": JobTrigger.SCHEDULE}, "Schedule payload is required"),
        ({"provider": "openai"}, "must be given together"),
        ({"execution_user_id": "nobody"}, "Execution user not found: nobody"),
    ],
)
def test_service_rejects_invalid_jobs(repository, execution_user, overrides, message) -> None:
    service = AutomationJobService(repository=repository)

    with pytest.raises(ValueError, match=message):
        service.create_job(_command(**overrides))

    assert repository.list_jobs() == []


def test_service_rejects_unknown_action(repository, make_job) -> None:
    job = make_job()
    service = AutomationJobService(repository=repository)

    with pytest.raises(InvalidJobActionError, match="Unsupported job action: 'pause'"):
        service.apply_action(job_id=job.job_id, action="pause", actor=OPERATOR)

    stopped = service.apply_action(job_id=job.job_id, action="stop", actor=OPERATOR)
    assert stopped.status == JobStatus.STOPPED


def test_operator_actor_defaults_to_execution_user(repository, make_job) -> None:
    job = make_job()
    service = AutomationJobService(repository=repository)

    actor = service.operator_actor(job_id=job.job_id, user_id=None, ip=None)

    assert actor.user_id == "user-runner"
    assert actor.ip == "127.0.0.1"
    with pytest.raises(JobNotFoundError):
        service.operator_actor(job_id="missing-job", user_id=None, ip=None)
