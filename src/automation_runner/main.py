"""CLI entrypoint for automation-runner."""

import logging
from collections.abc import Callable
from functools import wraps
from pathlib import Path
from typing import Any

import rich_click as click

from automation_runner import __version__
from automation_runner.runner.controllers import (
    AutomationCliController,
    DbInitCommand,
    JobActionCommand,
    JobCreateCommand,
    JobInspectCommand,
    JobListCommand,
    RunnerCommand,
    UserCreateCommand,
)
from automation_runner.runner.errors import AutomationRunnerError
from automation_runner.runner.models import JobAction

click.rich_click.USE_MARKDOWN = True
CONTROLLER = AutomationCliController()

_JOB_STATUSES = ["pending", "running", "completed", "error", "stopped"]


def _operator_errors(func: Callable[..., None]) -> Callable[..., None]:
    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> None:
        try:
            func(*args, **kwargs)
        except (AutomationRunnerError, ValueError) as error:
            raise click.ClickException(str(error)) from error

    return wrapper


@click.group()
@click.version_option(version=__version__, prog_name="automation-runner")
def automation_runner() -> None:
    """Lease-based automation job runner."""


@automation_runner.group()
def db() -> None:
    """Database commands."""


@db.command("init")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def db_init(db_path: Path | None) -> None:
    """Create or upgrade the database schema."""

    _emit_lines(CONTROLLER.init_db(DbInitCommand(db_path=db_path)))


@automation_runner.group()
def users() -> None:
    """Execution user commands."""


@users.command("create")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--email", required=True, help="User email.")
@click.option("--name", default=None, help="Display name.")
@click.option("--role", default="user", show_default=True, help="Primary role.")
@click.option("--extra-role", "roles", multiple=True, help="Additional role. Can be repeated.")
@click.option("--user-id", default=None, help="Explicit user id; generated when omitted.")
@_operator_errors
def users_create(  # noqa: PLR0913
    db_path: Path | None,
    email: str,
    name: str | None,
    role: str,
    roles: tuple[str, ...],
    user_id: str | None,
) -> None:
    """Register a user that jobs can execute as."""

    _emit_lines(
        CONTROLLER.create_user(
            UserCreateCommand(
                db_path=db_path,
                email=email,
                name=name,
                role=role,
                roles=roles,
                user_id=user_id,
            ),
        ),
    )


@automation_runner.group()
def jobs() -> None:
    """Automation job commands."""


@jobs.command("create")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--project-id", required=True, help="Owning project id.")
@click.option("--name", required=True, help="Job name.")
@click.option("--prompt", required=True, help="Prompt template of the first task.")
@click.option(
    "--extra-prompt",
    "extra_prompts",
    multiple=True,
    help="Prompt of an additional template task. Can be repeated.",
)
@click.option("--execution-user-id", required=True, help="User the job executes as.")
@click.option(
    "--trigger",
    type=click.Choice(["manual", "schedule"], case_sensitive=False),
    default="manual",
    show_default=True,
    help="Manual jobs start on `resume`; scheduled jobs are picked up by the runner.",
)
@click.option("--description", default=None, help="Optional description.")
@click.option("--cron", default=None, help="Cron expression for scheduled jobs.")
@click.option("--timezone", default="UTC", show_default=True, help="Schedule timezone.")
@click.option("--provider", default=None, help="Model provider.")
@click.option("--model-id", default=None, help="Model id.")
@click.option(
    "--retry-limit",
    type=click.IntRange(min=0),
    default=0,
    show_default=True,
    help="Extra attempts per task after the first failure.",
)
@click.option(
    "--parallelism",
    type=click.IntRange(min=1),
    default=1,
    show_default=True,
    help="Stored with the job; tasks still run one at a time.",
)
@_operator_errors
def jobs_create(  # noqa: PLR0913
    db_path: Path | None,
    project_id: str,
    name: str,
    prompt: str,
    extra_prompts: tuple[str, ...],
    execution_user_id: str,
    trigger: str,
    description: str | None,
    cron: str | None,
    timezone: str,
    provider: str | None,
    model_id: str | None,
    retry_limit: int,
    parallelism: int,
) -> None:
    """Create a pending automation job with its template tasks."""

    _emit_lines(
        CONTROLLER.create_job(
            JobCreateCommand(
                db_path=db_path,
                project_id=project_id,
                name=name,
                prompt=prompt,
                execution_user_id=execution_user_id,
                trigger=trigger.lower(),
                description=description,
                cron=cron,
                timezone=timezone,
                provider=provider,
                model_id=model_id,
                retry_limit=retry_limit,
                parallelism=parallelism,
                extra_prompts=extra_prompts,
            ),
        ),
    )


@jobs.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--status",
    type=click.Choice(_JOB_STATUSES, case_sensitive=False),
    default=None,
    help="Optional status filter.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=50,
    show_default=True,
    help="Max jobs to print.",
)
@_operator_errors
def jobs_list(db_path: Path | None, status: str | None, limit: int) -> None:
    """List automation jobs."""

    _emit_lines(CONTROLLER.list_jobs(JobListCommand(db_path=db_path, status=status, limit=limit)))


@jobs.command("inspect")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--job-id", required=True, help="Job id.")
def jobs_inspect(db_path: Path | None, job_id: str) -> None:
    """Inspect one job with its execution tasks and progress counts."""

    _emit_lines(CONTROLLER.inspect_job(JobInspectCommand(db_path=db_path, job_id=job_id)))


def _register_action(name: str, action: JobAction, help_text: str) -> None:
    @jobs.command(name, help=help_text)
    @click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
    @click.option("--job-id", required=True, help="Job id.")
    @click.option("--user-id", default=None, help="Operator id; defaults to the execution user.")
    @click.option("--ip", default=None, help="Operator address recorded in audit fields.")
    @_operator_errors
    def _command(db_path: Path | None, job_id: str, user_id: str | None, ip: str | None) -> None:
        _emit_lines(
            CONTROLLER.apply_action(
                JobActionCommand(
                    db_path=db_path,
                    job_id=job_id,
                    action=action,
                    user_id=user_id,
                    ip=ip,
                ),
            ),
        )


_register_action("stop", JobAction.STOP, "Stop a pending or running job.")
_register_action("cancel", JobAction.CANCEL, "Cancel a pending or running job.")
_register_action("retry", JobAction.RETRY, "Reset every execution task and queue the job again.")
_register_action("retry-errors", JobAction.RETRY_ERRORS, "Reset only failed tasks and queue the job.")
_register_action("resume", JobAction.RESUME, "Mark the job running so the runner picks it up.")


@automation_runner.command("run")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--once/--loop",
    default=True,
    show_default=True,
    help="Run one poll and wait for its jobs, or keep polling until interrupted.",
)
@click.option(
    "--max-seconds",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Optional wall-clock cap for loop mode.",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    show_default=True,
    help="Runner log level.",
)
@_operator_errors
def run(db_path: Path | None, once: bool, max_seconds: float | None, log_level: str) -> None:
    """Run the automation job poller."""

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    _emit_lines(CONTROLLER.run(RunnerCommand(db_path=db_path, once=once, max_seconds=max_seconds)))


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    automation_runner()
