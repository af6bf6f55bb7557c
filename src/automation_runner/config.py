"""Runtime configuration for the automation runner."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from automation_runner.storage.sqlmodel_models import DEFAULT_TENANT_KEY


@dataclass(slots=True)
class RunnerSettings:
    """Polling, lease and retry settings."""

    poll_interval_seconds: float = 5.0
    batch_size: int = 5
    lease_seconds: int = 120
    max_workers: int = 0
    backoff_base_seconds: float = 1.0
    backoff_cap_seconds: float = 30.0
    runner_id: str = "automation-runner"

    @property
    def effective_max_workers(self) -> int:
        return self.max_workers or self.batch_size


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".automation_runner.db")
    tenant_key: str = DEFAULT_TENANT_KEY
    sqlite_busy_timeout_ms: int = 5_000
    runner: RunnerSettings = field(default_factory=RunnerSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("AUTOMATION_RUNNER_DB_PATH", ".automation_runner.db")),
            tenant_key=os.getenv("AUTOMATION_RUNNER_TENANT_KEY", DEFAULT_TENANT_KEY),
            sqlite_busy_timeout_ms=int(os.getenv("AUTOMATION_RUNNER_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            runner=RunnerSettings(
                poll_interval_seconds=float(
                    os.getenv("AUTOMATION_RUNNER_POLL_INTERVAL_SECONDS", "5.0"),
                ),
                batch_size=int(os.getenv("AUTOMATION_RUNNER_BATCH_SIZE", "5")),
                lease_seconds=int(os.getenv("AUTOMATION_RUNNER_LEASE_SECONDS", "120")),
                max_workers=int(os.getenv("AUTOMATION_RUNNER_MAX_WORKERS", "0")),
                backoff_base_seconds=float(
                    os.getenv("AUTOMATION_RUNNER_BACKOFF_BASE_SECONDS", "1.0"),
                ),
                backoff_cap_seconds=float(
                    os.getenv("AUTOMATION_RUNNER_BACKOFF_CAP_SECONDS", "30.0"),
                ),
                runner_id=os.getenv("AUTOMATION_RUNNER_RUNNER_ID", "automation-runner"),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for values the runner cannot work with."""

        if not self.tenant_key.strip():
            raise ValueError("AUTOMATION_RUNNER_TENANT_KEY must not be empty.")
        if self.sqlite_busy_timeout_ms < 0:
            raise ValueError("AUTOMATION_RUNNER_SQLITE_BUSY_TIMEOUT_MS must be >= 0.")
        runner = self.runner
        if runner.poll_interval_seconds <= 0:
            raise ValueError("AUTOMATION_RUNNER_POLL_INTERVAL_SECONDS must be > 0.")
        if runner.batch_size < 1:
            raise ValueError("AUTOMATION_RUNNER_BATCH_SIZE must be >= 1.")
        if runner.lease_seconds <= 0:
            raise ValueError("AUTOMATION_RUNNER_LEASE_SECONDS must be > 0.")
        if runner.max_workers < 0:
            raise ValueError("AUTOMATION_RUNNER_MAX_WORKERS must be >= 0.")
        if runner.backoff_base_seconds < 0:
            raise ValueError("AUTOMATION_RUNNER_BACKOFF_BASE_SECONDS must be >= 0.")
        if not runner.runner_id.strip():
            raise ValueError("AUTOMATION_RUNNER_RUNNER_ID must not be empty.")
        if runner.backoff_cap_seconds < runner.backoff_base_seconds:
            raise ValueError(
                "AUTOMATION_RUNNER_BACKOFF_CAP_SECONDS must be >= AUTOMATION_RUNNER_BACKOFF_BASE_SECONDS.",
            )
