from __future__ import annotations

from pathlib import Path

import allure
import pytest

from automation_runner.config import RunnerSettings, Settings

pytestmark = [
    allure.epic("Automation Runner"),
    allure.feature("Configuration"),
]

_ENV_NAMES = (
    "AUTOMATION_RUNNER_DB_PATH",
    "AUTOMATION_RUNNER_TENANT_KEY",
    "AUTOMATION_RUNNER_SQLITE_BUSY_TIMEOUT_MS",
    "AUTOMATION_RUNNER_POLL_INTERVAL_SECONDS",
    "AUTOMATION_RUNNER_BATCH_SIZE",
    "AUTOMATION_RUNNER_LEASE_SECONDS",
    "AUTOMATION_RUNNER_MAX_WORKERS",
    "AUTOMATION_RUNNER_BACKOFF_BASE_SECONDS",
    "AUTOMATION_RUNNER_BACKOFF_CAP_SECONDS",
    "AUTOMATION_RUNNER_RUNNER_ID",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch) -> None:
    for name in _ENV_NAMES:
        monkeypatch.delenv(name, raising=False)


def test_defaults() -> None:
    settings = Settings.from_env()

    assert settings.db_path == Path(".automation_runner.db")
    assert settings.tenant_key == "default"
    assert settings.runner.poll_interval_seconds == 5.0
    assert settings.runner.batch_size == 5
    assert settings.runner.lease_seconds == 120
    assert settings.runner.effective_max_workers == 5
    assert settings.runner.backoff_base_seconds == 1.0
    assert settings.runner.backoff_cap_seconds == 30.0
    settings.validate()


def test_env_overrides(monkeypatch) -> None:
    monkeypatch.setenv("AUTOMATION_RUNNER_DB_PATH", "/tmp/runner.db")
    monkeypatch.setenv("AUTOMATION_RUNNER_TENANT_KEY", "tenant-b")
    monkeypatch.setenv("AUTOMATION_RUNNER_POLL_INTERVAL_SECONDS", "0.5")
    monkeypatch.setenv("AUTOMATION_RUNNER_BATCH_SIZE", "10")
    monkeypatch.setenv("AUTOMATION_RUNNER_LEASE_SECONDS", "60")
    monkeypatch.setenv("AUTOMATION_RUNNER_MAX_WORKERS", "3")
    monkeypatch.setenv("AUTOMATION_RUNNER_RUNNER_ID", "runner-7")

    settings = Settings.from_env()

    assert settings.db_path == Path("/tmp/runner.db")
    assert settings.tenant_key == "tenant-b"
    assert settings.runner.poll_interval_seconds == 0.5
    assert settings.runner.batch_size == 10
    assert settings.runner.lease_seconds == 60
    assert settings.runner.effective_max_workers == 3
    assert settings.runner.runner_id == "runner-7"


def test_explicit_db_path_wins(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("AUTOMATION_RUNNER_DB_PATH", "/tmp/ignored.db")

    assert Settings.from_env(db_path=tmp_path / "cli.db").db_path == tmp_path / "cli.db"


@pytest.mark.parametrize(
    ("runner", "message"),
    [
        (RunnerSettings(poll_interval_seconds=0), "AUTOMATION_RUNNER_POLL_INTERVAL_SECONDS"),
        (RunnerSettings(batch_size=0), "AUTOMATION_RUNNER_BATCH_SIZE"),
        (RunnerSettings(lease_seconds=0), "AUTOMATION_RUNNER_LEASE_SECONDS"),
        (RunnerSettings(max_workers=-1), "AUTOMATION_RUNNER_MAX_WORKERS"),
        (RunnerSettings(backoff_base_seconds=-1), "AUTOMATION_RUNNER_BACKOFF_BASE_SECONDS"),
        (
            RunnerSettings(backoff_base_seconds=10, backoff_cap_seconds=5),
            "AUTOMATION_RUNNER_BACKOFF_CAP_SECONDS",
        ),
    ],
)
def test_validate_rejects_bad_runner_values(runner: RunnerSettings, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        Settings(runner=runner).validate()


def test_validate_rejects_empty_runner_id() -> None:
    with pytest.raises(ValueError, match="AUTOMATION_RUNNER_RUNNER_ID"):
        Settings(runner=RunnerSettings(runner_id="  ")).validate()


def test_validate_rejects_empty_tenant() -> None:
    with pytest.raises(ValueError, match="AUTOMATION_RUNNER_TENANT_KEY"):
        Settings(tenant_key=" ").validate()
