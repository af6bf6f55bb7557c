from __future__ import annotations

import allure
import pytest

from automation_runner.runner.backoff import BackoffPolicy

pytestmark = [
    allure.epic("Automation Runner"),
    allure.feature("Task Retries"),
]


def test_default_delays_double_until_cap() -> None:
    policy = BackoffPolicy()

    assert [policy.delay(attempt) for attempt in range(8)] == [1, 2, 4, 8, 16, 30, 30, 30]


def test_huge_attempt_is_capped() -> None:
    assert BackoffPolicy().delay(5_000) == 30


def test_custom_policy() -> None:
    policy = BackoffPolicy(base_seconds=0.5, factor=3.0, cap_seconds=10.0)

    assert policy.delay(0) == 0.5
    assert policy.delay(1) == 1.5
    assert policy.delay(3) == 10.0


def test_negative_attempt_is_rejected() -> None:
    with pytest.raises(ValueError, match="attempt must be >= 0"):
        BackoffPolicy().delay(-1)


@pytest.mark.parametrize(
    ("kwargs", "message"),
    [
        ({"base_seconds": -1.0}, "base_seconds"),
        ({"factor": 0.5}, "factor"),
        ({"cap_seconds": -0.1}, "cap_seconds"),
    ],
)
def test_invalid_policy_is_rejected(kwargs: dict[str, float], message: str) -> None:
    with pytest.raises(ValueError, match=message):
        BackoffPolicy(**kwargs)
