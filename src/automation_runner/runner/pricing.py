"""Token cost estimation for finished automation jobs."""

from __future__ import annotations

import os
from collections.abc import Iterable

from automation_runner.runner.models import TaskView

DEFAULT_PRICE_PER_TOKEN_USD = 0.000002


def estimate_job_cost_usd(tasks: Iterable[TaskView]) -> float:
    """Estimate job cost in USD from the tokens its tasks reported."""

    total_tokens = sum(task.tokens or 0 for task in tasks)
    if total_tokens == 0:
        return 0.0
    return round(total_tokens * _price_per_token(), 4)


def _price_per_token() -> float:
    raw = os.getenv("AUTOMATION_RUNNER_PRICE_PER_TOKEN", "").strip()
    if not raw:
        return DEFAULT_PRICE_PER_TOKEN_USD
    try:
        value = float(raw)
    except ValueError:
        return DEFAULT_PRICE_PER_TOKEN_USD
    if value < 0:
        return DEFAULT_PRICE_PER_TOKEN_USD
    return value
