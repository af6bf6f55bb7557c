"""Exponential backoff between task attempts."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class BackoffPolicy:
    """Delay after failed attempt ``n`` (0-based) is ``min(cap, base * factor**n)``."""

    base_seconds: float = 1.0
    factor: float = 2.0
    cap_seconds: float = 30.0

    def __post_init__(self) -> None:
        if self.base_seconds < 0:
            raise ValueError("base_seconds must be >= 0.")
        if self.factor < 1:
            raise ValueError("factor must be >= 1.")
        if self.cap_seconds < 0:
            raise ValueError("cap_seconds must be >= 0.")

    def delay(self, attempt: int) -> float:
        if attempt < 0:
            raise ValueError(f"attempt must be >= 0, got {attempt}")
        try:
            raw = self.base_seconds * self.factor**attempt
        except OverflowError:
            return self.cap_seconds
        return min(self.cap_seconds, raw)
