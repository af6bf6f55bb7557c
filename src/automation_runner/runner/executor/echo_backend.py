"""Deterministic local completion backend."""

from __future__ import annotations

from automation_runner.runner.executor.base import CompletionRequest, CompletionResult


class EchoCompletionBackend:
    """Answers every prompt by echoing it back; token usage is a word count."""

    def __init__(self, *, prefix: str = "echo: ") -> None:
        self.prefix = prefix

    def complete(self, request: CompletionRequest) -> CompletionResult:
        text = f"{self.prefix}{request.prompt.strip()}"
        return CompletionResult(
            text=text,
            total_tokens=len(request.prompt.split()) + len(text.split()),
        )
