"""Task executor implementations."""

from automation_runner.runner.executor.base import (
    CompletionBackend,
    CompletionRequest,
    CompletionResult,
    TaskExecutor,
)
from automation_runner.runner.executor.chat_executor import ChatTaskExecutor
from automation_runner.runner.executor.echo_backend import EchoCompletionBackend

__all__ = [
    "ChatTaskExecutor",
    "CompletionBackend",
    "CompletionRequest",
    "CompletionResult",
    "EchoCompletionBackend",
    "TaskExecutor",
]
