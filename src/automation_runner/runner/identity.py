"""Resolve the user context an automation task executes under."""

from __future__ import annotations

import logging
from typing import Protocol

from automation_runner.runner.models import ExecutionIdentity
from automation_runner.runner.repository import AutomationRepository

logger = logging.getLogger(__name__)


class IdentityResolver(Protocol):
    def resolve(self, *, tenant_key: str, user_id: str) -> ExecutionIdentity | None:
        """Return the identity, or ``None`` when the user is unknown."""


class RepositoryIdentityResolver:
    """Reads execution users and their extra roles from the job store."""

    def __init__(self, *, repository: AutomationRepository) -> None:
        self.repository = repository

    def resolve(self, *, tenant_key: str, user_id: str) -> ExecutionIdentity | None:
        try:
            identity = self.repository.get_execution_identity(
                tenant_key=tenant_key,
                user_id=user_id,
            )
        except Exception:
            logger.exception(
                "Failed to load execution identity: tenant_key=%s user_id=%s",
                tenant_key,
                user_id,
            )
            return None
        if identity is None:
            logger.error("Execution user not found: tenant_key=%s user_id=%s", tenant_key, user_id)
        return identity
