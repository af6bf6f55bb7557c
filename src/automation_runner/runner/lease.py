"""Optimistic, crash-tolerant mutual exclusion over automation job rows."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from uuid import uuid4

from automation_runner.runner.models import AuditActor, ClaimedJob, JobView, Lease
from automation_runner.runner.repository import AutomationRepository
from automation_runner.storage.common import utc_now
from automation_runner.storage.sqlmodel_models import DEFAULT_SYSTEM_IP

logger = logging.getLogger(__name__)

DEFAULT_LEASE_DURATION = timedelta(minutes=2)


class LeaseManager:
    """Claims, renews and releases job leases through conditioned updates.

    A lease is owned by whoever last wrote a matching ``lease_id`` that has not
    expired. No in-memory lock participates: two runner processes racing on the
    same job are arbitrated by the affected-row count of a single ``UPDATE``.
    """

    def __init__(
        self,
        *,
        repository: AutomationRepository,
        lease_duration: timedelta = DEFAULT_LEASE_DURATION,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if lease_duration <= timedelta(0):
            raise ValueError("lease_duration must be positive.")
        self.repository = repository
        self.lease_duration = lease_duration
        self._clock = clock

    def claim(self, job: JobView) -> ClaimedJob | None:
        """Try to take the lease on ``job``; ``None`` means another runner won."""

        lease_id = str(uuid4())
        now = self._clock()
        expires_at = now + self.lease_duration
        try:
            claimed = self.repository.claim_job(
                job=job,
                lease_id=lease_id,
                lease_expires_at=expires_at,
                now=now,
                actor=system_actor(job),
            )
            if not claimed:
                return None
            fresh = self.repository.get_job(job_id=job.job_id, tenant_key=job.tenant_key)
        except Exception:
            logger.exception("Failed to claim job %s", job.job_id)
            return None
        if fresh is None:
            return None

        fresh.lease_id = lease_id
        fresh.lease_expires_at = expires_at
        return ClaimedJob(
            job=fresh,
            lease=Lease(
                job_id=job.job_id,
                tenant_key=job.tenant_key,
                lease_id=lease_id,
                expires_at=expires_at,
            ),
        )

    def ensure(self, lease: Lease) -> bool:
        """Keep the lease alive; ``False`` means it was lost and the caller must stop.

        Renewal is skipped while more than half of the lease duration remains.
        An expired lease is never revived, even if nobody has claimed it yet.
        """

        now = self._clock()
        if lease.expires_at > now + self.lease_duration / 2:
            return True

        expires_at = now + self.lease_duration
        try:
            renewed = self.repository.renew_lease(
                tenant_key=lease.tenant_key,
                job_id=lease.job_id,
                lease_id=lease.lease_id,
                lease_expires_at=expires_at,
                now=now,
            )
        except Exception:
            logger.exception("Failed to refresh lease for job %s", lease.job_id)
            return False
        if not renewed:
            logger.warning("Lease lost for job %s (lease_id=%s)", lease.job_id, lease.lease_id)
            return False
        lease.expires_at = expires_at
        return True

    def release(self, lease: Lease) -> None:
        """Drop the lease; failures are logged because expiry reclaims it anyway."""

        try:
            released = self.repository.release_lease(
                tenant_key=lease.tenant_key,
                job_id=lease.job_id,
                lease_id=lease.lease_id,
            )
        except Exception:
            logger.exception("Failed to release lease for job %s", lease.job_id)
            return
        if released:
            logger.debug("Released lease %s for job %s", lease.lease_id, lease.job_id)


def system_actor(job: JobView) -> AuditActor:
    """Audit identity for runner-side writes: the job's last editor."""

    return AuditActor(
        user_id=job.updated_by or job.created_by,
        ip=job.updated_ip or job.created_ip or DEFAULT_SYSTEM_IP,
    )
