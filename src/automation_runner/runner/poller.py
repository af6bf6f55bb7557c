"""Periodic scan that dispatches claimable jobs onto a worker pool."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from datetime import datetime

from automation_runner.runner.lease import LeaseManager
from automation_runner.runner.models import ClaimedJob, JobView, RunnerSummary
from automation_runner.runner.processor import JobProcessor
from automation_runner.runner.repository import AutomationRepository
from automation_runner.storage.common import utc_now

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 5.0
DEFAULT_BATCH_SIZE = 5
DEFAULT_RUNNER_ID = "automation-runner"


class JobPoller:
    """Scans for claimable jobs and runs each one at most once per process.

    All scheduling state lives on the instance: the in-flight job ids, the
    re-entrancy flag of ``tick`` and the timer thread. Cross-process exclusion
    is left entirely to the lease.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: AutomationRepository,
        lease_manager: LeaseManager,
        processor: JobProcessor,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_workers: int | None = None,
        runner_id: str = DEFAULT_RUNNER_ID,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be positive.")
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1.")
        self.repository = repository
        self.lease_manager = lease_manager
        self.processor = processor
        self.poll_interval_seconds = poll_interval_seconds
        self.batch_size = batch_size
        self.max_workers = max_workers or batch_size
        self.runner_id = runner_id
        self._clock = clock

        self._active: set[str] = set()
        self._active_lock = threading.Lock()
        self._polling = False
        self._polling_lock = threading.Lock()
        self._lifecycle_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._timer_thread: threading.Thread | None = None
        self._pool: ThreadPoolExecutor | None = None
        self._summary = RunnerSummary()
        self._summary_lock = threading.Lock()

    @property
    def active_job_ids(self) -> frozenset[str]:
        with self._active_lock:
            return frozenset(self._active)

    @property
    def summary(self) -> RunnerSummary:
        """Counters accumulated since this poller was created."""

        snapshot = RunnerSummary()
        with self._summary_lock:
            snapshot.merge(self._summary)
        return snapshot

    def start(self) -> None:
        """Tick immediately, then every poll interval on a daemon thread."""

        with self._lifecycle_lock:
            if self._timer_thread is not None:
                return
            self._stop_event.clear()
            self._timer_thread = threading.Thread(
                target=self._timer_loop,
                daemon=True,
                name=f"{self.runner_id}-poller",
            )
            self._timer_thread.start()
        logger.info(
            "Automation poller started: runner_id=%s interval=%.1fs batch_size=%d max_workers=%d",
            self.runner_id,
            self.poll_interval_seconds,
            self.batch_size,
            self.max_workers,
        )

    def stop(self, *, wait: bool = True) -> None:
        """Stop ticking; with ``wait`` also block until in-flight jobs finish.

        Nothing is dispatched after this call until ``start`` runs again.
        """

        with self._lifecycle_lock:
            timer_thread = self._timer_thread
            self._timer_thread = None
            self._stop_event.set()
        # A tick still on the timer thread may dispatch; take the pool only after it ends.
        if timer_thread is not None and timer_thread is not threading.current_thread():
            timer_thread.join()
        with self._lifecycle_lock:
            pool = self._pool
            self._pool = None
        if timer_thread is None and pool is None:
            return
        if pool is not None:
            pool.shutdown(wait=wait)
        logger.info("Automation poller stopped: runner_id=%s", self.runner_id)

    def run_once(self) -> RunnerSummary:
        """Run a single tick and wait for every job it dispatched."""

        futures = self.tick()
        summary = RunnerSummary()
        if not futures:
            summary.idle_polls = 1
            return summary
        done, _ = wait(futures)
        for future in done:
            summary.merge(future.result())
        return summary

    def tick(self) -> list[Future[RunnerSummary]]:
        """Dispatch claimable jobs not already in flight; never raises."""

        with self._polling_lock:
            if self._polling:
                logger.debug("Previous poll still running; skipping tick")
                return []
            self._polling = True

        futures: list[Future[RunnerSummary]] = []
        try:
            candidates = self.repository.list_claimable_jobs(
                now=self._clock(),
                limit=self.batch_size,
            )
            for job in candidates:
                if not self._mark_active(job.job_id):
                    continue
                pool = self._executor()
                if pool is None:
                    self._clear_active(job.job_id)
                    logger.debug("Poller stopping; not dispatching job %s", job.job_id)
                    break
                try:
                    futures.append(pool.submit(self._run_job, job))
                except Exception:
                    self._clear_active(job.job_id)
                    raise
        except Exception:
            logger.exception("Automation polling error")
        finally:
            with self._polling_lock:
                self._polling = False

        if not futures:
            with self._summary_lock:
                self._summary.idle_polls += 1
        return futures

    def _timer_loop(self) -> None:
        while not self._stop_event.is_set():
            self.tick()
            self._stop_event.wait(timeout=self.poll_interval_seconds)

    def _executor(self) -> ThreadPoolExecutor | None:
        """Worker pool, created on first use; ``None`` once ``stop`` has begun."""

        with self._lifecycle_lock:
            if self._stop_event.is_set():
                return None
            if self._pool is None:
                self._pool = ThreadPoolExecutor(
                    max_workers=self.max_workers,
                    thread_name_prefix=f"{self.runner_id}-job",
                )
            return self._pool

    def _mark_active(self, job_id: str) -> bool:
        with self._active_lock:
            if job_id in self._active:
                return False
            self._active.add(job_id)
            return True

    def _clear_active(self, job_id: str) -> None:
        with self._active_lock:
            self._active.discard(job_id)

    def _run_job(self, job: JobView) -> RunnerSummary:
        summary = RunnerSummary()
        claimed: ClaimedJob | None = None
        try:
            claimed = self.lease_manager.claim(job)
            if claimed is not None:
                summary = self.processor.process(claimed)
        except Exception:
            logger.exception("Automation job %s failed during processing", job.job_id)
            summary = RunnerSummary(processed=1)
        finally:
            if claimed is not None:
                self.lease_manager.release(claimed.lease)
            self._clear_active(job.job_id)

        with self._summary_lock:
            self._summary.merge(summary)
        return summary
