"""
Dispatcher — one tick of the provisioning queue.

Invoked by the cron endpoint (or the worker.main loop). Each tick:

    1. Take the dispatcher lock; if another tick holds it, return skipped
    2. Requeue stuck PROCESSING jobs (crash recovery)
    3. Resume PAUSED batches whose cooldown has elapsed
    4. Until the run budget is spent:
         pick ONE eligible job → wait job_delay (not before the first) → execute it
    5. Finalize drained batches
    6. Release the lock (always)

Jobs run strictly one at a time. Google's APIs answer concurrent writes to
the same account with CONCURRENT_MODIFICATION and quota errors, so the
loop trades throughput for correctness. The run budget stays under the
host's invocation limit; whatever is left is picked up next tick.

         Postgres                    Dispatcher                 Provider
    ┌───────────────┐  next job  ┌──────────────────┐  step  ┌───────────┐
    │ QUEUED jobs   │───────────>│ JobExecutor      │───────>│ GTM / Ads │
    │ (PROCESSING   │<───────────│ (one at a time)  │<───────│           │
    │  batches)     │   result   └──────────────────┘        └───────────┘
    └───────────────┘
"""

import logging
import time
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session

from config.settings import settings
from jobs.base import StepOutcome
from models.base import utcnow
from realtime.broadcaster import Broadcaster
from scheduler.finalizer import finalize_batches
from scheduler.lock import DispatcherLock
from scheduler.recovery import recover_stuck_jobs
from store import jobs as store
from worker.executor import JobExecutor
from worker.quota import QuotaController

logger = logging.getLogger(__name__)


@dataclass
class DispatchSummary:
    skipped: bool = False
    recovered: int = 0
    resumed: int = 0
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    retried: int = 0
    paused: int = 0
    finalized: int = 0
    quota_paused: bool = False
    duration_ms: int = 0

    def to_response(self) -> dict:
        """camelCase JSON body returned by the cron endpoint."""
        data = asdict(self)
        data["quotaPaused"] = data.pop("quota_paused")
        data["durationMs"] = data.pop("duration_ms")
        return data


class Dispatcher:

    def __init__(
        self,
        db_session_factory,
        executor: JobExecutor,
        lock: DispatcherLock,
        broadcaster: Broadcaster,
        quota_controller: Optional[QuotaController] = None,
        max_runtime: float = settings.DISPATCH_MAX_RUNTIME,
        job_delay: float = settings.DISPATCH_JOB_DELAY,
        stale_after: float = settings.STUCK_JOB_THRESHOLD,
        now: Callable[[], datetime] = utcnow,
        monotonic: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._db_session_factory = db_session_factory
        self._executor = executor
        self._lock = lock
        self._broadcaster = broadcaster
        self._quota = quota_controller or QuotaController(broadcaster, now=now)
        self._max_runtime = max_runtime
        self._job_delay = job_delay
        self._stale_after = stale_after
        self._now = now
        self._monotonic = monotonic
        self._sleep = sleep

    def run_once(self) -> DispatchSummary:
        start = self._monotonic()
        summary = DispatchSummary()

        if not self._lock.acquire():
            logger.info("Another dispatcher holds the lock, skipping tick")
            summary.skipped = True
            summary.duration_ms = self._elapsed_ms(start)
            return summary

        try:
            # ── Recovery + resume ───────────────────────────────
            session: Session = self._db_session_factory()
            try:
                summary.recovered = recover_stuck_jobs(session, self._now(), self._stale_after)
                summary.resumed = self._quota.resume_due(session)
            finally:
                session.close()

            # ── Main loop: one job at a time ────────────────────
            crashed = set()
            while self._monotonic() - start < self._max_runtime:
                job_id = self._next_job_id(crashed)
                if job_id is None:
                    break

                # Spread requests out to stay under the provider's rate limit.
                # Only between jobs, never after the last one.
                if self._job_delay and summary.processed:
                    self._sleep(self._job_delay)
                    if self._monotonic() - start >= self._max_runtime:
                        break

                self._run_job(job_id, summary, crashed)

            # ── Finalize drained batches ────────────────────────
            session = self._db_session_factory()
            try:
                summary.finalized = finalize_batches(session, self._broadcaster, self._now())
            finally:
                session.close()
        finally:
            self._lock.release()

        summary.duration_ms = self._elapsed_ms(start)
        logger.info(
            f"Dispatch tick: processed={summary.processed} succeeded={summary.succeeded} "
            f"failed={summary.failed} paused={summary.paused} "
            f"finalized={summary.finalized} in {summary.duration_ms}ms"
        )
        return summary

    def _next_job_id(self, exclude):
        session: Session = self._db_session_factory()
        try:
            job = store.select_next_job(session, self._now(), exclude)
            return job.id if job is not None else None
        finally:
            session.close()

    def _run_job(self, job_id, summary: DispatchSummary, crashed: set) -> None:
        try:
            result = self._executor.execute(job_id)
        except Exception as e:
            # A bug, not a provider error. Never leave the job stranded in
            # PROCESSING, and don't pick it again this tick.
            logger.error(f"Unexpected error processing job {job_id}: {e}", exc_info=True)
            summary.processed += 1
            summary.failed += 1
            crashed.add(job_id)
            self._requeue(job_id)
            return

        summary.processed += 1
        if result.outcome == StepOutcome.QUOTA_ERROR:
            # The batch is PAUSED now; the next selection skips it
            summary.paused += 1
            summary.quota_paused = True
            logger.info(f"Quota hit on job {job_id}, moving to next batch")
        elif result.succeeded:
            summary.succeeded += 1
        elif result.failed:
            summary.failed += 1
        else:
            summary.retried += 1

    def _requeue(self, job_id) -> None:
        session: Session = self._db_session_factory()
        try:
            store.requeue_job(session, job_id)
            session.commit()
        except Exception as e:
            # stale-job recovery will catch it on a later tick
            session.rollback()
            logger.error(f"Failed to requeue job {job_id}: {e}")
        finally:
            session.close()

    def _elapsed_ms(self, start: float) -> int:
        return int((self._monotonic() - start) * 1000)


def build_dispatcher(db_session_factory, redis_client, api, **overrides) -> Dispatcher:
    """Wire a Dispatcher and its collaborators around one Redis client."""
    now = overrides.pop("now", utcnow)
    broadcaster = overrides.pop("broadcaster", None) or Broadcaster(redis_client)
    quota = QuotaController(broadcaster, now=now)
    executor = JobExecutor(
        db_session_factory,
        api,
        broadcaster,
        retry_policy=overrides.pop("retry_policy", None),
        quota_controller=quota,
        now=now,
    )
    return Dispatcher(
        db_session_factory,
        executor,
        DispatcherLock(redis_client),
        broadcaster,
        quota_controller=quota,
        now=now,
        **overrides,
    )
