"""
Job executor — runs a single queue job against the Provisioning API.

The dispatcher calls executor.execute(job_id) once per loop iteration and
this method handles the full lifecycle:

    1. Load the job and its batch, mark it PROCESSING
    2. Run each planned step (Ads conversion, then GTM tags), persisting
       every step's resource id before moving on
    3. On success: job COMPLETED, batch.completed += 1
    4. On failure: classify and route
         quota      → QuotaController pauses the batch, job back to QUEUED
         transient  → RetryPolicy: RETRYING with next_retry_at, or FAILED
         permanent  → FAILED, batch.failed += 1

Provider failures never escape as exceptions; the dispatcher only sees the
returned JobResult. Anything that does escape (a database error, a bug in
this module) is the dispatcher's problem to contain.

Each execute() call gets its own session, created and closed within.
"""

import logging
import uuid as _uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session

from jobs.base import (
    ProvisioningAPI,
    ProvisioningContext,
    ProvisioningStep,
    StepOutcome,
    StepResult,
    plan_steps,
)
from jobs.errors import classify_error
from models.base import utcnow
from models.batch import TrackingBatch
from models.enums import ErrorCode, JobStatus
from models.job import TrackingQueueJob
from realtime.broadcaster import BatchEvent, Broadcaster
from store import jobs as store
from worker.quota import QuotaController
from worker.retry import RetryPolicy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobResult:
    job_id: str
    outcome: StepOutcome
    message: Optional[str] = None
    # next_retry_at for a scheduled retry, resume_after for a quota pause
    retry_at: Optional[datetime] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome == StepOutcome.SUCCESS

    @property
    def failed(self) -> bool:
        """True when the job ended FAILED (permanent, or retries exhausted)."""
        if self.outcome == StepOutcome.PERMANENT_ERROR:
            return True
        return self.outcome == StepOutcome.TRANSIENT_ERROR and self.retry_at is None


class JobExecutor:

    def __init__(
        self,
        db_session_factory,
        api: ProvisioningAPI,
        broadcaster: Broadcaster,
        retry_policy: Optional[RetryPolicy] = None,
        quota_controller: Optional[QuotaController] = None,
        now: Callable[[], datetime] = utcnow,
    ):
        self._db_session_factory = db_session_factory
        self._api = api
        self._broadcaster = broadcaster
        self._retry_policy = retry_policy or RetryPolicy()
        self._quota = quota_controller or QuotaController(broadcaster, now=now)
        self._now = now

    def execute(self, job_id) -> JobResult:
        if not isinstance(job_id, _uuid.UUID):
            job_id = _uuid.UUID(str(job_id))

        session: Session = self._db_session_factory()
        try:
            job = store.get_job(session, job_id)
            if job is None:
                logger.warning(f"Job {job_id} not found in DB, skipping")
                return JobResult(str(job_id), StepOutcome.PERMANENT_ERROR, "Job not found")
            batch = job.batch

            # ── Step 1: Mark PROCESSING ─────────────────────────
            done = dict(job.result or {})
            steps = plan_steps(job.payload.get("destinations"))
            pending = [s for s in steps if s.value not in done]

            job.status = JobStatus.PROCESSING.value
            job.started_at = self._now()
            job.next_retry_at = None
            job.step = pending[0].value if pending else None
            session.commit()

            self._broadcast(batch, BatchEvent.JOB_PROCESSING, job, step=job.step)

            context = ProvisioningContext(
                job_id=str(job.id),
                tracking_id=job.tracking_id,
                customer_id=batch.customer_id,
                tenant_id=batch.tenant_id,
                user_id=batch.user_id,
                payload=dict(job.payload),
                resources=dict(done),
            )

            # ── Step 2: Run each step in order ──────────────────
            for step in pending:
                if job.step != step.value:
                    job.step = step.value
                    session.commit()

                result = self._run_step(step, context)
                if result.outcome != StepOutcome.SUCCESS:
                    return self._handle_failure(session, job, batch, step, result)

                done[step.value] = result.resource_id
                context.resources = dict(done)
                job.result = dict(done)
                session.commit()

            # ── Step 3: Mark COMPLETED ──────────────────────────
            return self._complete(session, job, batch)

        except Exception:
            session.rollback()
            raise

        finally:
            # Always close the session to avoid leaking connections
            session.close()

    def _run_step(self, step: ProvisioningStep, context: ProvisioningContext) -> StepResult:
        try:
            result = self._api.run_step(step, context)
        except Exception as e:
            result = classify_error(e)
            logger.warning(
                f"Job {context.job_id} step {step.value} raised "
                f"({result.outcome.value}): {e}"
            )
            return result

        if result.outcome == StepOutcome.SUCCESS and not result.resource_id:
            return StepResult(
                StepOutcome.TRANSIENT_ERROR,
                message=f"Sync incomplete: {step.value} returned no resource id. "
                        f"Retry should resolve this.",
            )
        return result

    def _complete(self, session: Session, job: TrackingQueueJob, batch: TrackingBatch) -> JobResult:
        job.status = JobStatus.COMPLETED.value
        job.step = None
        job.started_at = None
        job.completed_at = self._now()
        job.last_error = None
        job.error_code = None
        batch.pause_count = 0
        session.flush()
        batch = store.increment_batch_counter(session, batch.id, "completed")
        session.commit()

        self._broadcast(batch, BatchEvent.JOB_COMPLETED, job)
        logger.info(f"Job {job.id} [{job.tracking_id}] completed")
        return JobResult(str(job.id), StepOutcome.SUCCESS)

    def _handle_failure(
        self,
        session: Session,
        job: TrackingQueueJob,
        batch: TrackingBatch,
        step: ProvisioningStep,
        result: StepResult,
    ) -> JobResult:
        message = result.message or result.outcome.value

        # ---- QUOTA: pause the whole batch, no attempt spent ----
        if result.outcome == StepOutcome.QUOTA_ERROR:
            resume_after = self._quota.pause(session, job, batch, message, result.retry_after)
            return JobResult(str(job.id), StepOutcome.QUOTA_ERROR, message, resume_after)

        # ---- TRANSIENT: back off and retry if budget remains ----
        if result.outcome == StepOutcome.TRANSIENT_ERROR:
            decision = self._retry_policy.decide(
                job.attempt_count, result.outcome, self._now(), max_attempts=job.max_attempts
            )
            if not decision.give_up:
                job.status = JobStatus.RETRYING.value
                job.attempt_count += 1
                job.next_retry_at = decision.next_retry_at
                job.step = None
                job.started_at = None
                job.last_error = message
                job.error_code = ErrorCode.RETRYABLE.value
                session.commit()

                self._broadcast(
                    batch,
                    BatchEvent.JOB_RETRYING,
                    job,
                    step=step.value,
                    error=message,
                    nextRetryAt=decision.next_retry_at.isoformat(),
                )
                logger.info(
                    f"Job {job.id} retrying in {decision.delay:.0f}s "
                    f"(attempt {job.attempt_count}/{job.max_attempts})"
                )
                return JobResult(
                    str(job.id), StepOutcome.TRANSIENT_ERROR, message, decision.next_retry_at
                )
            message = f"{message} (gave up after {job.attempt_count} retries)"

        # ---- PERMANENT (or retries exhausted) ----
        job.status = JobStatus.FAILED.value
        job.step = None
        job.started_at = None
        job.next_retry_at = None
        job.completed_at = self._now()
        job.last_error = message
        job.error_code = ErrorCode.PERMANENT.value
        session.flush()
        batch = store.increment_batch_counter(session, batch.id, "failed")
        session.commit()

        self._broadcast(batch, BatchEvent.JOB_FAILED, job, step=step.value, error=message)
        logger.warning(f"Job {job.id} permanently failed: {message[:100]}")
        return JobResult(str(job.id), result.outcome, message)

    def _broadcast(self, batch: TrackingBatch, event: BatchEvent, job: TrackingQueueJob, **extra) -> None:
        data = {
            "jobId": str(job.id),
            "trackingId": job.tracking_id,
            "trackingName": job.tracking_name,
            **extra,
            **batch.counters(),
        }
        self._broadcaster.publish_batch(batch.id, event, data)
