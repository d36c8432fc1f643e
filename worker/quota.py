"""
Quota controller — pauses and resumes whole batches.

A quota error is about the Google account, not about the job that hit it.
Pausing only that job would let the dispatcher pick the next job of the
same batch and hit the same limit again, so the whole batch is paused:

    job   → QUEUED (attempt_count untouched, quota is not a real attempt)
    batch → PAUSED with resume_after = now + cooldown

The dispatcher's job query only looks at PROCESSING batches, so a paused
batch yields nothing until resume_due() flips it back.

Cooldown = base window × (1 + pause_count), multiplier capped at 5:
    daily quotas           3600s base, no cap
    per-100-seconds quotas  105s base, capped at 300s
    everything else          65s base, capped at 300s
A provider-supplied retry_after replaces the base window.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from config.settings import settings
from models.base import utcnow
from models.batch import TrackingBatch
from models.enums import BatchStatus, ErrorCode, JobStatus
from models.job import TrackingQueueJob
from realtime.broadcaster import BatchEvent, Broadcaster
from store import jobs as store

logger = logging.getLogger(__name__)

_DAILY_MARKERS = ("per day", "daily", "dailyLimit")
_PER_100S_MARKERS = ("per 100 seconds", "per100s")


def cooldown_seconds(
    message: str, pause_count: int = 0, retry_after: Optional[float] = None
) -> int:
    """Seconds a batch stays paused after a quota error."""
    daily = any(m in message for m in _DAILY_MARKERS)
    if retry_after is not None and retry_after > 0:
        base = retry_after
    elif daily:
        base = settings.QUOTA_COOLDOWN_DAILY
    elif any(m in message for m in _PER_100S_MARKERS):
        base = settings.QUOTA_COOLDOWN_100S
    else:
        base = settings.QUOTA_COOLDOWN_MINUTE

    multiplier = min(1 + max(pause_count, 0), settings.QUOTA_MAX_MULTIPLIER)
    cooldown = base * multiplier
    if not daily:
        cooldown = min(cooldown, max(settings.QUOTA_COOLDOWN_CAP, base))
    return int(round(cooldown))


class QuotaController:

    def __init__(self, broadcaster: Broadcaster, now: Callable[[], datetime] = utcnow):
        self._broadcaster = broadcaster
        self._now = now

    def pause(
        self,
        session: Session,
        job: TrackingQueueJob,
        batch: TrackingBatch,
        message: str,
        retry_after: Optional[float] = None,
    ) -> datetime:
        """
        Send the job back to the queue and pause its batch.

        The batch may have been cancelled while the step was running, so it
        is re-read, and the pause only applies while it is still PROCESSING.

        Commits the session. Returns the batch's resume_after.
        """
        now = self._now()
        session.refresh(batch)
        cooldown = cooldown_seconds(message, batch.pause_count, retry_after)
        resume_after = now + timedelta(seconds=cooldown)

        job.status = JobStatus.QUEUED.value
        job.step = None
        job.started_at = None
        job.next_retry_at = None
        job.last_error = message
        job.error_code = ErrorCode.QUOTA.value

        # a cancelled batch stays cancelled; only the job goes back
        paused = session.execute(
            update(TrackingBatch)
            .where(
                TrackingBatch.id == batch.id,
                TrackingBatch.status == BatchStatus.PROCESSING.value,
            )
            .values(
                status=BatchStatus.PAUSED.value,
                paused_at=now,
                resume_after=resume_after,
                pause_count=TrackingBatch.pause_count + 1,
                pause_reason=f"API quota limit, auto-resumes at {resume_after.isoformat()}",
            )
            .execution_options(synchronize_session=False)
        ).rowcount
        session.commit()
        session.refresh(batch)

        if not paused:
            self._broadcaster.publish_batch(
                batch.id,
                BatchEvent.JOB_RETRYING,
                {
                    "jobId": str(job.id),
                    "trackingId": job.tracking_id,
                    "trackingName": job.tracking_name,
                    "error": message,
                    **batch.counters(),
                },
            )
            logger.info(f"Job {job.id} requeued after quota error, batch {batch.id} is {batch.status}")
        else:
            self._broadcaster.publish_batch(
                batch.id,
                BatchEvent.BATCH_PAUSED,
                {
                    "jobId": str(job.id),
                    "trackingId": job.tracking_id,
                    "pauseReason": f"API quota limit reached. Auto-resuming in {cooldown}s...",
                    "resumeAfter": resume_after.isoformat(),
                    **batch.counters(),
                },
            )
            logger.info(f"Batch {batch.id} paused for {cooldown}s due to quota")
        return resume_after

    def resume_due(self, session: Session) -> int:
        """Flip PAUSED batches whose cooldown has elapsed back to PROCESSING."""
        batches = store.due_paused_batches(session, self._now())
        if not batches:
            return 0

        for batch in batches:
            batch.status = BatchStatus.PROCESSING.value
            batch.paused_at = None
            batch.resume_after = None
            batch.pause_reason = None
        session.commit()

        # Quota-paused jobs are already QUEUED, nothing to touch on the job side
        for batch in batches:
            self._broadcaster.publish_batch(batch.id, BatchEvent.BATCH_RESUMED, batch.counters())
            logger.info(f"Resumed paused batch {batch.id}")
        return len(batches)
