"""
Batch finalizer.

A PROCESSING batch with no QUEUED/PROCESSING/RETRYING jobs left is done,
even if some jobs FAILED. The final counters are recounted from the job
rows, which are the source of truth; the running counters on the batch
are only a live estimate.

Only PROCESSING batches are considered, so a second run over a COMPLETED or
CANCELLED batch changes nothing and broadcasts nothing.
"""

import logging
from datetime import datetime

from sqlalchemy.orm import Session

from models.enums import BatchStatus, JobStatus
from realtime.broadcaster import BatchEvent, Broadcaster
from store import jobs as store

logger = logging.getLogger(__name__)


def finalize_batches(session: Session, broadcaster: Broadcaster, now: datetime) -> int:
    """Complete every drained PROCESSING batch. Commits. Returns how many."""
    finalized = []
    for batch in store.processing_batches(session):
        if store.count_active_jobs(session, batch.id) > 0:
            continue

        counts = store.count_jobs_by_status(session, batch.id)
        batch.status = BatchStatus.COMPLETED.value
        batch.completed = counts[JobStatus.COMPLETED.value]
        batch.failed = counts[JobStatus.FAILED.value]
        batch.completed_at = now
        batch.paused_at = None
        batch.resume_after = None
        batch.pause_reason = None
        finalized.append(batch)

    if not finalized:
        return 0
    session.commit()

    for batch in finalized:
        broadcaster.publish_batch(batch.id, BatchEvent.BATCH_COMPLETED, batch.counters())
        broadcaster.publish_customer(
            batch.customer_id,
            "trackings_updated",
            {"batchId": str(batch.id), **batch.counters()},
        )
        logger.info(
            f"Finalized batch {batch.id}: {batch.completed} completed, {batch.failed} failed"
        )
    return len(finalized)
