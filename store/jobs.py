"""
Job/Batch store — the queries and conditional updates the queue runs on.

Every function takes an open sync Session and leaves the commit to the
caller, so a worker can group a job update and a batch counter bump into
one transaction.

No row locking is used here. The dispatcher lock guarantees a single
writer, so plain single-row UPDATEs are enough.
"""

import uuid
from datetime import datetime, timedelta
from typing import Collection, Iterable, Optional

from sqlalchemy import select, update, func
from sqlalchemy.orm import Session

from models.base import utcnow
from models.batch import TrackingBatch
from models.enums import ACTIVE_JOB_STATUSES, BatchStatus, JobStatus, TERMINAL_BATCH_STATUSES
from models.job import TrackingQueueJob


def select_next_job(
    session: Session, now: datetime, exclude: Collection[uuid.UUID] = ()
) -> Optional[TrackingQueueJob]:
    """
    The one eligible job to run next, or None.

    Eligible = QUEUED or RETRYING, retry time reached, and the owning batch
    is PROCESSING. Paused and cancelled batches drop out through the join.
    `exclude` skips specific jobs (ones that crashed earlier in this tick).
    """
    query = (
        select(TrackingQueueJob)
        .join(TrackingBatch, TrackingQueueJob.batch_id == TrackingBatch.id)
        .where(
            TrackingQueueJob.status.in_(
                [JobStatus.QUEUED.value, JobStatus.RETRYING.value]
            ),
            (TrackingQueueJob.next_retry_at.is_(None))
            | (TrackingQueueJob.next_retry_at <= now),
            TrackingBatch.status == BatchStatus.PROCESSING.value,
        )
        .order_by(TrackingQueueJob.priority.asc(), TrackingQueueJob.created_at.asc())
        .limit(1)
    )
    if exclude:
        query = query.where(TrackingQueueJob.id.not_in(list(exclude)))
    return session.execute(query).scalar_one_or_none()


def get_job(session: Session, job_id: uuid.UUID) -> Optional[TrackingQueueJob]:
    return session.get(TrackingQueueJob, job_id)


def get_batch(session: Session, batch_id: uuid.UUID) -> Optional[TrackingBatch]:
    return session.get(TrackingBatch, batch_id)


def increment_batch_counter(session: Session, batch_id: uuid.UUID, field: str) -> TrackingBatch:
    """Atomically bump `completed` or `failed` and return the refreshed batch."""
    if field not in ("completed", "failed"):
        raise ValueError(f"Unknown batch counter: {field!r}")
    column = getattr(TrackingBatch, field)
    session.execute(
        update(TrackingBatch)
        .where(TrackingBatch.id == batch_id)
        .values({field: column + 1})
    )
    batch = session.get(TrackingBatch, batch_id)
    session.refresh(batch)
    return batch


def count_active_jobs(session: Session, batch_id: uuid.UUID) -> int:
    query = select(func.count(TrackingQueueJob.id)).where(
        TrackingQueueJob.batch_id == batch_id,
        TrackingQueueJob.status.in_(ACTIVE_JOB_STATUSES),
    )
    return session.execute(query).scalar() or 0


def count_jobs_by_status(session: Session, batch_id: uuid.UUID) -> dict[str, int]:
    """{status: count} for one batch, zero-filled for every JobStatus."""
    rows = session.execute(
        select(TrackingQueueJob.status, func.count(TrackingQueueJob.id))
        .where(TrackingQueueJob.batch_id == batch_id)
        .group_by(TrackingQueueJob.status)
    ).all()
    counts = {status.value: 0 for status in JobStatus}
    counts.update({status: count for status, count in rows})
    return counts


def requeue_stale_jobs(session: Session, cutoff: datetime) -> int:
    """Reset PROCESSING jobs started at or before `cutoff` back to QUEUED."""
    result = session.execute(
        update(TrackingQueueJob)
        .where(
            TrackingQueueJob.status == JobStatus.PROCESSING.value,
            TrackingQueueJob.started_at <= cutoff,
        )
        .values(status=JobStatus.QUEUED.value, step=None, started_at=None)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


def requeue_job(session: Session, job_id: uuid.UUID) -> None:
    """Put a single job back to QUEUED, whatever state it was left in."""
    session.execute(
        update(TrackingQueueJob)
        .where(TrackingQueueJob.id == job_id)
        .values(status=JobStatus.QUEUED.value, step=None, started_at=None)
        .execution_options(synchronize_session=False)
    )


def due_paused_batches(session: Session, now: datetime) -> list[TrackingBatch]:
    query = select(TrackingBatch).where(
        TrackingBatch.status == BatchStatus.PAUSED.value,
        TrackingBatch.resume_after <= now,
    )
    return list(session.execute(query).scalars().all())


def processing_batches(session: Session) -> list[TrackingBatch]:
    query = select(TrackingBatch).where(
        TrackingBatch.status == BatchStatus.PROCESSING.value
    )
    return list(session.execute(query).scalars().all())


def create_batch(
    session: Session,
    *,
    customer_id: str,
    tenant_id: str,
    user_id: str,
    trackings: Iterable[dict],
    scan_id: Optional[str] = None,
    max_attempts: Optional[int] = None,
) -> TrackingBatch:
    """
    Create a batch with one queued job per tracking.

    Each tracking dict carries tracking_id, payload and optionally
    recommendation_id and priority. Jobs get strictly increasing
    created_at values so same-priority jobs run in submission order.
    """
    created = utcnow()
    batch = TrackingBatch(
        customer_id=customer_id,
        tenant_id=tenant_id,
        user_id=user_id,
        scan_id=scan_id,
        created_at=created,
    )
    for i, tracking in enumerate(trackings):
        job = TrackingQueueJob(
            tracking_id=tracking["tracking_id"],
            recommendation_id=tracking.get("recommendation_id"),
            priority=tracking.get("priority", 0),
            payload=tracking.get("payload", {}),
            created_at=created + timedelta(microseconds=i),
        )
        if max_attempts is not None:
            job.max_attempts = max_attempts
        batch.jobs.append(job)
    if not batch.jobs:
        raise ValueError("A batch needs at least one job")
    batch.total_jobs = len(batch.jobs)
    session.add(batch)
    session.flush()
    return batch


def cancel_batch(session: Session, batch_id: uuid.UUID) -> Optional[TrackingBatch]:
    """
    Mark a batch CANCELLED. Returns None when the batch does not exist.

    Terminal batches are returned unchanged; the caller decides whether
    that is an error.
    """
    batch = session.get(TrackingBatch, batch_id)
    if batch is None or batch.status in TERMINAL_BATCH_STATUSES:
        return batch
    batch.status = BatchStatus.CANCELLED.value
    batch.pause_reason = None
    batch.resume_after = None
    batch.paused_at = None
    return batch
