"""
Batch endpoints.

POST /batches/                 → Submit a bulk provisioning request
GET  /batches/                 → List batches with filtering + pagination
GET  /batches/{batch_id}       → One batch with counters and pause state
GET  /batches/{batch_id}/jobs  → Its jobs, in the order the dispatcher runs them
POST /batches/{batch_id}/cancel → Stop a PROCESSING or PAUSED batch

The API only writes rows. Jobs are picked up by the next dispatcher tick.
"""

from uuid import UUID
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func

from api.dependencies import get_db
from api.schemas.batch import BatchCreate, BatchListResponse, BatchResponse, JobResponse
from models.batch import TrackingBatch
from models.enums import BatchStatus, TERMINAL_BATCH_STATUSES
from models.job import TrackingQueueJob
from store.jobs import cancel_batch, create_batch

router = APIRouter(prefix="/batches", tags=["batches"])


async def _get_batch_or_404(db: AsyncSession, batch_id: UUID) -> TrackingBatch:
    result = await db.execute(select(TrackingBatch).where(TrackingBatch.id == batch_id))
    batch = result.scalar_one_or_none()
    if batch is None:
        raise HTTPException(status_code=404, detail=f"Batch {batch_id} not found")
    return batch


@router.post("/", response_model=BatchResponse, status_code=201)
async def submit_batch(
    batch_in: BatchCreate,
    db: AsyncSession = Depends(get_db),
) -> BatchResponse:
    """Create the batch and one QUEUED job per tracking in a single transaction."""
    batch = await db.run_sync(
        create_batch,
        customer_id=batch_in.customer_id,
        tenant_id=batch_in.tenant_id,
        user_id=batch_in.user_id,
        scan_id=batch_in.scan_id,
        max_attempts=batch_in.max_attempts,
        trackings=[t.to_job() for t in batch_in.trackings],
    )
    await db.commit()
    await db.refresh(batch)
    return BatchResponse.model_validate(batch)


@router.get("/", response_model=BatchListResponse)
async def list_batches(
    status: Optional[BatchStatus] = Query(None, description="Filter by batch status"),
    customer_id: Optional[str] = Query(None, description="Filter by customer"),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Batches per page"),
    db: AsyncSession = Depends(get_db),
) -> BatchListResponse:
    conditions = []
    if status:
        conditions.append(TrackingBatch.status == status.value)
    if customer_id:
        conditions.append(TrackingBatch.customer_id == customer_id)

    count_query = select(func.count(TrackingBatch.id))
    query = select(TrackingBatch)
    if conditions:
        count_query = count_query.where(*conditions)
        query = query.where(*conditions)
    total = (await db.execute(count_query)).scalar() or 0

    offset = (page - 1) * page_size
    query = query.order_by(TrackingBatch.created_at.desc()).offset(offset).limit(page_size)
    batches = (await db.execute(query)).scalars().all()

    return BatchListResponse(
        batches=[BatchResponse.model_validate(b) for b in batches],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/{batch_id}", response_model=BatchResponse)
async def get_batch(
    batch_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> BatchResponse:
    return BatchResponse.model_validate(await _get_batch_or_404(db, batch_id))


@router.get("/{batch_id}/jobs", response_model=list[JobResponse])
async def list_batch_jobs(
    batch_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> list[JobResponse]:
    await _get_batch_or_404(db, batch_id)
    query = (
        select(TrackingQueueJob)
        .where(TrackingQueueJob.batch_id == batch_id)
        .order_by(TrackingQueueJob.priority.asc(), TrackingQueueJob.created_at.asc())
    )
    jobs = (await db.execute(query)).scalars().all()
    return [JobResponse.model_validate(j) for j in jobs]


@router.post("/{batch_id}/cancel", response_model=BatchResponse)
async def cancel(
    batch_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> BatchResponse:
    """
    Cancel a batch.

    Jobs already picked by the dispatcher finish; the rest are never
    selected again because selection requires a PROCESSING batch.
    """
    batch = await _get_batch_or_404(db, batch_id)
    if batch.status in TERMINAL_BATCH_STATUSES:
        raise HTTPException(
            status_code=409,
            detail=f"Cannot cancel batch in {batch.status} state.",
        )

    batch = await db.run_sync(cancel_batch, batch_id)
    await db.commit()
    return BatchResponse.model_validate(batch)
