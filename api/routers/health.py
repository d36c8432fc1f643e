"""
Health check endpoint.

Checks Postgres and Redis connectivity (the dispatcher needs both: rows
for the queue, Redis for its lock and broadcasts) and reports how much
work is waiting.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from redis.asyncio import Redis

from api.dependencies import get_db, get_redis
from models.batch import TrackingBatch
from models.enums import ACTIVE_JOB_STATUSES, BatchStatus
from models.job import TrackingQueueJob

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(
    db: AsyncSession = Depends(get_db),
    redis: Redis = Depends(get_redis),
) -> dict:
    active_jobs = (
        await db.execute(
            select(func.count(TrackingQueueJob.id)).where(
                TrackingQueueJob.status.in_(ACTIVE_JOB_STATUSES)
            )
        )
    ).scalar() or 0
    paused_batches = (
        await db.execute(
            select(func.count(TrackingBatch.id)).where(
                TrackingBatch.status == BatchStatus.PAUSED.value
            )
        )
    ).scalar() or 0

    await redis.ping()

    return {
        "status": "healthy",
        "postgres": "ok",
        "redis": "ok",
        "active_jobs": active_jobs,
        "paused_batches": paused_batches,
    }
