"""
Pydantic schemas for the /batches endpoints.

These are NOT database models — they define the HTTP API contract:
- BatchCreate: a bulk provisioning request, one TrackingIn per tracking
- BatchResponse: a batch with its counters and pause state
- JobResponse: one queue job, including last_error and retry timing
"""

from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from uuid import UUID

from models.enums import BatchStatus, TrackingDestination


class TrackingIn(BaseModel):
    tracking_id: str = Field(..., min_length=1, max_length=64)
    name: str = Field(..., min_length=1, max_length=255, examples=["Contact form submit"])
    destinations: list[TrackingDestination] = Field(
        default_factory=lambda: [TrackingDestination.GA4], min_length=1
    )
    recommendation_id: Optional[str] = Field(default=None, max_length=64)
    priority: int = Field(default=0, ge=0, le=100, description="lower runs first")

    def to_job(self) -> dict:
        """Shape expected by store.jobs.create_batch."""
        return {
            "tracking_id": self.tracking_id,
            "recommendation_id": self.recommendation_id,
            "priority": self.priority,
            "payload": {
                "name": self.name,
                "destinations": [d.value for d in self.destinations],
            },
        }


class BatchCreate(BaseModel):
    """Request body for POST /batches/."""

    customer_id: str = Field(..., min_length=1, max_length=64)
    tenant_id: str = Field(..., min_length=1, max_length=64)
    user_id: str = Field(..., min_length=1, max_length=64)
    scan_id: Optional[str] = Field(default=None, max_length=64)
    max_attempts: Optional[int] = Field(default=None, ge=0, le=20)
    trackings: list[TrackingIn] = Field(..., min_length=1, max_length=500)


class BatchResponse(BaseModel):
    id: UUID
    customer_id: str
    tenant_id: str
    user_id: str
    scan_id: Optional[str] = None
    status: BatchStatus
    total_jobs: int
    completed: int
    failed: int
    pause_reason: Optional[str] = None
    paused_at: Optional[datetime] = None
    resume_after: Optional[datetime] = None
    created_at: datetime
    completed_at: Optional[datetime] = None

    # read straight from the SQLAlchemy model attributes
    model_config = {"from_attributes": True}


class BatchListResponse(BaseModel):
    batches: list[BatchResponse]
    total: int
    page: int
    page_size: int


class JobResponse(BaseModel):
    id: UUID
    batch_id: UUID
    tracking_id: str
    recommendation_id: Optional[str] = None
    status: str
    step: Optional[str] = None
    priority: int
    payload: dict
    result: Optional[dict] = None
    attempt_count: int
    max_attempts: int
    last_error: Optional[str] = None
    error_code: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    next_retry_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    model_config = {"from_attributes": True}
