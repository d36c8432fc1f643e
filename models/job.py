"""
TrackingQueueJob ORM model — maps to the "tracking_queue_jobs" table.

One row per tracking to provision. Key design decisions:
- priority + created_at: the dispatcher picks the lowest priority number,
  oldest first
- step: which provisioning call is in flight, so a stuck job shows where
  it died
- result (JSON): resource ids of finished steps; a re-run skips them
- started_at is set only while the job is PROCESSING; crash recovery keys
  off it
- attempt_count counts transient failures only; quota pauses and
  permanent failures leave it alone
"""

import uuid
from datetime import datetime

from sqlalchemy import String, Integer, DateTime, Text, ForeignKey, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from config.settings import settings
from models.base import Base, JSONType, utcnow
from models.batch import TrackingBatch
from models.enums import JobStatus


class TrackingQueueJob(Base):
    __tablename__ = "tracking_queue_jobs"

    # ── Identity ────────────────────────────────────────────────
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    batch_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tracking_batches.id", ondelete="CASCADE"), nullable=False, index=True
    )
    tracking_id: Mapped[str] = mapped_column(String(64), nullable=False)
    recommendation_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # ── Scheduling fields ───────────────────────────────────────
    status: Mapped[str] = mapped_column(
        String(20), default=JobStatus.QUEUED.value, nullable=False, index=True
    )
    step: Mapped[str | None] = mapped_column(String(50), nullable=True)
    priority: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # ── Payload & results ───────────────────────────────────────
    #   payload: {"name": "Contact form submit", "destinations": ["GA4", "GOOGLE_ADS"]}
    #   result:  {"ads_conversion": "customers/1/conversionActions/9", "gtm_tags": "tag-17"}
    payload: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    result: Mapped[dict | None] = mapped_column(JSONType, nullable=True)

    # ── Retry tracking ──────────────────────────────────────────
    attempt_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_attempts: Mapped[int] = mapped_column(
        Integer, default=lambda: settings.RETRY_MAX_ATTEMPTS, nullable=False
    )
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_code: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # ── Lifecycle timestamps ────────────────────────────────────
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    next_retry_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    batch: Mapped[TrackingBatch] = relationship(back_populates="jobs")

    @property
    def tracking_name(self) -> str:
        return (self.payload or {}).get("name") or "Unknown"

    def __repr__(self) -> str:
        return f"<TrackingQueueJob {self.id} {self.status} step={self.step}>"
