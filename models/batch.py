"""
TrackingBatch ORM model — maps to the "tracking_batches" table.

A batch groups the queue jobs submitted together for one customer. It owns
the state that applies to all of them at once:
- status: PROCESSING / PAUSED / COMPLETED / CANCELLED
- completed / failed counters, incremented as jobs finish
- pause bookkeeping (pause_reason, paused_at, resume_after, pause_count)
  written by the quota controller

completed + failed + (jobs still active) == total_jobs at all times.
"""

import uuid
from datetime import datetime

from sqlalchemy import String, Integer, DateTime, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from models.base import Base, utcnow
from models.enums import BatchStatus


class TrackingBatch(Base):
    __tablename__ = "tracking_batches"

    # ── Identity & ownership ────────────────────────────────────
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    customer_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    scan_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # ── Progress counters ───────────────────────────────────────
    total_jobs: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    completed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # ── State ───────────────────────────────────────────────────
    status: Mapped[str] = mapped_column(
        String(20), default=BatchStatus.PROCESSING.value, nullable=False, index=True
    )
    pause_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    paused_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resume_after: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    # consecutive quota pauses, used to escalate the cooldown
    pause_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # ── Lifecycle timestamps ────────────────────────────────────
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    jobs: Mapped[list["TrackingQueueJob"]] = relationship(  # noqa: F821
        back_populates="batch", cascade="all, delete-orphan", passive_deletes=True
    )

    def counters(self) -> dict:
        """Aggregate progress carried on every broadcast event."""
        return {"completed": self.completed, "failed": self.failed, "total": self.total_jobs}

    def __repr__(self) -> str:
        return f"<TrackingBatch {self.id} {self.status} {self.completed}+{self.failed}/{self.total_jobs}>"
