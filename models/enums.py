"""
Shared enumerations used across the entire project.

Using Python enums (inheriting from str) means:
- They serialize to JSON automatically ("QUEUED", not "JobStatus.QUEUED")
- They work as SQLAlchemy column values
- They work as FastAPI query parameters
"""

import enum


class JobStatus(str, enum.Enum):
    QUEUED = "QUEUED"          # waiting to be picked by the dispatcher
    PROCESSING = "PROCESSING"  # a worker is calling the provider right now
    RETRYING = "RETRYING"      # transient failure, eligible again after next_retry_at
    COMPLETED = "COMPLETED"    # all provisioning steps succeeded
    FAILED = "FAILED"          # permanent failure or retries exhausted


# Jobs in these states still count against a batch's remaining work
ACTIVE_JOB_STATUSES = (
    JobStatus.QUEUED.value,
    JobStatus.PROCESSING.value,
    JobStatus.RETRYING.value,
)


class BatchStatus(str, enum.Enum):
    PROCESSING = "PROCESSING"  # jobs may be selected
    PAUSED = "PAUSED"          # quota cooldown, resumes at resume_after
    COMPLETED = "COMPLETED"    # terminal, possibly with failed jobs
    CANCELLED = "CANCELLED"    # terminal, stopped by a user


TERMINAL_BATCH_STATUSES = (BatchStatus.COMPLETED.value, BatchStatus.CANCELLED.value)


class ErrorCode(str, enum.Enum):
    QUOTA = "QUOTA"
    RETRYABLE = "RETRYABLE"
    PERMANENT = "PERMANENT"


class TrackingDestination(str, enum.Enum):
    GA4 = "GA4"
    GOOGLE_ADS = "GOOGLE_ADS"
    BOTH = "BOTH"
