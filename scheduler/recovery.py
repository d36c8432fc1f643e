"""
Stuck-job recovery.

If the host kills an invocation mid-step (timeout, deploy, OOM), the job it
was running stays PROCESSING forever. Every dispatcher tick starts by
sweeping those back to QUEUED. The threshold is well above any single
step's duration, so a job that is genuinely in flight is never touched.
"""

import logging
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from config.settings import settings
from store import jobs as store

logger = logging.getLogger(__name__)


def recover_stuck_jobs(
    session: Session,
    now: datetime,
    stale_after: float = settings.STUCK_JOB_THRESHOLD,
) -> int:
    """Requeue jobs PROCESSING since before now - stale_after. Commits."""
    cutoff = now - timedelta(seconds=stale_after)
    count = store.requeue_stale_jobs(session, cutoff)
    session.commit()
    if count:
        logger.info(f"Reset {count} stuck PROCESSING jobs back to QUEUED")
    return count
