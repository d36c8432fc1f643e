"""
Broadcaster — best-effort live progress over Redis pub/sub.

Observers subscribe to:
    batch:{batch_id}        progress of one provisioning batch
    customer:{customer_id}  customer-level events (health-check workflow)

Every message is a JSON envelope:
    {"event": "batch_progress", "type": "job_completed",
     "timestamp": "2026-01-01T00:00:00+00:00", "data": {...}}

Batch events always carry completed/failed/total in `data`, so an observer
that joins late can render the current state from the next event alone.

Publishing never raises. A Redis outage must not fail or stall a job, so
errors are logged and dropped.
"""

import enum
import json
import logging
from typing import Any, Optional

from redis import Redis
from redis.exceptions import RedisError

from models.base import utcnow

logger = logging.getLogger(__name__)


class BatchEvent(str, enum.Enum):
    JOB_PROCESSING = "job_processing"
    JOB_COMPLETED = "job_completed"
    JOB_RETRYING = "job_retrying"
    JOB_FAILED = "job_failed"
    BATCH_PAUSED = "batch_paused"
    BATCH_RESUMED = "batch_resumed"
    BATCH_COMPLETED = "batch_completed"


class Broadcaster:

    BATCH_CHANNEL = "batch:{}"
    CUSTOMER_CHANNEL = "customer:{}"

    def __init__(self, redis_client: Optional[Redis]):
        # None disables publishing entirely (no Redis configured)
        self._redis = redis_client

    def publish_batch(self, batch_id: Any, event_type: str, data: dict) -> bool:
        return self._publish(
            self.BATCH_CHANNEL.format(batch_id), "batch_progress", event_type, data
        )

    def publish_customer(self, customer_id: Any, event_type: str, data: dict) -> bool:
        return self._publish(
            self.CUSTOMER_CHANNEL.format(customer_id), "customer_progress", event_type, data
        )

    def _publish(self, channel: str, event: str, event_type: Any, data: dict) -> bool:
        """Returns True if the message reached Redis, False otherwise."""
        if self._redis is None:
            return False
        if isinstance(event_type, enum.Enum):
            event_type = event_type.value
        try:
            message = json.dumps(
                {
                    "event": event,
                    "type": event_type,
                    "timestamp": utcnow().isoformat(),
                    "data": data,
                },
                default=str,
            )
            self._redis.publish(channel, message)
            return True
        except RedisError as e:
            logger.warning(f"Broadcast {event_type} on {channel} dropped: {e}")
            return False
        except Exception as e:
            logger.warning(f"Broadcast {event_type} on {channel} failed: {e}", exc_info=True)
            return False
