"""
Dispatcher lock — at most one dispatcher tick runs system-wide.

The cron host may start several invocations at once (retries, overlapping
ticks, multiple regions). Provisioning steps are not safe to run
concurrently against the same Google account, so every tick first tries to
take this lock and does nothing if it can't.

Implementation: Redis SET NX EX.
- acquire() never blocks: it either gets the key or returns False
- each holder writes a random token, release() deletes the key only while
  it still holds that token, so a holder whose TTL expired can't release
  the next holder's lock
- the TTL frees the lock when a holder dies without releasing
"""

import logging
import secrets

from redis import Redis
from redis.exceptions import RedisError, WatchError

from config.settings import settings

logger = logging.getLogger(__name__)


class DispatcherLock:

    def __init__(
        self,
        redis_client: Redis,
        key: str = settings.DISPATCH_LOCK_KEY,
        ttl: int = settings.DISPATCH_LOCK_TTL,
    ):
        self._redis = redis_client
        self.key = key
        self.ttl = ttl
        self._token: str | None = None

    @property
    def held(self) -> bool:
        return self._token is not None

    def acquire(self) -> bool:
        token = secrets.token_hex(16)
        if self._redis.set(self.key, token, nx=True, ex=self.ttl):
            self._token = token
            return True
        return False

    def release(self) -> None:
        """Release if still ours. Never raises."""
        token, self._token = self._token, None
        if token is None:
            return
        try:
            with self._redis.pipeline() as pipe:
                pipe.watch(self.key)
                current = pipe.get(self.key)
                if current is not None and _decode(current) == token:
                    pipe.multi()
                    pipe.delete(self.key)
                    pipe.execute()
                else:
                    pipe.unwatch()
                    logger.warning(f"Lock {self.key} expired before release")
        except WatchError:
            logger.warning(f"Lock {self.key} changed hands during release")
        except RedisError as e:
            # the TTL will clear it
            logger.error(f"Failed to release lock {self.key}: {e}")

    def __enter__(self) -> bool:
        return self.acquire()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


def _decode(value) -> str:
    return value.decode() if isinstance(value, bytes) else value
