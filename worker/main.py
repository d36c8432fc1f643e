"""
Long-running worker entry point.

The cron endpoint is the normal driver in serverless deployments. Where a
long-lived process is available, this runs the same dispatcher tick in a
loop instead:

    tick → wait DISPATCH_POLL_INTERVAL → tick → ...

Each tick still takes the dispatcher lock, so running this next to the cron
trigger (or running two of these) is safe: extra ticks are no-ops. Stuck-job
recovery also still runs every tick, since this process can die mid-step
like any other.

To run:
    python -m worker.main
"""

import logging
import signal
import threading

from redis import Redis

from config.settings import settings
from jobs.registry import create_client
from models.base import Base, sync_engine, SyncSessionLocal
from scheduler.dispatcher import build_dispatcher

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def run_forever(dispatcher, shutdown_event: threading.Event, poll_interval: float) -> int:
    """Tick until shutdown_event is set. Returns the number of ticks run."""
    ticks = 0
    while not shutdown_event.is_set():
        try:
            dispatcher.run_once()
        except Exception as e:
            # keep the loop alive; the next tick's recovery repairs job state
            logger.error(f"Dispatcher tick failed: {e}", exc_info=True)
        ticks += 1
        shutdown_event.wait(poll_interval)
    return ticks


def main():
    # Safe to call repeatedly; a no-op when the API already created them
    logger.info("Ensuring database tables exist...")
    Base.metadata.create_all(sync_engine)

    redis_client = Redis.from_url(
        settings.redis_url,
        socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
        socket_connect_timeout=settings.REDIS_SOCKET_TIMEOUT,
    )
    dispatcher = build_dispatcher(
        SyncSessionLocal, redis_client, create_client(settings.PROVISIONING_CLIENT)
    )

    # ── Graceful shutdown on Ctrl+C or SIGTERM ──────────────────
    shutdown_event = threading.Event()

    def shutdown(signum, frame):
        logger.info("Shutdown signal received, finishing current tick...")
        shutdown_event.set()

    signal.signal(signal.SIGTERM, shutdown)
    signal.signal(signal.SIGINT, shutdown)

    logger.info("Worker process running. Press Ctrl+C to stop.")
    run_forever(dispatcher, shutdown_event, settings.DISPATCH_POLL_INTERVAL)

    redis_client.close()
    logger.info("Worker process exited")


if __name__ == "__main__":
    main()
