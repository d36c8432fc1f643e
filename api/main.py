"""
FastAPI application factory.

This file:
1. Creates the FastAPI app
2. Runs startup logic (create DB tables, connect to Redis, build the dispatcher)
3. Registers all routers (cron, batches, health)
4. Runs shutdown logic (close connections)

To run:  uvicorn api.main:app --host 0.0.0.0 --port 8000
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from redis import Redis
from redis.asyncio import Redis as AsyncRedis

from config.settings import settings
from jobs.registry import create_client
from models.base import async_engine, Base, SyncSessionLocal
from scheduler.dispatcher import build_dispatcher
from api.routers import batches, cron, health

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup:
    - Creates all DB tables if they don't exist (safe to run multiple times)
    - Connects to Redis (async for health, sync for the dispatcher's lock
      and broadcasts)
    - Builds the dispatcher the cron endpoint runs

    Shutdown:
    - Closes both Redis connections
    - Disposes the DB engine (closes connection pool)
    """
    # ── Startup ─────────────────────────────────────────────────
    logger.info("Creating database tables...")
    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    app.state.redis = AsyncRedis.from_url(settings.redis_url)
    sync_redis = Redis.from_url(
        settings.redis_url,
        socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
        socket_connect_timeout=settings.REDIS_SOCKET_TIMEOUT,
    )
    app.state.dispatcher = build_dispatcher(
        SyncSessionLocal, sync_redis, create_client(settings.PROVISIONING_CLIENT)
    )
    logger.info(f"API ready, provisioning client: {settings.PROVISIONING_CLIENT}")

    yield  # app is running and serving requests between startup and shutdown

    # ── Shutdown ────────────────────────────────────────────────
    await app.state.redis.close()
    sync_redis.close()
    await async_engine.dispose()
    logger.info("API shut down")


def create_app() -> FastAPI:
    """Factory function that builds and configures the FastAPI application."""
    app = FastAPI(
        title="Tracking Queue",
        description="Cron-driven provisioning queue for conversion tracking (GTM + Google Ads)",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.include_router(health.router)
    app.include_router(cron.router)
    app.include_router(batches.router)

    return app


# This is what uvicorn imports: `uvicorn api.main:app`
app = create_app()
