"""
FastAPI dependency injection.

How this works:
- An endpoint declares `db: AsyncSession = Depends(get_db)`
- FastAPI calls get_db() before your endpoint runs, creating a DB session
- After the endpoint returns (or raises), the session is automatically closed

The dispatcher is built once at startup (api/main.py lifespan) and handed
out by get_dispatcher(); tests override it with one wired to SQLite and
fakeredis.
"""

import secrets
from typing import AsyncGenerator, Optional

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession
from redis.asyncio import Redis

from config.settings import settings
from models.base import AsyncSessionLocal
from scheduler.dispatcher import Dispatcher


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yields an async database session, auto-closes when the request ends."""
    async with AsyncSessionLocal() as session:
        yield session


async def get_redis(request: Request) -> Redis:
    """Returns the Redis client stored on the app during startup."""
    return request.app.state.redis


def get_dispatcher(request: Request) -> Dispatcher:
    return request.app.state.dispatcher


def get_cron_secret() -> Optional[str]:
    return settings.CRON_SECRET


def verify_cron_secret(
    authorization: Optional[str] = Header(None),
    secret: Optional[str] = Depends(get_cron_secret),
) -> None:
    """
    Bearer-token check for the cron trigger.

    No configured secret means nothing is authorized.
    """
    expected = f"Bearer {secret}" if secret else None
    if (
        expected is None
        or authorization is None
        or not secrets.compare_digest(authorization.encode(), expected.encode())
    ):
        raise HTTPException(status_code=401, detail="Unauthorized")
