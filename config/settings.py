"""
Centralized configuration using pydantic-settings.

How it works:
- Reads environment variables automatically (e.g., CRON_SECRET env var → Settings.CRON_SECRET)
- Falls back to defaults defined here if env vars are not set
- Can also read from a .env file in the project root

Every module imports `settings` from here instead of hardcoding values.
Components that need a value for testing (run budget, delays, thresholds)
take it as a constructor argument and default to the setting.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── PostgreSQL ──────────────────────────────────────────────
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "trackingqueue"
    POSTGRES_PASSWORD: str = "trackingqueue"
    POSTGRES_DB: str = "trackingqueue"

    # ── Redis ───────────────────────────────────────────────────
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_SOCKET_TIMEOUT: float = 2.0  # keeps broadcasts from stalling the dispatcher

    # ── Cron trigger ────────────────────────────────────────────
    CRON_SECRET: str | None = None     # unset → every trigger call is rejected

    # ── Provisioning ────────────────────────────────────────────
    PROVISIONING_CLIENT: str = "simulated"  # name registered in jobs/registry.py

    # ── Dispatcher ──────────────────────────────────────────────
    DISPATCH_MAX_RUNTIME: float = 25.0   # seconds; stays under the host's 30s limit
    DISPATCH_JOB_DELAY: float = 1.5      # seconds between jobs (provider rate limit)
    DISPATCH_POLL_INTERVAL: float = 5.0  # seconds between ticks in worker.main
    DISPATCH_LOCK_KEY: str = "trackingqueue:dispatcher:lock"
    DISPATCH_LOCK_TTL: int = 120         # seconds; must exceed DISPATCH_MAX_RUNTIME
    STUCK_JOB_THRESHOLD: float = 60.0    # seconds a job may sit in PROCESSING

    # ── Retry ───────────────────────────────────────────────────
    RETRY_MAX_ATTEMPTS: int = 5
    RETRY_BASE_DELAY: float = 15.0       # first retry after ~15s, then doubling
    RETRY_MAX_DELAY: float = 300.0
    RETRY_JITTER: float = 0.1            # up to +10% on each delay

    # ── Quota cooldowns ─────────────────────────────────────────
    QUOTA_COOLDOWN_MINUTE: int = 65      # per-minute quotas (default)
    QUOTA_COOLDOWN_100S: int = 105       # per-100-seconds quotas
    QUOTA_COOLDOWN_DAILY: int = 3600     # daily quotas
    QUOTA_COOLDOWN_CAP: int = 300        # ceiling for non-daily cooldowns
    QUOTA_MAX_MULTIPLIER: int = 5

    # ── App ─────────────────────────────────────────────────────
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    @property
    def database_url(self) -> str:
        """Async connection string for FastAPI (uses asyncpg driver)."""
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def sync_database_url(self) -> str:
        """Sync connection string for the dispatcher (uses psycopg2 driver)."""
        return (
            f"postgresql+psycopg2://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def redis_url(self) -> str:
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


# Singleton, import this everywhere
settings = Settings()
