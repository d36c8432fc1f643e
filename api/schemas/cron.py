"""
Response schema for the cron trigger.

Field names go out in camelCase (quotaPaused, durationMs) because the
scheduler that calls this endpoint parses the JSON as-is.
"""

from typing import Optional

from pydantic import BaseModel, Field


class DispatchResponse(BaseModel):
    success: bool = True
    skipped: bool = False
    message: Optional[str] = None
    recovered: int = 0
    resumed: int = 0
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    retried: int = 0
    paused: int = 0
    finalized: int = 0
    quota_paused: bool = Field(default=False, alias="quotaPaused")
    duration_ms: int = Field(default=0, alias="durationMs")

    model_config = {"populate_by_name": True}
