"""
Classification of provisioning failures.

Google's APIs do not give us a stable error type across GTM and Ads, so a
raised error is classified from its message when the client did not pin an
outcome itself. Quota patterns are checked first: a 429 body often also
mentions UNAVAILABLE-style wording.
"""

from typing import Optional

from jobs.base import ProvisioningError, StepOutcome, StepResult

QUOTA_PATTERNS = (
    "429",
    "RESOURCE_EXHAUSTED",
    "rateLimitExceeded",
    "dailyLimitExceeded",
    "quotaExceeded",
    "Quota exceeded",
    "Rate limit",
    "Queries per minute",
    "too many requests",
)

TRANSIENT_PATTERNS = (
    "500",
    "502",
    "503",
    "504",
    "UNAVAILABLE",
    "DEADLINE_EXCEEDED",
    "CONCURRENT_MODIFICATION",
    "Unique constraint failed",
    "socket hang up",
    "ECONNRESET",
    "ETIMEDOUT",
    "ENOTFOUND",
    "label could not be retrieved",
    "Retry should resolve this",
    "Sync incomplete",
    "Multiple requests were attempting",
)

_QUOTA_LOWER = tuple(p.lower() for p in QUOTA_PATTERNS)


def is_quota_message(message: str) -> bool:
    lower = message.lower()
    return any(p in lower for p in _QUOTA_LOWER)


def is_transient_message(message: str) -> bool:
    return any(p in message for p in TRANSIENT_PATTERNS)


def classify_message(message: str) -> StepOutcome:
    if is_quota_message(message):
        return StepOutcome.QUOTA_ERROR
    if is_transient_message(message):
        return StepOutcome.TRANSIENT_ERROR
    return StepOutcome.PERMANENT_ERROR


def classify_error(exc: BaseException) -> StepResult:
    """Turn an exception raised by a provisioning client into a StepResult."""
    message = str(exc) or exc.__class__.__name__
    retry_after: Optional[float] = None

    if isinstance(exc, ProvisioningError):
        retry_after = exc.retry_after
        if exc.outcome is not None:
            return StepResult(exc.outcome, message=message, retry_after=retry_after)

    if isinstance(exc, (ConnectionError, TimeoutError)) and not is_quota_message(message):
        outcome = StepOutcome.TRANSIENT_ERROR
    else:
        outcome = classify_message(message)
    return StepResult(outcome, message=message, retry_after=retry_after)
