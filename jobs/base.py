"""
Provisioning API contract.

The worker does not know how tags or conversion actions are created. It
calls ProvisioningAPI.run_step() once per step and only looks at the
outcome:

    SUCCESS          step done, resource_id recorded on the job
    TRANSIENT_ERROR  network / 5xx / concurrent modification → retry later
    QUOTA_ERROR      provider rate limit → pause the whole batch
    PERMANENT_ERROR  bad configuration, missing account → fail the job

A client may also raise ProvisioningError (or anything else) instead of
returning a failed StepResult; jobs/errors.py classifies those.

Steps must be idempotent on the provider side: after a crash the same step
can be sent again.
"""

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

from models.enums import TrackingDestination


class ProvisioningStep(str, enum.Enum):
    ADS_CONVERSION = "ads_conversion"  # Google Ads conversion action
    GTM_TAGS = "gtm_tags"              # GTM trigger + tags (needs the Ads label)


class StepOutcome(str, enum.Enum):
    SUCCESS = "success"
    TRANSIENT_ERROR = "transient_error"
    QUOTA_ERROR = "quota_error"
    PERMANENT_ERROR = "permanent_error"


@dataclass
class StepResult:
    outcome: StepOutcome
    resource_id: Optional[str] = None
    message: Optional[str] = None
    retry_after: Optional[float] = None  # seconds, when the provider says so

    @classmethod
    def ok(cls, resource_id: str) -> "StepResult":
        return cls(StepOutcome.SUCCESS, resource_id=resource_id)


@dataclass
class ProvisioningContext:
    """What a client needs to provision one tracking."""
    job_id: str
    tracking_id: str
    customer_id: str
    tenant_id: str
    user_id: str
    payload: dict = field(default_factory=dict)
    # resource ids from earlier steps of the same job
    resources: dict = field(default_factory=dict)


class ProvisioningError(Exception):
    """Raised by clients; `outcome` pins the classification when known."""

    def __init__(
        self,
        message: str,
        outcome: Optional[StepOutcome] = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message)
        self.outcome = outcome
        self.retry_after = retry_after


class ProvisioningAPI(ABC):

    @abstractmethod
    def run_step(self, step: ProvisioningStep, context: ProvisioningContext) -> StepResult:
        """Perform one provisioning step against the provider."""
        ...


def plan_steps(destinations) -> list[ProvisioningStep]:
    """
    Steps for a tracking, in execution order.

    The Ads conversion action comes first because the GTM Ads tag needs its
    conversion label.
    """
    destinations = {str(getattr(d, "value", d)) for d in (destinations or [])}
    steps = []
    if destinations & {TrackingDestination.GOOGLE_ADS.value, TrackingDestination.BOTH.value}:
        steps.append(ProvisioningStep.ADS_CONVERSION)
    steps.append(ProvisioningStep.GTM_TAGS)
    return steps
