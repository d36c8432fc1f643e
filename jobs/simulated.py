"""
Simulated provisioning client.

Stands in for the Google Tag Manager / Google Ads clients in demos and
tests, so the whole queue can run without credentials.

Two ways to drive it:

1. Scripted responses per tracking_id, consumed in order:
       client.script("trk-1", StepResult(StepOutcome.QUOTA_ERROR, message="429"))
       client.script("trk-2", ProvisioningError("503 UNAVAILABLE"))
   Exceptions in the script are raised, results are returned.

2. Per-job payload knobs, when nothing is scripted:
       {"simulate": {"duration": 0.5}}                          → slow, succeeds
       {"simulate": {"fail_probability": 0.3}}                  → transient 503s
       {"simulate": {"fail_probability": 1.0, "error": "429 RESOURCE_EXHAUSTED"}}

Every call is recorded in `calls` as (tracking_id, step).
"""

import random
import threading
import time
from collections import defaultdict, deque
from typing import Union

from jobs.base import (
    ProvisioningAPI,
    ProvisioningContext,
    ProvisioningError,
    ProvisioningStep,
    StepResult,
)

ScriptEntry = Union[StepResult, BaseException]


class SimulatedProvisioningClient(ProvisioningAPI):

    def __init__(self, rng: random.Random | None = None):
        self._rng = rng or random.Random()
        self._scripts: dict[str, deque] = defaultdict(deque)
        self._lock = threading.Lock()
        self.calls: list[tuple[str, str]] = []

    def script(self, tracking_id: str, *entries: ScriptEntry) -> None:
        with self._lock:
            self._scripts[tracking_id].extend(entries)

    def run_step(self, step: ProvisioningStep, context: ProvisioningContext) -> StepResult:
        with self._lock:
            self.calls.append((context.tracking_id, step.value))
            scripted = self._scripts.get(context.tracking_id)
            entry = scripted.popleft() if scripted else None

        if isinstance(entry, BaseException):
            raise entry
        if entry is not None:
            return entry

        knobs = context.payload.get("simulate", {})
        duration = knobs.get("duration", 0.0)
        fail_probability = knobs.get("fail_probability", 0.0)

        # Decide failure before sleeping (no point waiting just to fail)
        if self._rng.random() < fail_probability:
            raise ProvisioningError(knobs.get("error", "503 UNAVAILABLE (simulated)"))

        if duration:
            time.sleep(duration)
        return StepResult.ok(f"{step.value}/{context.tracking_id}")
