"""
Tests for the JobExecutor (the worker).

Each test runs one job against the scripted SimulatedProvisioningClient and
checks the job row, the batch counters and the broadcast events.
"""

from datetime import timedelta

import pytest

from conftest import aware, assert_counters_consistent, load_batch, load_job, make_batch
from jobs.base import ProvisioningAPI, ProvisioningError, StepOutcome, StepResult
from models.batch import TrackingBatch
from models.enums import BatchStatus, ErrorCode, JobStatus
from store.jobs import cancel_batch
from worker.executor import JobExecutor
from worker.quota import QuotaController


@pytest.fixture
def executor(session_factory, api, broadcaster, retry_policy, clock):
    return JobExecutor(
        session_factory,
        api,
        broadcaster,
        retry_policy=retry_policy,
        quota_controller=QuotaController(broadcaster, now=clock.now),
        now=clock.now,
    )


def test_success_completes_job_and_counts_it(session_factory, executor, api, broadcaster):
    batch_id, (job_id,) = make_batch(session_factory, 1)

    result = executor.execute(job_id)

    assert result.outcome == StepOutcome.SUCCESS
    job = load_job(session_factory, job_id)
    assert job.status == JobStatus.COMPLETED.value
    assert job.step is None
    assert job.started_at is None
    assert job.completed_at is not None
    assert job.result == {"gtm_tags": "gtm_tags/trk-1"}
    assert load_batch(session_factory, batch_id).completed == 1
    assert api.calls == [("trk-1", "gtm_tags")]

    channel = f"batch:{batch_id}"
    assert broadcaster.types(channel) == ["job_processing", "job_completed"]
    _, _, completed_event = broadcaster.events[-1]
    assert completed_event["completed"] == 1
    assert completed_event["failed"] == 0
    assert completed_event["total"] == 1
    assert completed_event["jobId"] == str(job_id)


def test_ads_step_runs_before_gtm(session_factory, executor, api):
    _, (job_id,) = make_batch(session_factory, 1, destinations=("GA4", "GOOGLE_ADS"))

    executor.execute(job_id)

    assert api.calls == [("trk-1", "ads_conversion"), ("trk-1", "gtm_tags")]
    assert set(load_job(session_factory, job_id).result) == {"ads_conversion", "gtm_tags"}


def test_permanent_error_fails_after_one_attempt(session_factory, executor, api, broadcaster):
    batch_id, (job_id,) = make_batch(session_factory, 1)
    api.script("trk-1", ProvisioningError("Invalid trigger configuration: selector is empty"))

    result = executor.execute(job_id)

    assert result.outcome == StepOutcome.PERMANENT_ERROR
    assert result.failed
    job = load_job(session_factory, job_id)
    assert job.status == JobStatus.FAILED.value
    assert job.attempt_count == 0
    assert job.next_retry_at is None
    assert job.started_at is None
    assert job.error_code == ErrorCode.PERMANENT.value
    assert "selector is empty" in job.last_error
    assert load_batch(session_factory, batch_id).failed == 1
    assert broadcaster.types()[-1] == "job_failed"
    assert_counters_consistent(session_factory, batch_id)


def test_transient_error_schedules_retry(session_factory, executor, api, clock, broadcaster):
    batch_id, (job_id,) = make_batch(session_factory, 1)
    api.script("trk-1", ProvisioningError("503 UNAVAILABLE"))

    result = executor.execute(job_id)

    assert result.outcome == StepOutcome.TRANSIENT_ERROR
    assert not result.failed
    job = load_job(session_factory, job_id)
    assert job.status == JobStatus.RETRYING.value
    assert job.attempt_count == 1
    assert aware(job.next_retry_at) == clock.now() + timedelta(seconds=15)
    assert job.started_at is None
    assert job.step is None
    assert job.error_code == ErrorCode.RETRYABLE.value

    _, event_type, data = broadcaster.events[-1]
    assert event_type == "job_retrying"
    assert data["error"] == "503 UNAVAILABLE"
    assert data["nextRetryAt"] == (clock.now() + timedelta(seconds=15)).isoformat()
    assert_counters_consistent(session_factory, batch_id)


def test_connection_errors_are_transient(session_factory, executor, api):
    _, (job_id,) = make_batch(session_factory, 1)
    api.script("trk-1", ConnectionResetError("connection reset by peer"))

    assert executor.execute(job_id).outcome == StepOutcome.TRANSIENT_ERROR


def test_transient_errors_fail_after_max_attempts(session_factory, executor, api, clock):
    """max_attempts=2: two retries, then FAILED on the third failure."""
    batch_id, (job_id,) = make_batch(session_factory, 1, max_attempts=2)
    api.script("trk-1", *[ProvisioningError("502 Bad Gateway")] * 3)

    statuses = []
    for _ in range(3):
        executor.execute(job_id)
        statuses.append(load_job(session_factory, job_id).status)
        clock.advance(600)

    assert statuses == ["RETRYING", "RETRYING", "FAILED"]
    job = load_job(session_factory, job_id)
    assert job.attempt_count == 2
    assert "gave up" in job.last_error
    assert load_batch(session_factory, batch_id).failed == 1


def test_quota_error_pauses_batch_without_spending_attempt(
    session_factory, executor, api, clock, broadcaster
):
    batch_id, (job_id, _) = make_batch(session_factory, 2)
    api.script("trk-1", StepResult(StepOutcome.QUOTA_ERROR, message="429 RESOURCE_EXHAUSTED"))

    result = executor.execute(job_id)

    assert result.outcome == StepOutcome.QUOTA_ERROR
    assert aware(result.retry_at) == clock.now() + timedelta(seconds=65)
    job = load_job(session_factory, job_id)
    assert job.status == JobStatus.QUEUED.value
    assert job.attempt_count == 0
    assert job.error_code == ErrorCode.QUOTA.value
    assert job.started_at is None

    batch = load_batch(session_factory, batch_id)
    assert batch.status == BatchStatus.PAUSED.value
    assert aware(batch.resume_after) == clock.now() + timedelta(seconds=65)
    assert batch.pause_reason
    assert broadcaster.types()[-1] == "batch_paused"
    assert_counters_consistent(session_factory, batch_id)


def test_completed_steps_are_not_repeated(session_factory, executor, api, clock):
    """Ads succeeded, GTM failed: the retry only sends the GTM step."""
    _, (job_id,) = make_batch(session_factory, 1, destinations=("BOTH",))
    api.script(
        "trk-1",
        StepResult.ok("customers/1/conversionActions/7"),
        ProvisioningError("CONCURRENT_MODIFICATION"),
    )

    executor.execute(job_id)
    assert load_job(session_factory, job_id).result == {
        "ads_conversion": "customers/1/conversionActions/7"
    }

    clock.advance(60)
    executor.execute(job_id)

    assert api.calls == [
        ("trk-1", "ads_conversion"),
        ("trk-1", "gtm_tags"),
        ("trk-1", "gtm_tags"),
    ]
    assert load_job(session_factory, job_id).status == JobStatus.COMPLETED.value


def test_success_without_resource_id_is_retried(session_factory, executor, api):
    _, (job_id,) = make_batch(session_factory, 1)
    api.script("trk-1", StepResult(StepOutcome.SUCCESS, resource_id=None))

    result = executor.execute(job_id)

    assert result.outcome == StepOutcome.TRANSIENT_ERROR
    assert "Sync incomplete" in load_job(session_factory, job_id).last_error


def test_unknown_job_is_reported_not_raised(executor):
    result = executor.execute("00000000-0000-0000-0000-000000000000")
    assert result.outcome == StepOutcome.PERMANENT_ERROR


def test_completion_resets_pause_escalation(session_factory, executor):
    batch_id, (job_id,) = make_batch(session_factory, 1)
    session = session_factory()
    batch = session.get(TrackingBatch, batch_id)
    batch.pause_count = 3
    session.commit()
    session.close()

    executor.execute(job_id)

    assert load_batch(session_factory, batch_id).pause_count == 0


class _CancelledDuringStep(ProvisioningAPI):
    """Cancels the batch from another session, then reports a quota error."""

    def __init__(self, session_factory, batch_id):
        self._session_factory = session_factory
        self._batch_id = batch_id

    def run_step(self, step, context):
        session = self._session_factory()
        cancel_batch(session, self._batch_id)
        session.commit()
        session.close()
        return StepResult(StepOutcome.QUOTA_ERROR, message="429 RESOURCE_EXHAUSTED")


def test_quota_error_does_not_revive_batch_cancelled_mid_step(
    session_factory, broadcaster, retry_policy, clock
):
    batch_id, (job_id,) = make_batch(session_factory, 1)
    executor = JobExecutor(
        session_factory,
        _CancelledDuringStep(session_factory, batch_id),
        broadcaster,
        retry_policy=retry_policy,
        quota_controller=QuotaController(broadcaster, now=clock.now),
        now=clock.now,
    )

    executor.execute(job_id)

    batch = load_batch(session_factory, batch_id)
    assert batch.status == BatchStatus.CANCELLED.value
    assert batch.resume_after is None
    assert batch.pause_count == 0
    job = load_job(session_factory, job_id)
    assert job.status == JobStatus.QUEUED.value
    assert job.attempt_count == 0
    assert "batch_paused" not in broadcaster.types()
    assert broadcaster.types()[-1] == "job_retrying"
