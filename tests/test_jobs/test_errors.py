"""Tests for provisioning error classification and step planning."""

import pytest

from jobs.base import ProvisioningError, ProvisioningStep, StepOutcome, plan_steps
from jobs.errors import classify_error, classify_message
from models.enums import TrackingDestination


@pytest.mark.parametrize(
    "message",
    [
        "429 Too Many Requests",
        "RESOURCE_EXHAUSTED: Quota exceeded for quota metric 'Queries per minute'",
        "dailyLimitExceeded",
        "rate limit exceeded per 100 seconds",
    ],
)
def test_quota_messages(message):
    assert classify_message(message) == StepOutcome.QUOTA_ERROR


@pytest.mark.parametrize(
    "message",
    [
        "503 UNAVAILABLE",
        "DEADLINE_EXCEEDED",
        "CONCURRENT_MODIFICATION: Multiple requests were attempting to modify the same resource",
        "socket hang up",
        "Sync incomplete: conversion label could not be retrieved",
    ],
)
def test_transient_messages(message):
    assert classify_message(message) == StepOutcome.TRANSIENT_ERROR


@pytest.mark.parametrize(
    "message",
    ["Invalid trigger configuration", "Account not found", "PERMISSION_DENIED"],
)
def test_everything_else_is_permanent(message):
    assert classify_message(message) == StepOutcome.PERMANENT_ERROR


def test_quota_wins_over_transient_wording():
    assert classify_message("503 UNAVAILABLE: RESOURCE_EXHAUSTED") == StepOutcome.QUOTA_ERROR


def test_explicit_outcome_is_respected():
    exc = ProvisioningError("503 but the client knows better", outcome=StepOutcome.PERMANENT_ERROR)
    assert classify_error(exc).outcome == StepOutcome.PERMANENT_ERROR


def test_retry_after_is_carried_over():
    result = classify_error(ProvisioningError("429", retry_after=42))
    assert result.outcome == StepOutcome.QUOTA_ERROR
    assert result.retry_after == 42


def test_network_errors_are_transient():
    assert classify_error(ConnectionResetError("reset")).outcome == StepOutcome.TRANSIENT_ERROR
    assert classify_error(TimeoutError()).outcome == StepOutcome.TRANSIENT_ERROR


def test_unknown_exception_without_message():
    result = classify_error(KeyError())
    assert result.outcome == StepOutcome.PERMANENT_ERROR
    assert result.message


@pytest.mark.parametrize(
    "destinations, expected",
    [
        (["GA4"], [ProvisioningStep.GTM_TAGS]),
        (None, [ProvisioningStep.GTM_TAGS]),
        (["GOOGLE_ADS"], [ProvisioningStep.ADS_CONVERSION, ProvisioningStep.GTM_TAGS]),
        ([TrackingDestination.BOTH], [ProvisioningStep.ADS_CONVERSION, ProvisioningStep.GTM_TAGS]),
    ],
)
def test_plan_steps(destinations, expected):
    assert plan_steps(destinations) == expected
