"""Tests for the pipeline error taxonomy."""

from __future__ import annotations

import json

import pytest

from threshold.error_handling.errors import (
    GENERIC_SERVICE_MESSAGE,
    AttemptInProgress,
    ConfigurationError,
    ErrorCategory,
    GenerationFailed,
    GenerationTimeout,
    NetworkFailure,
    PipelineError,
    PollFailure,
    StartFailure,
    looks_like_markup,
    sanitize_error_body,
)

pytestmark = pytest.mark.usefixtures("add_repo_to_path")


@pytest.mark.unit
@pytest.mark.parametrize(
    "body",
    [
        "<!DOCTYPE html><html><body>502</body></html>",
        "  <html><head></head></html>",
        "<?xml version='1.0'?><Error/>",
        "upstream said </HTML>",
    ],
)
def test_markup_bodies_become_generic_message(body):
    assert looks_like_markup(body)
    assert sanitize_error_body(body) == GENERIC_SERVICE_MESSAGE


@pytest.mark.unit
def test_sanitize_strips_tags_and_truncates():
    assert sanitize_error_body("quota <b>exceeded</b>\n  for key") == "quota exceeded for key"
    assert sanitize_error_body(None) is None
    assert not looks_like_markup("")

    long_text = "a" * 300
    sanitized = sanitize_error_body(long_text)
    assert len(sanitized) == 200
    assert sanitized.endswith("...")


@pytest.mark.unit
def test_user_messages_are_short_and_sanitized():
    assert StartFailure("boom", status_code=500).user_message == "The world service refused the request."
    assert StartFailure("boom", error_body="<html>oops</html>").user_message == GENERIC_SERVICE_MESSAGE
    assert PollFailure("x", operation_id="op", detail="quota").user_message == "World construction failed: quota"
    timeout = GenerationTimeout("late", operation_id="op", elapsed=901.0, deadline=900.0)
    assert timeout.user_message == "World construction timed out after 15 minutes."
    assert timeout.category is ErrorCategory.TIMEOUT
    assert timeout.recovery_action == "restart"


@pytest.mark.unit
def test_generation_failed_wraps_final_error():
    cause = PollFailure("bad", operation_id="op-7", detail="content policy")

    failed = GenerationFailed(cause, attempt_id="att-1", fallback_used=True)

    assert failed.final_error is cause
    assert failed.user_message == cause.user_message
    assert failed.context.attempt_id == "att-1"
    assert failed.context.operation_id == "op-7"
    assert failed.context.additional["fallback_used"] is True
    assert failed.retryable


@pytest.mark.unit
def test_network_failure_records_paths_and_rejections():
    failure = NetworkFailure(
        "all paths failed",
        url="https://cdn.example.com/a.spz",
        last_status=502,
        attempted_paths=["direct", "corsproxy"],
        rejections=["direct: HTTP 502"],
    )

    assert failure.category is ErrorCategory.NETWORK
    assert failure.context.additional["attempted_paths"] == ["direct", "corsproxy"]
    assert failure.rejections == ["direct: HTTP 502"]


@pytest.mark.unit
def test_to_dict_redacts_paths(monkeypatch):
    monkeypatch.delenv("THRESHOLD_DEBUG", raising=False)
    error = ConfigurationError("Config file not found: /etc/threshold/config.json", config_key="x")

    payload = error.to_dict()

    assert payload["error_type"] == "ConfigurationError"
    assert "/etc/threshold" not in payload["message"]
    assert "<redacted-path>" in payload["message"]
    assert payload["severity"] == "critical"
    assert payload["traceback"] is None
    assert json.loads(error.to_json())["context"]["additional"]["config_key"] == "x"


@pytest.mark.unit
def test_attempt_in_progress_is_informational():
    error = AttemptInProgress("att-9")

    assert isinstance(error, PipelineError)
    assert error.category is ErrorCategory.CONCURRENCY
    assert error.context.attempt_id == "att-9"
    assert "att-9" in error.message


@pytest.mark.unit
@pytest.mark.parametrize(
    "deadline, expected",
    [
        (30.0, "World construction timed out after 30 seconds."),
        (60.0, "World construction timed out after 1 minute."),
        (1200.0, "World construction timed out after 20 minutes."),
    ],
)
def test_timeout_message_scales_with_deadline(deadline, expected):
    timeout = GenerationTimeout("late", operation_id="op", elapsed=deadline, deadline=deadline)

    assert timeout.user_message == expected
