"""
Unit tests for request and job types.
"""

from uuid import uuid4

import pytest
from pydantic import ValidationError

from hookrelay.types.api import EnqueueRequest
from hookrelay.types.job import (
    DeliverySuccess,
    ErrorCallbackPayload,
    JobContext,
    TimeoutFailure,
    TransportFailure,
)


def make_context(**overrides) -> JobContext:
    values = {
        "job_id": uuid4(),
        "queue_name": "q1",
        "destination": "http://receiver/ok",
        "body": "hi",
        "content_type": "text/plain",
        "error_callback": "http://receiver/callback",
        "timeout_ms": 5000,
        "delay_ms": 0,
        "deduplication_id": None,
        "attempt": 1,
        "max_attempts": 3,
    }
    values.update(overrides)
    return JobContext(**values)


class TestEnqueueRequest:
    """Tests for EnqueueRequest validation."""

    def test_defaults(self):
        request = EnqueueRequest.model_validate(
            {"queueName": "q1", "destination": "http://x", "body": "hi"}
        )

        assert request.content_type == "application/json"
        assert request.timeout == 30
        assert request.parallelism == 1
        assert request.delay == 0
        assert request.retries == 0
        assert request.error_callback is None
        assert request.deduplication_id is None
        assert request.content_based_deduplication is False

    def test_content_type_wire_name(self):
        request = EnqueueRequest.model_validate(
            {
                "queueName": "q1",
                "destination": "http://x",
                "body": "hi",
                "Content-Type": "text/plain",
            }
        )

        assert request.content_type == "text/plain"

    def test_seconds_converted_to_milliseconds(self):
        request = EnqueueRequest.model_validate(
            {
                "queueName": "q1",
                "destination": "http://x",
                "body": "hi",
                "timeout": 5,
                "delay": 1.5,
            }
        )

        assert request.timeout_ms == 5000
        assert request.delay_ms == 1500

    @pytest.mark.parametrize(
        "field,value",
        [
            ("parallelism", 0),
            ("timeout", -1),
            ("delay", -0.5),
            ("retries", -1),
            ("queueName", ""),
            ("timeout", "inf"),
            ("timeout", "nan"),
            ("delay", "inf"),
            ("timeout", 2_147_484),
            ("delay", 10**12),
        ],
    )
    def test_rejects_out_of_range(self, field, value):
        data = {"queueName": "q1", "destination": "http://x", "body": "hi", field: value}

        with pytest.raises(ValidationError):
            EnqueueRequest.model_validate(data)

    def test_accepts_largest_duration(self):
        request = EnqueueRequest.model_validate(
            {
                "queueName": "q1",
                "destination": "http://x",
                "body": "hi",
                "timeout": 2_147_483,
                "delay": 2_147_483,
            }
        )

        assert request.timeout_ms == 2_147_483_000
        assert request.delay_ms == 2_147_483_000

    def test_requires_destination(self):
        with pytest.raises(ValidationError):
            EnqueueRequest.model_validate({"queueName": "q1", "body": "hi"})


class TestJobContext:
    """Tests for JobContext."""

    def test_is_last_attempt(self):
        assert make_context(attempt=3, max_attempts=3).is_last_attempt is True
        assert make_context(attempt=1, max_attempts=3).is_last_attempt is False

    def test_remaining_attempts(self):
        assert make_context(attempt=1, max_attempts=3).remaining_attempts == 2
        assert make_context(attempt=3, max_attempts=3).remaining_attempts == 0


class TestAttemptResults:
    """Tests for the attempt result variants."""

    def test_success(self):
        assert DeliverySuccess(status_code=500, duration_ms=1.0).success is True

    def test_timeout_message(self):
        result = TimeoutFailure(timeout_ms=5000, duration_ms=10000.0)

        assert result.success is False
        assert result.error == "Timeout after 5000ms"

    def test_transport_message(self):
        result = TransportFailure(message="ConnectError: refused", duration_ms=1.0)

        assert result.success is False
        assert result.error == "ConnectError: refused"


class TestErrorCallbackPayload:
    """Tests for ErrorCallbackPayload."""

    def test_wire_fields(self):
        context = make_context(delay_ms=2000, deduplication_id="order-1")

        payload = ErrorCallbackPayload.from_attempt(context, "Timeout after 5000ms").to_json()

        assert payload == {
            "error": "Timeout after 5000ms",
            "jobId": str(context.job_id),
            "queueName": "q1",
            "destination": "http://receiver/ok",
            "body": "hi",
            "contentType": "text/plain",
            "timeout": 5000,
            "delay": 2000,
            "deduplicationId": "order-1",
        }

    def test_dedup_id_omitted_when_absent(self):
        payload = ErrorCallbackPayload.from_attempt(make_context(), "boom").to_json()

        assert "deduplicationId" not in payload
