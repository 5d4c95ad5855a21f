"""
Unit tests for structured logging.
"""

import json
import logging
from uuid import uuid4

import pytest

from hookrelay.observability.logging import job_log_context, setup_logging
from hookrelay.types.job import JobContext


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers = handlers
    root.setLevel(level)


def test_job_context_bound_to_log_lines(capsys, restore_root_logger):
    """Test lines logged during an attempt carry its job and queue."""
    setup_logging(level="INFO", log_format="json")
    context = JobContext(
        job_id=uuid4(),
        queue_name="q1",
        destination="http://receiver/ok",
        body="hi",
        content_type="text/plain",
        error_callback=None,
        timeout_ms=0,
        delay_ms=0,
        deduplication_id=None,
        attempt=2,
        max_attempts=3,
    )

    with job_log_context(context):
        logging.getLogger("hookrelay.test").info("Delivering webhook", extra={"x": 1})
    logging.getLogger("hookrelay.test").info("Outside attempt")

    lines = [json.loads(line) for line in capsys.readouterr().out.splitlines()]
    inside, outside = lines[-2], lines[-1]
    assert inside["event"] == "Delivering webhook"
    assert inside["job_id"] == str(context.job_id)
    assert inside["queue_name"] == "q1"
    assert inside["attempt"] == 2
    assert inside["x"] == 1
    assert inside["level"] == "info"
    assert "job_id" not in outside
