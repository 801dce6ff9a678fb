"""
Tests for InstallLogger - structured step events.
"""

import json
import logging
from io import StringIO

import pytest

from commonsinstall.logger import EVENT_LOGGER_NAME, InstallLogger, configure_logging


@pytest.fixture
def captured_logs():
    """Capture event log output for testing."""
    output = StringIO()
    event_logger = logging.getLogger(EVENT_LOGGER_NAME)
    original = list(event_logger.handlers)
    event_logger.handlers.clear()
    handler = logging.StreamHandler(output)
    handler.setFormatter(logging.Formatter("%(message)s"))
    event_logger.addHandler(handler)
    yield output
    event_logger.handlers[:] = original


@pytest.fixture
def events(captured_logs):
    return InstallLogger(instance="mysite", service_name="test-service")


def parse_log_line(captured_logs) -> dict:
    """Parse the last JSON log line."""
    lines = captured_logs.getvalue().strip().split("\n")
    if lines and lines[-1]:
        return json.loads(lines[-1])
    return {}


class TestStepEvents:

    def test_step_started(self, events, captured_logs):
        events.log_step_started(step_id=3, label="Create Composer project", probe_state="unsatisfied")
        entry = parse_log_line(captured_logs)
        assert entry["event"] == "step.started"
        assert entry["step_id"] == 3
        assert entry["label"] == "Create Composer project"
        assert entry["probe_state"] == "unsatisfied"
        assert entry["instance"] == "mysite"
        assert entry["service"] == "test-service"
        assert "timestamp" in entry

    def test_step_skipped(self, events, captured_logs):
        events.log_step_skipped(step_id=4, label="Private dir", by_request=True)
        entry = parse_log_line(captured_logs)
        assert entry["event"] == "step.skipped"
        assert entry["by_request"] is True

    def test_step_completed_rounds_duration(self, events, captured_logs):
        events.log_step_completed(step_id=8, label="Deps", duration_seconds=1.234567)
        assert parse_log_line(captured_logs)["duration_seconds"] == 1.235

    def test_required_failure_is_error(self, events, captured_logs):
        events.log_step_failed(6, "Start DDEV", "timeout", "step_action_failed")
        entry = parse_log_line(captured_logs)
        assert entry["level"] == "error"
        assert entry["reason"] == "timeout"
        assert entry["error_kind"] == "step_action_failed"

    def test_optional_failure_is_warning(self, events, captured_logs):
        events.log_step_failed(11, "Demo", "boom", "step_action_failed", optional=True)
        assert parse_log_line(captured_logs)["level"] == "warn"

    def test_none_fields_omitted(self, events, captured_logs):
        events.log_step_started(step_id=1, label="Preflight")
        assert "probe_state" not in parse_log_line(captured_logs)


class TestRunEvents:

    def test_run_finished(self, events, captured_logs):
        events.log_run_finished(exit_code=0, counts={"ran": 14})
        entry = parse_log_line(captured_logs)
        assert entry["event"] == "run.finished"
        assert entry["counts"] == {"ran": 14}
        assert entry["level"] == "info"

    def test_extra_labels(self, captured_logs):
        InstallLogger(instance="x", extra_labels={"env": "ci"}).log_drift(2, "Dir")
        assert parse_log_line(captured_logs)["labels"] == {"env": "ci"}


class TestConfigureLogging:

    def test_events_to_file(self, tmp_path):
        log_file = tmp_path / "events.jsonl"
        configure_logging("info", "text", log_file=str(log_file))
        try:
            InstallLogger(instance="mysite").log_step_started(1, "Preflight")
            for handler in logging.getLogger(EVENT_LOGGER_NAME).handlers:
                handler.flush()
            entry = json.loads(log_file.read_text().strip().splitlines()[-1])
            assert entry["event"] == "step.started"
        finally:
            configure_logging()

    def test_level_applied(self):
        configure_logging("debug")
        try:
            assert logging.getLogger("commonsinstall").level == logging.DEBUG
        finally:
            configure_logging()
