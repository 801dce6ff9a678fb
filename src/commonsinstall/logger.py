"""
Structured logging for installer step events.

Emits one JSON object per event on the ``commonsinstall.events`` logger,
so runs can be tailed or shipped to a log store alongside the human
console output.

Logged events:
- run.started
- step.started
- step.skipped
- step.completed
- step.failed
- probe.indeterminate
- step.drift
- run.finished

Usage:
    from commonsinstall.logger import InstallLogger, configure_logging

    configure_logging("info", "text", log_file="install.log")
    events = InstallLogger(instance="opensocial")
    events.log_step_started(step_id=3, label="Create Composer project")
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

__all__ = ["InstallLogger", "configure_logging", "EVENT_LOGGER_NAME"]

EVENT_LOGGER_NAME = "commonsinstall.events"

_event_logger = logging.getLogger(EVENT_LOGGER_NAME)
_event_logger.setLevel(logging.INFO)
_event_logger.propagate = False
if not _event_logger.handlers:
    _event_logger.addHandler(logging.NullHandler())


def configure_logging(
    level: str = "warning",
    fmt: str = "text",
    log_file: Optional[str] = None,
) -> None:
    """
    Wire handlers for diagnostic and event logs.

    Diagnostics from ``commonsinstall.*`` go to stderr at ``level``. Step
    events go to ``log_file`` when given, and also to stderr when ``fmt``
    is ``json``.
    """
    root = logging.getLogger("commonsinstall")
    root.setLevel(getattr(logging, level.upper(), logging.WARNING))
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler(sys.stderr)
    if fmt == "json":
        console.setFormatter(logging.Formatter("%(message)s"))
    else:
        console.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    root.addHandler(console)

    for handler in list(_event_logger.handlers):
        _event_logger.removeHandler(handler)
        handler.close()
    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter("%(message)s"))
        _event_logger.addHandler(file_handler)
    if fmt == "json":
        events_console = logging.StreamHandler(sys.stderr)
        events_console.setFormatter(logging.Formatter("%(message)s"))
        _event_logger.addHandler(events_console)
    if not _event_logger.handlers:
        _event_logger.addHandler(logging.NullHandler())


class InstallLogger:
    """
    Structured logger for step lifecycle events.

    Every entry carries the timestamp, level, event name, service and the
    DDEV instance name; step events add ``step_id`` and ``label``.
    """

    def __init__(
        self,
        instance: str,
        service_name: str = "commons-install",
        extra_labels: Optional[Dict[str, str]] = None,
    ):
        self.instance = instance
        self.service_name = service_name
        self.extra_labels = extra_labels or {}
        self._logger = _event_logger

    def _emit(
        self,
        event: str,
        level: str = "info",
        step_id: Optional[int] = None,
        label: Optional[str] = None,
        **extra_fields: Any,
    ) -> None:
        entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": level,
            "event": event,
            "service": self.service_name,
            "instance": self.instance,
        }
        if step_id is not None:
            entry["step_id"] = step_id
        if label:
            entry["label"] = label
        entry.update({k: v for k, v in extra_fields.items() if v is not None})
        if self.extra_labels:
            entry["labels"] = self.extra_labels

        log_line = json.dumps(entry, default=str)

        if level == "error":
            self._logger.error(log_line)
        elif level == "warn":
            self._logger.warning(log_line)
        else:
            self._logger.info(log_line)

    def log_run_started(self, total_steps: int, project_dir: str, interactive: bool = False) -> None:
        self._emit(
            event="run.started",
            total_steps=total_steps,
            project_dir=project_dir,
            interactive=interactive,
        )

    def log_step_started(self, step_id: int, label: str, probe_state: Optional[str] = None) -> None:
        self._emit(event="step.started", step_id=step_id, label=label, probe_state=probe_state)

    def log_step_skipped(self, step_id: int, label: str, by_request: bool = False) -> None:
        self._emit(event="step.skipped", step_id=step_id, label=label, by_request=by_request)

    def log_step_completed(self, step_id: int, label: str, duration_seconds: float) -> None:
        self._emit(
            event="step.completed",
            step_id=step_id,
            label=label,
            duration_seconds=round(duration_seconds, 3),
        )

    def log_step_failed(
        self,
        step_id: int,
        label: str,
        reason: str,
        error_kind: str,
        optional: bool = False,
    ) -> None:
        """Log a failed step. Optional steps log at warn level since the run continues."""
        self._emit(
            event="step.failed",
            level="warn" if optional else "error",
            step_id=step_id,
            label=label,
            reason=reason,
            error_kind=error_kind,
            optional=optional,
        )

    def log_probe_indeterminate(self, step_id: int, label: str) -> None:
        self._emit(event="probe.indeterminate", level="warn", step_id=step_id, label=label)

    def log_drift(self, step_id: int, label: str) -> None:
        """A step recorded as done whose effect is no longer present."""
        self._emit(event="step.drift", level="warn", step_id=step_id, label=label)

    def log_run_finished(self, exit_code: int, counts: Dict[str, int]) -> None:
        self._emit(
            event="run.finished",
            level="info" if exit_code == 0 else "error",
            exit_code=exit_code,
            counts=counts,
        )
