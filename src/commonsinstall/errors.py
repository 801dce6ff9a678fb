"""
Error taxonomy for the installer.

Every failure the orchestrator can surface is an ``InstallerError`` subclass
carrying the process exit code the CLI should use when that error halts a run.
"""

from __future__ import annotations

from typing import Dict, List, Optional

__all__ = [
    "InstallerError",
    "PrerequisiteMissing",
    "ProbeIndeterminate",
    "StepActionFailed",
    "UserCancelled",
    "ResourceConflict",
    "NameExhausted",
    "RunLocked",
    "EXIT_OK",
    "EXIT_STEP_FAILED",
    "EXIT_PREREQUISITE_MISSING",
    "EXIT_USER_CANCELLED",
    "EXIT_RESOURCE_CONFLICT",
    "EXIT_NAME_EXHAUSTED",
]

EXIT_OK = 0
EXIT_STEP_FAILED = 1
EXIT_PREREQUISITE_MISSING = 2
EXIT_USER_CANCELLED = 3
EXIT_RESOURCE_CONFLICT = 4
EXIT_NAME_EXHAUSTED = 5


class InstallerError(Exception):
    """Base exception class for installer errors."""

    exit_code: int = EXIT_STEP_FAILED
    kind: str = "installer_error"

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class PrerequisiteMissing(InstallerError):
    """Raised when required external tools are absent."""

    exit_code = EXIT_PREREQUISITE_MISSING
    kind = "prerequisite_missing"

    def __init__(self, missing: List[str], hints: Optional[Dict[str, str]] = None) -> None:
        self.missing = list(missing)
        self.hints = hints or {}
        msg = f"Missing required dependencies: {', '.join(self.missing)}"
        super().__init__(msg)


class ProbeIndeterminate(InstallerError):
    """Raised inside a probe when state cannot be determined."""

    kind = "probe_indeterminate"


class StepActionFailed(InstallerError):
    """Raised when a step's external command or precondition fails."""

    kind = "step_action_failed"


class UserCancelled(InstallerError):
    """Raised when the user declines a required confirmation."""

    exit_code = EXIT_USER_CANCELLED
    kind = "user_cancelled"

    def __init__(self, reason: str = "Installation cancelled") -> None:
        super().__init__(reason)


class ResourceConflict(InstallerError):
    """Raised when existing state cannot be safely reused or overwritten."""

    exit_code = EXIT_RESOURCE_CONFLICT
    kind = "resource_conflict"


class NameExhausted(ResourceConflict):
    """Raised when no free project name is found within the attempt cap."""

    exit_code = EXIT_NAME_EXHAUSTED
    kind = "name_exhausted"

    def __init__(self, base_name: str, attempts: int) -> None:
        self.base_name = base_name
        self.attempts = attempts
        super().__init__(
            f"No available project name for '{base_name}' after {attempts} attempts"
        )


class RunLocked(ResourceConflict):
    """Raised when another installer run holds the project lock."""

    kind = "run_locked"
