"""
Core data model for the installer.

``Step`` descriptors are static and built once per process. ``RunConfig`` is
the resolved, immutable configuration of one run; it is passed explicitly to
every probe and action instead of living in module globals.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, FrozenSet, Optional

from pydantic import BaseModel, ConfigDict, Field

__all__ = [
    "StateResult",
    "StepPhase",
    "StepOutcome",
    "ActionResult",
    "RunConfig",
    "Step",
    "Probe",
    "Action",
]


class StateResult(str, Enum):
    """What a probe found out about a step's real-world effect."""
    SATISFIED = "satisfied"
    UNSATISFIED = "unsatisfied"
    INDETERMINATE = "indeterminate"

    @property
    def satisfied(self) -> bool:
        return self is StateResult.SATISFIED


class StepPhase(str, Enum):
    """Lifecycle of a step inside one orchestrator run."""
    PENDING = "pending"
    PROBING = "probing"
    RUNNING = "running"
    SKIPPED = "skipped"
    SKIPPED_BY_REQUEST = "skipped_by_request"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class StepOutcome(str, Enum):
    """Outcome recorded in the run report."""
    SKIPPED = "skipped"
    SKIPPED_BY_REQUEST = "skipped_by_request"
    RAN = "ran"
    FAILED = "failed"


@dataclass(frozen=True)
class ActionResult:
    """Result of a step action: success, or failure with a reason."""
    ok: bool
    reason: Optional[str] = None

    @classmethod
    def success(cls) -> "ActionResult":
        return cls(ok=True)

    @classmethod
    def failure(cls, reason: str) -> "ActionResult":
        return cls(ok=False, reason=reason)


class RunConfig(BaseModel):
    """Resolved settings for one orchestration run."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    project_name: str = Field(..., description="Requested base project name")
    instance_name: str = Field(..., description="Unique DDEV project name actually used")
    working_dir: Path = Field(..., description="Directory the project is created under")
    project_dir: Path = Field(..., description="Project root (working_dir / instance_name)")
    interactive: bool = False
    force_clean: bool = False
    resume: bool = False
    update_components: bool = False
    dry_run: bool = False
    skip_steps: FrozenSet[int] = Field(default_factory=frozenset)
    token: Optional[str] = Field(default=None, repr=False)

    @property
    def private_dir(self) -> Path:
        return self.project_dir.parent / "private"

    @property
    def has_token(self) -> bool:
        return bool(self.token)


Probe = Callable[[RunConfig], StateResult]
Action = Callable[[RunConfig], ActionResult]


@dataclass(frozen=True)
class Step:
    """One unit of provisioning work with a read-only probe and an action."""
    id: int
    label: str
    probe: Probe
    action: Action
    optional: bool = False

    def __post_init__(self) -> None:
        if self.id < 1:
            raise ValueError(f"Step id must be a positive integer, got {self.id}")
