"""
Run report: one record per step that reached a terminal outcome.

The report is append-only and ordered by execution. Steps after a halting
failure never get a record.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

import click

from commonsinstall.display import RULE
from commonsinstall.errors import EXIT_OK, EXIT_STEP_FAILED, UserCancelled
from commonsinstall.models import RunConfig, StateResult, StepOutcome

__all__ = ["StepRecord", "RunReport", "render_completion"]


@dataclass
class StepRecord:
    """Outcome of one step."""
    step_id: int
    label: str
    outcome: StepOutcome
    reason: Optional[str] = None
    error_kind: Optional[str] = None
    exit_code: int = EXIT_OK
    optional: bool = False
    probe_state: Optional[StateResult] = None
    duration_seconds: float = 0.0

    @property
    def halting(self) -> bool:
        if self.outcome is not StepOutcome.FAILED:
            return False
        # A cancellation stops the run even on an optional step
        return not self.optional or self.error_kind == UserCancelled.kind

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["outcome"] = self.outcome.value
        data["probe_state"] = self.probe_state.value if self.probe_state else None
        return data


@dataclass
class RunReport:
    """Ordered step records for one orchestrator run."""
    total_steps: int
    records: List[StepRecord] = field(default_factory=list)

    def append(self, record: StepRecord) -> None:
        self.records.append(record)

    def outcome_of(self, step_id: int) -> Optional[StepOutcome]:
        for record in self.records:
            if record.step_id == step_id:
                return record.outcome
        return None

    @property
    def failures(self) -> List[StepRecord]:
        return [r for r in self.records if r.outcome is StepOutcome.FAILED]

    @property
    def halted_by(self) -> Optional[StepRecord]:
        for record in self.records:
            if record.halting:
                return record
        return None

    @property
    def succeeded(self) -> bool:
        return self.halted_by is None

    @property
    def exit_code(self) -> int:
        """0 unless a non-optional step failed; then that failure's exit code."""
        halted = self.halted_by
        if halted is None:
            return EXIT_OK
        return halted.exit_code or EXIT_STEP_FAILED

    def counts(self) -> Dict[str, int]:
        counts = {outcome.value: 0 for outcome in StepOutcome}
        for record in self.records:
            counts[record.outcome.value] += 1
        return counts

    def render(self, use_colors: bool = True) -> str:
        """Human-readable summary with the reason of every failed step."""

        def style(text: str, **kwargs: Any) -> str:
            return click.style(text, **kwargs) if use_colors else text

        counts = self.counts()
        lines = [
            "",
            style("Installation Summary", bold=True),
            "=" * 40,
            f"Total steps:          {self.total_steps}",
            f"Ran:                  {counts[StepOutcome.RAN.value]}",
            f"Skipped:              {counts[StepOutcome.SKIPPED.value]}",
            f"Skipped (by request): {counts[StepOutcome.SKIPPED_BY_REQUEST.value]}",
            f"Failed:               {counts[StepOutcome.FAILED.value]}",
        ]
        not_reached = self.total_steps - len(self.records)
        if not_reached > 0:
            lines.append(f"Not reached:          {not_reached}")

        for record in self.failures:
            kind = "optional step" if record.optional else "step"
            lines.append(style(
                f"Failed at {kind} {record.step_id} doing {record.label}: {record.reason}",
                fg="yellow" if record.optional else "red",
            ))

        lines.append("")
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_steps": self.total_steps,
            "exit_code": self.exit_code,
            "counts": self.counts(),
            "records": [r.to_dict() for r in self.records],
        }


def render_completion(
    config: RunConfig,
    settings: Any,
    url: Optional[str] = None,
    login_link: Optional[str] = None,
) -> str:
    """Completion banner printed after a successful run."""
    cyan = {"fg": "cyan"}
    lines = [
        "",
        RULE,
        click.style("✓ OpenSocial Installation Completed Successfully!", fg="green"),
        RULE,
        "",
        click.style("Site Information:", **cyan),
        f"  • Project Name: {config.instance_name}",
        f"  • Site URL: {url or 'unknown (run: ddev describe)'}",
        f"  • Admin Username: {settings.admin_user}",
        f"  • Database: {settings.database_type} {settings.database_version}",
        f"  • PHP Version: {settings.php_version}",
        f"  • Project Type: {settings.project_type}",
        "",
    ]
    if login_link:
        lines += [
            click.style("Quick Access:", **cyan),
            "  • One-time login link:",
            f"    {login_link}",
            "",
        ]
    lines += [
        click.style("Useful Commands:", **cyan),
        "  • Access site: ddev launch",
        "  • Stop site: ddev stop",
        "  • Restart site: ddev restart",
        "  • Admin login: ddev drush user:login",
        "  • Clear cache: ddev drush cache:rebuild",
        "  • View logs: ddev logs",
        f"  • Resume/update: commons-install --resume {config.project_name}",
        "",
        click.style("Project Location:", **cyan),
        f"  {config.project_dir}",
        "",
        RULE,
    ]
    return "\n".join(lines)
