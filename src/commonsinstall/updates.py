"""Component updates for an existing installation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from commonsinstall import display
from commonsinstall.models import RunConfig
from commonsinstall.probes import ProbeSet, parse_module_status, parse_outdated_count
from commonsinstall.prompts import NonInteractivePrompter, Prompter
from commonsinstall.runner import CommandRunner

__all__ = ["UpdateSummary", "Updater"]

logger = logging.getLogger(__name__)


@dataclass
class UpdateSummary:
    outdated_packages: int = 0
    composer_updated: bool = False
    module_behind: bool = False
    module_updated: bool = False


class Updater:
    """
    Brings an existing site up to date.

    Composer dependencies are updated when ``composer outdated`` reports
    direct packages behind; the extra module is re-pulled and reinstalled
    when its git checkout is behind its remote. Non-interactive runs apply
    both automatically.
    """

    def __init__(
        self,
        runner: CommandRunner,
        settings: Any,
        prompter: Optional[Prompter] = None,
    ) -> None:
        self.runner = runner
        self.settings = settings
        self.prompter = prompter or NonInteractivePrompter()
        self.probes = ProbeSet(runner, settings)

    def _approve(self, config: RunConfig, question: str) -> bool:
        if not config.interactive:
            return True
        return self.prompter.confirm(question, default=False)

    def run(self, config: RunConfig) -> UpdateSummary:
        display.print_status("Checking for component updates...")
        summary = UpdateSummary()
        if not config.project_dir.is_dir():
            display.print_warning("Project directory not found")
            return summary
        self.update_extra_module(config, summary)
        self.update_composer(config, summary)
        return summary

    def update_composer(self, config: RunConfig, summary: UpdateSummary) -> None:
        display.print_substep("Checking for composer dependency updates...")
        if not (config.project_dir / "composer.json").is_file():
            return
        result = self.runner.run(
            "ddev", "composer", "outdated", "--direct", "--format=json", cwd=config.project_dir
        )
        summary.outdated_packages = parse_outdated_count(result.stdout) if result.ok else 0
        if not summary.outdated_packages:
            display.print_success("All dependencies are up to date")
            return

        display.print_warning(f"{summary.outdated_packages} packages have updates available")
        if not self._approve(config, "Update composer dependencies?"):
            return

        timeout = self.settings.long_command_timeout_seconds
        display.print_status("Updating composer dependencies...")
        self.runner.must("ddev", "composer", "update", cwd=config.project_dir, timeout=timeout)
        display.print_substep("Running database updates...")
        self.runner.must("ddev", "drush", "updatedb", "-y", cwd=config.project_dir, timeout=timeout)
        display.print_substep("Clearing cache...")
        self.runner.must("ddev", "drush", "cache:rebuild", cwd=config.project_dir)
        summary.composer_updated = True
        display.print_success("Dependencies updated")

    def _git_rev(self, path: Path, ref: str) -> Optional[str]:
        result = self.runner.run("git", "rev-parse", ref, cwd=path)
        return result.stdout.strip() if result.ok and result.stdout.strip() else None

    def update_extra_module(self, config: RunConfig, summary: UpdateSummary) -> None:
        module = self.settings.extra_module
        display.print_substep(f"Checking {module} module...")
        path = self.probes.module_path(config, module)
        if path is None:
            display.print_substep("Module not found in project")
            return

        listing = self.runner.run("ddev", "drush", "pm:list", "--format=json", cwd=config.project_dir)
        if not listing.ok or parse_module_status(listing.stdout, module) != "enabled":
            display.print_substep("Module is installed but not enabled")
            return
        if not (path / ".git").exists():
            return

        current = self._git_rev(path, "HEAD")
        self.runner.run("git", "fetch", "origin", cwd=path)
        remote = self._git_rev(path, "origin/HEAD")
        display.print_substep(f"Current version: {(current or 'unknown')[:8]}")
        if remote is None or current == remote:
            display.print_success("Module is up to date")
            return

        summary.module_behind = True
        display.print_warning(f"Updates available for {module}")
        if not self._approve(config, f"Update {module} module?"):
            return
        if config.dry_run:
            display.print_substep(f"[dry-run] Would reinstall {module}")
            return

        display.print_substep("Uninstalling current version...")
        if not self.runner.run("ddev", "drush", "pm:uninstall", module, "-y", cwd=config.project_dir).ok:
            display.print_warning("Module was not enabled")
        self.runner.must("git", "pull", "origin", cwd=path)
        self.runner.must("ddev", "drush", "pm:enable", module, "-y", cwd=config.project_dir)
        self.runner.must("ddev", "drush", "cache:rebuild", cwd=config.project_dir)
        summary.module_updated = True
        display.print_success(f"{module} reinstalled and enabled")
