"""
Removal of DDEV projects and their leftover docker resources.

Every removal loop is bounded: a resource that survives ``max_attempts``
rounds ends in ``StepActionFailed`` rather than an endless retry.
"""

from __future__ import annotations

import logging
import shutil
import time
from pathlib import Path
from typing import List, Optional

from commonsinstall import display
from commonsinstall.errors import StepActionFailed
from commonsinstall.runner import CommandRunner
from commonsinstall.timeouts import CLEANUP_MAX_ATTEMPTS

__all__ = ["list_docker_resources", "purge_docker_resources", "remove_project"]

logger = logging.getLogger(__name__)

# (label, list command, remove command)
_RESOURCE_KINDS = (
    ("containers", ("ps", "-a", "--format", "{{.Names}}"), ("rm", "-f")),
    ("volumes", ("volume", "ls", "--format", "{{.Name}}"), ("volume", "rm", "-f")),
    ("networks", ("network", "ls", "--format", "{{.Name}}"), ("network", "rm")),
)


def _matches(resource: str, name: str) -> bool:
    marker = f"ddev-{name}"
    return resource == marker or resource.startswith(marker + "-") or resource.startswith(marker + "_")


def list_docker_resources(runner: CommandRunner, kind: str, name: str) -> List[str]:
    """List docker resources of ``kind`` that belong to DDEV project ``name``."""
    for label, list_args, _ in _RESOURCE_KINDS:
        if label == kind:
            result = runner.run("docker", *list_args)
            if not result.ok:
                return []
            return [line.strip() for line in result.stdout.splitlines()
                    if line.strip() and _matches(line.strip(), name)]
    raise ValueError(f"Unknown docker resource kind: {kind}")


def purge_docker_resources(
    runner: CommandRunner,
    name: str,
    max_attempts: int = CLEANUP_MAX_ATTEMPTS,
    settle_seconds: float = 0.0,
) -> None:
    """
    Remove orphaned containers, volumes and networks of a DDEV project.

    Each resource kind is re-listed after removal until nothing matches or
    ``max_attempts`` rounds have passed.

    Raises:
        StepActionFailed: If resources remain after the last attempt.
    """
    for kind, _, remove_args in _RESOURCE_KINDS:
        remaining = list_docker_resources(runner, kind, name)
        attempt = 0
        while remaining:
            attempt += 1
            if attempt > max_attempts:
                raise StepActionFailed(
                    f"Could not remove docker {kind} for '{name}' after "
                    f"{max_attempts} attempts: {', '.join(remaining)}"
                )
            display.print_substep(f"Removing {len(remaining)} orphaned docker {kind}...")
            for resource in remaining:
                result = runner.run("docker", *remove_args, resource)
                if not result.ok:
                    logger.debug("docker %s %s failed: %s", " ".join(remove_args), resource,
                                 result.failure_reason())
            if settle_seconds:
                time.sleep(settle_seconds)
            remaining = list_docker_resources(runner, kind, name)
        if attempt:
            display.print_success(f"Orphaned docker {kind} removed")


def remove_project(
    runner: CommandRunner,
    name: str,
    approot: Optional[Path],
    dry_run: bool = False,
) -> None:
    """
    Stop and unregister a DDEV project, then delete its app root.

    Irreversible: callers only reach this after ``--clean`` or an explicit
    interactive confirmation.
    """
    if dry_run:
        display.print_status(f"[dry-run] Would remove DDEV project '{name}' at {approot}")
        return

    display.print_status(f"Removing DDEV project '{name}'...")
    runner.run("ddev", "stop", name)
    runner.run("ddev", "delete", "-O", "-y", name)
    purge_docker_resources(runner, name)

    if approot is not None and approot.exists():
        display.print_substep(f"Removing directory {approot}")
        try:
            shutil.rmtree(approot)
        except OSError as e:
            raise StepActionFailed(f"Could not remove {approot}: {e}") from e
    display.print_success("Existing project removed")
