"""Host prerequisite checks run before any step."""

from __future__ import annotations

import logging
from typing import Dict, List

from commonsinstall import display
from commonsinstall.errors import PrerequisiteMissing
from commonsinstall.runner import CommandRunner

__all__ = ["REQUIRED_TOOLS", "INSTALL_HINTS", "check_prerequisites"]

logger = logging.getLogger(__name__)

REQUIRED_TOOLS = ("ddev", "composer", "git", "docker")

INSTALL_HINTS: Dict[str, str] = {
    "ddev": "https://ddev.readthedocs.io/en/stable/users/install/",
    "composer": "https://getcomposer.org/download/",
    "git": "install git with your system package manager",
    "docker": "https://docs.docker.com/engine/install/",
}


def check_prerequisites(runner: CommandRunner) -> List[str]:
    """
    Verify every required tool is on PATH.

    All tools are checked before failing so the user sees the full list.

    Returns:
        The resolved paths of the tools, in ``REQUIRED_TOOLS`` order.

    Raises:
        PrerequisiteMissing: If any tool is absent.
    """
    display.print_status("Checking prerequisites...")
    found: List[str] = []
    missing: List[str] = []
    for tool in REQUIRED_TOOLS:
        path = runner.which(tool)
        if path:
            logger.debug("Found %s at %s", tool, path)
            display.print_substep(f"{tool}: {path}")
            found.append(path)
        else:
            missing.append(tool)

    if missing:
        for tool in missing:
            display.print_error(f"{tool} not found. Install: {INSTALL_HINTS[tool]}")
        raise PrerequisiteMissing(missing, {tool: INSTALL_HINTS[tool] for tool in missing})

    display.print_success("All prerequisites installed")
    return found
