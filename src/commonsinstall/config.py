"""
Centralized configuration for commons-install.

Uses Pydantic BaseSettings for environment variable integration
and validation. Site defaults and tuning knobs are defined here; the
per-run ``RunConfig`` is produced by ``resolve_run_config()``.

Configuration sources (in order of precedence):
1. Explicit constructor arguments / CLI flags
2. Environment variables (COMMONS_INSTALL_*, plus GITHUB_TOKEN)
3. .env file
4. Default values

Example:
    from commonsinstall.config import get_settings, resolve_run_config

    settings = get_settings()
    run_config = resolve_run_config(runner, settings, project_name="mysite")
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable, List, Literal, Optional, Tuple

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from commonsinstall import display
from commonsinstall.cleanup import remove_project
from commonsinstall.errors import NameExhausted, UserCancelled
from commonsinstall.models import RunConfig
from commonsinstall.probes import parse_describe_json
from commonsinstall.prompts import EXISTING_PROJECT_CHOICES, NonInteractivePrompter, Prompter
from commonsinstall.runner import CommandRunner
from commonsinstall.timeouts import (
    CLEANUP_MAX_ATTEMPTS,
    COMMAND_DEFAULT_TIMEOUT_S,
    COMMAND_LONG_TIMEOUT_S,
    CONTAINER_START_RETRIES,
    CONTAINER_START_RETRY_DELAY_S,
    NAME_MAX_ATTEMPTS,
)

__all__ = [
    "InstallerSettings",
    "get_settings",
    "reset_settings",
    "find_available_name",
    "find_existing_project",
    "resolve_run_config",
]

logger = logging.getLogger(__name__)


class InstallerSettings(BaseSettings):
    """
    Central configuration for commons-install.

    All settings can be overridden via environment variables
    prefixed with COMMONS_INSTALL_.

    Example:
        export COMMONS_INSTALL_SITE_NAME="Parish Commons"
        export COMMONS_INSTALL_LOG_LEVEL=debug
    """

    model_config = SettingsConfigDict(
        env_prefix="COMMONS_INSTALL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Project
    default_project_name: str = Field(
        default="opensocial",
        description="Project name used when none is given on the command line",
    )
    composer_template: str = Field(
        default="rjzaar/commons_template:dev-master",
        description="Composer project template passed to create-project",
    )
    template_markers: Tuple[str, ...] = Field(
        default=("rjzaar/commons_template", "goalgorilla/social_template"),
        description="composer.json substrings that identify a compatible project",
    )

    # DDEV stack
    project_type: str = Field(default="drupal10")
    docroot: str = Field(default="html")
    php_version: str = Field(default="8.3")
    database_type: str = Field(default="mariadb")
    database_version: str = Field(default="10.11")
    webserver_type: str = Field(default="nginx-fpm")
    nodejs_version: str = Field(default="18")

    # Site
    site_name: str = Field(default="My OpenSocial Site")
    site_email: str = Field(default="admin@example.com")
    admin_user: str = Field(default="admin")
    admin_password: str = Field(default="admin", repr=False)
    admin_email: str = Field(default="admin@example.com")
    site_timezone: str = Field(default="America/New_York")
    install_profile: str = Field(default="social")
    demo_module: str = Field(default="social_demo")
    extra_module: str = Field(default="workflow_assignment")

    # Authentication
    github_token: Optional[str] = Field(
        default=None,
        repr=False,
        validation_alias=AliasChoices("COMMONS_INSTALL_GITHUB_TOKEN", "GITHUB_TOKEN"),
        description="GitHub personal access token for Composer",
    )

    # Timeouts and retries
    command_timeout_seconds: float = Field(default=COMMAND_DEFAULT_TIMEOUT_S, gt=0)
    long_command_timeout_seconds: float = Field(default=COMMAND_LONG_TIMEOUT_S, gt=0)
    max_name_attempts: int = Field(default=NAME_MAX_ATTEMPTS, ge=1)
    container_start_retries: int = Field(default=CONTAINER_START_RETRIES, ge=0)
    container_start_retry_delay_seconds: float = Field(default=CONTAINER_START_RETRY_DELAY_S, ge=0)
    cleanup_max_attempts: int = Field(default=CLEANUP_MAX_ATTEMPTS, ge=1)

    # Logging
    log_level: Literal["debug", "info", "warning", "error"] = Field(
        default="warning",
        description="Logging level for commons-install",
    )
    log_format: Literal["json", "text"] = Field(
        default="text",
        description="Log output format",
    )
    log_file: Optional[str] = Field(
        default=None,
        description="Write structured step events to this file",
    )

    # Telemetry
    otlp_endpoint: Optional[str] = Field(
        default=None,
        description="OTLP gRPC endpoint for step spans (disabled when unset)",
    )

    @field_validator("log_file")
    @classmethod
    def expand_path(cls, v: Optional[str]) -> Optional[str]:
        """Expand ~ and environment variables in paths."""
        if v is None:
            return v
        return os.path.expanduser(os.path.expandvars(v))

    @field_validator("otlp_endpoint")
    @classmethod
    def validate_endpoint(cls, v: Optional[str]) -> Optional[str]:
        """Strip protocol prefix (the gRPC exporter adds its own)."""
        if not v:
            return None
        if v.startswith("http://"):
            v = v[7:]
        elif v.startswith("https://"):
            v = v[8:]
        return v


# Global singleton
_settings: Optional[InstallerSettings] = None


def get_settings(**overrides) -> InstallerSettings:
    """
    Get the global settings instance.

    Creates a singleton on first call. Subsequent calls return
    the same instance unless overrides are provided.
    """
    global _settings

    if overrides or _settings is None:
        _settings = InstallerSettings(**overrides)

    return _settings


def reset_settings() -> None:
    """Reset the global settings (for testing)."""
    global _settings
    _settings = None


# ---------------------------------------------------------------------------
# Project name resolution
# ---------------------------------------------------------------------------


def _name_candidates(base_name: str) -> Iterable[str]:
    yield base_name
    counter = 1
    while True:
        yield f"{base_name}{counter}"
        counter += 1


def find_available_name(
    runner: CommandRunner,
    base_name: str,
    max_attempts: int = NAME_MAX_ATTEMPTS,
) -> str:
    """
    Find a DDEV project name that is not in use.

    Tries ``base``, ``base1``, ``base2``... and stops after ``max_attempts``
    probes.

    Raises:
        NameExhausted: If every candidate within the cap is taken.
    """
    display.print_status("Checking URL availability...")
    for attempt, candidate in enumerate(_name_candidates(base_name), start=1):
        if attempt > max_attempts:
            break
        if not runner.run("ddev", "describe", candidate).ok:
            display.print_success(f"Available URL found: {candidate}")
            return candidate
        display.print_substep(f"URL '{candidate}' is already in use")
    raise NameExhausted(base_name, max_attempts)


def find_existing_project(runner: CommandRunner, name: str) -> Optional[Path]:
    """Return the app root of a registered DDEV project, or None."""
    result = runner.run("ddev", "describe", name, "-j")
    if not result.ok:
        return None
    info = parse_describe_json(result.stdout)
    approot = info.get("approot")
    return Path(approot) if approot else None


def resolve_run_config(
    runner: CommandRunner,
    settings: InstallerSettings,
    project_name: Optional[str] = None,
    working_dir: Optional[Path] = None,
    interactive: bool = False,
    force_clean: bool = False,
    resume: bool = False,
    token: Optional[str] = None,
    skip_steps: Iterable[int] = (),
    dry_run: bool = False,
    prompter: Optional[Prompter] = None,
) -> RunConfig:
    """
    Turn CLI flags and settings into an immutable ``RunConfig``.

    An existing DDEV project with the requested name is resumed (or, in
    interactive mode, resumed / removed / updated / cancelled per the user's
    choice). Otherwise a unique instance name is searched for.

    Raises:
        UserCancelled: The user cancelled or declined removal.
        NameExhausted: No free name within ``settings.max_name_attempts``.
    """
    prompter = prompter or NonInteractivePrompter()
    base_name = project_name or settings.default_project_name
    working_dir = Path(working_dir or Path.cwd()).resolve()
    effective_token = token or settings.github_token or None

    display.print_status(f"Project name: {base_name}")

    common = dict(
        project_name=base_name,
        working_dir=working_dir,
        interactive=interactive,
        force_clean=force_clean,
        resume=resume,
        dry_run=dry_run,
        skip_steps=frozenset(skip_steps),
        token=effective_token,
    )

    if not force_clean:
        display.print_status(f"Checking for existing DDEV project: {base_name}")
        existing_dir = find_existing_project(runner, base_name)
        if existing_dir is not None:
            display.print_warning(f"DDEV project '{base_name}' already exists")
            display.print_substep(f"Existing project location: {existing_dir}")
            choice = "resume"
            if interactive:
                choice = prompter.choose(
                    "What would you like to do?", EXISTING_PROJECT_CHOICES, default="resume"
                )
            else:
                display.print_status("Using existing project (non-interactive mode)")

            if choice in ("resume", "update"):
                logger.info("Resuming existing project %s at %s", base_name, existing_dir)
                return RunConfig(
                    instance_name=base_name,
                    project_dir=existing_dir,
                    update_components=(choice == "update"),
                    **common,
                )
            if choice == "remove":
                display.print_warning("This will remove the DDEV project and directory")
                if not prompter.confirm("Are you sure?", default=False):
                    raise UserCancelled()
                remove_project(runner, base_name, existing_dir, dry_run=dry_run)
                common["force_clean"] = True
            else:
                raise UserCancelled()

    if common["force_clean"] and dry_run:
        # A dry run only previews the removal, so the base name is the one a real run frees
        instance_name = base_name
    else:
        instance_name = find_available_name(runner, base_name, settings.max_name_attempts)
    project_dir = working_dir / instance_name
    display.print_status(f"Installation directory: {project_dir}")
    return RunConfig(instance_name=instance_name, project_dir=project_dir, **common)


def describe_config(config: RunConfig) -> List[str]:
    """Human-readable lines describing the resolved configuration."""
    lines = [
        f"Project: {config.instance_name}",
        f"Directory: {config.project_dir}",
    ]
    if config.interactive:
        lines.append("Mode: interactive")
    if config.force_clean:
        lines.append("Force clean: enabled")
    if config.skip_steps:
        lines.append("Skipping steps: " + ", ".join(str(s) for s in sorted(config.skip_steps)))
    return lines
