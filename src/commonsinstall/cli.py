"""
commons-install - Idempotent OpenSocial (Drupal) installer on DDEV.

Every step checks the real state of the system before acting, so the
installer can be re-run at any time to resume or repair an installation.

Exit codes:
    0  success
    1  a required step failed
    2  prerequisites missing
    3  cancelled by the user
    4  resource conflict (or another run holds the lock)
    5  no free project name
"""

from __future__ import annotations

import contextlib
import logging
from pathlib import Path
from typing import Optional, Tuple

import click

from commonsinstall import __version__, display
from commonsinstall.cleanup import remove_project
from commonsinstall.config import (
    describe_config,
    find_existing_project,
    get_settings,
    resolve_run_config,
)
from commonsinstall.errors import (
    EXIT_USER_CANCELLED,
    InstallerError,
    UserCancelled,
)
from commonsinstall.logger import InstallLogger, configure_logging
from commonsinstall.orchestrator import Orchestrator
from commonsinstall.prerequisites import check_prerequisites
from commonsinstall.prompts import ClickPrompter, NonInteractivePrompter, Prompter
from commonsinstall.report import render_completion
from commonsinstall.runner import CommandRunner
from commonsinstall.state import CheckpointFile, checkpoint_path, lock_path, run_lock
from commonsinstall.steps import build_steps, describe_site
from commonsinstall.telemetry import configure_tracing, flush_tracing
from commonsinstall.updates import Updater

__all__ = ["main"]

logger = logging.getLogger(__name__)


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(__version__, "-v", "--version", prog_name="commons-install")
@click.argument("project_name", required=False)
@click.option("--interactive", "-i", is_flag=True, help="Prompt for confirmation at each step")
@click.option(
    "--token",
    "-t",
    envvar="GITHUB_TOKEN",
    show_envvar=True,
    help="GitHub personal access token for Composer",
)
@click.option("--clean", "-c", is_flag=True, help="Remove any existing project and start fresh")
@click.option("--resume", "-r", is_flag=True, help="Resume an interrupted installation")
@click.option(
    "--skip",
    "-s",
    "skip",
    type=click.IntRange(min=1),
    multiple=True,
    help="Skip a step by id (repeatable)",
)
@click.option("--dry-run", is_flag=True, help="Show what would change without changing anything")
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"]),
    default=None,
    help="Diagnostic log level [default: warning]",
)
@click.option("--log-file", type=click.Path(dir_okay=False), default=None,
              help="Write structured step events (JSON lines) to this file")
@click.option("--otlp-endpoint", default=None, help="OTLP gRPC endpoint for step spans")
@click.option("--list-steps", is_flag=True, help="List the installation steps and exit")
@click.pass_context
def main(
    ctx: click.Context,
    project_name: Optional[str],
    interactive: bool,
    token: Optional[str],
    clean: bool,
    resume: bool,
    skip: Tuple[int, ...],
    dry_run: bool,
    log_level: Optional[str],
    log_file: Optional[str],
    otlp_endpoint: Optional[str],
    list_steps: bool,
) -> None:
    """Install OpenSocial on DDEV, resuming wherever a previous run stopped.

    PROJECT_NAME defaults to "opensocial". When it is already taken a
    numeric suffix is added (opensocial1, opensocial2, ...).

    Examples:

        # Fresh install
        commons-install mysite

        # Ask before every step
        commons-install -i mysite

        # Remove everything and reinstall
        commons-install --clean mysite

        # Skip demo content and extra modules
        commons-install -s 11 -s 12 mysite
    """
    settings = get_settings()
    configure_logging(
        log_level or settings.log_level,
        settings.log_format,
        log_file or settings.log_file,
    )
    runner = CommandRunner(default_timeout=settings.command_timeout_seconds, dry_run=dry_run)
    prompter: Prompter = ClickPrompter() if interactive else NonInteractivePrompter()

    if list_steps:
        for step in build_steps(runner, settings, prompter):
            suffix = " (optional)" if step.optional else ""
            click.echo(f"{step.id:>2}. {step.label}{suffix}")
        return

    endpoint = otlp_endpoint or settings.otlp_endpoint
    otel_configured = configure_tracing(endpoint) if endpoint else False
    try:
        exit_code = _install(
            runner=runner,
            settings=settings,
            prompter=prompter,
            project_name=project_name,
            interactive=interactive,
            token=token,
            clean=clean,
            resume=resume,
            skip=skip,
            dry_run=dry_run,
        )
    finally:
        if otel_configured:
            flush_tracing()
    ctx.exit(exit_code)


def _install(
    runner: CommandRunner,
    settings,
    prompter: Prompter,
    project_name: Optional[str],
    interactive: bool,
    token: Optional[str],
    clean: bool,
    resume: bool,
    skip: Tuple[int, ...],
    dry_run: bool,
) -> int:
    display.banner(
        "OpenSocial (Drupal) Installation",
        "Automated DDEV-based installation with state detection",
        f"Version {__version__}",
    )
    working_dir = Path.cwd().resolve()
    base_name = project_name or settings.default_project_name
    try:
        check_prerequisites(runner)

        with contextlib.ExitStack() as locks:
            # Taken before any removal; a locked project is never cleaned away
            locks.enter_context(run_lock(lock_path(working_dir, base_name)))

            if clean:
                existing = find_existing_project(runner, base_name)
                if existing is not None or (working_dir / base_name).exists():
                    display.print_warning(f"--clean: removing existing project '{base_name}'")
                    if interactive and not prompter.confirm("Remove it and all its data?", default=False):
                        raise UserCancelled()
                    remove_project(runner, base_name, existing or working_dir / base_name, dry_run=dry_run)

            config = resolve_run_config(
                runner,
                settings,
                project_name=base_name,
                working_dir=working_dir,
                interactive=interactive,
                force_clean=clean,
                resume=resume,
                token=token,
                skip_steps=skip,
                dry_run=dry_run,
                prompter=prompter,
            )
            if config.instance_name != base_name:
                locks.enter_context(run_lock(lock_path(config.working_dir, config.instance_name)))

            for line in describe_config(config):
                display.print_status(line)
            if interactive and not prompter.confirm("Continue with installation?", default=True):
                raise UserCancelled()

            steps = build_steps(runner, settings, prompter)
            unknown = sorted(set(skip) - {step.id for step in steps})
            if unknown:
                display.print_warning(f"Ignoring unknown step ids: {', '.join(map(str, unknown))}")

            checkpoint = CheckpointFile(checkpoint_path(config.working_dir, config.instance_name))
            if config.force_clean and not dry_run:
                checkpoint.clear()

            orchestrator = Orchestrator(
                steps,
                prompter,
                checkpoint=checkpoint,
                events=InstallLogger(instance=config.instance_name),
            )
            report = orchestrator.run(config)
            click.echo(report.render())
            if not report.succeeded:
                return report.exit_code

            if config.update_components:
                try:
                    Updater(runner, settings, prompter).run(config)
                except InstallerError as e:
                    display.print_error(f"Component update failed: {e.reason}")
                    return e.exit_code

        site = describe_site(runner, config)
        click.echo(render_completion(config, settings, url=site.url, login_link=site.login_link))
        return report.exit_code

    except InstallerError as e:
        display.print_error(e.reason)
        return e.exit_code
    except KeyboardInterrupt:
        display.print_error("Installation cancelled")
        return EXIT_USER_CANCELLED
