"""
The fourteen installation steps.

Each step pairs a read-only probe from ``commonsinstall.probes`` with an
action defined here. Actions perform the side effects, print progress, and
either return an ``ActionResult`` or raise an ``InstallerError`` subclass;
the orchestrator turns both into the step's outcome.

Usage::

    steps = build_steps(runner, settings, prompter)
    report = Orchestrator(steps, prompter).run(run_config)
"""

from __future__ import annotations

import logging
import os
import shutil
import stat
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from commonsinstall import display
from commonsinstall.cleanup import purge_docker_resources
from commonsinstall.errors import ResourceConflict, StepActionFailed, UserCancelled
from commonsinstall.models import ActionResult, RunConfig, Step
from commonsinstall.probes import (
    PRIVATE_PATH_PATTERN,
    ProbeSet,
    parse_bootstrap_successful,
    parse_composer_template,
    parse_ddev_config,
    parse_describe_json,
    parse_module_status,
    parse_php_version,
    visible_entries,
)
from commonsinstall.prompts import NonInteractivePrompter, Prompter
from commonsinstall.runner import CommandRunner
from commonsinstall.timeouts import DOCKER_DAEMON_SETTLE_S

__all__ = ["InstallSteps", "SiteInfo", "build_steps", "describe_site", "OPTIONAL_STEP_IDS"]

logger = logging.getLogger(__name__)

OPTIONAL_STEP_IDS = frozenset({7, 11, 12, 14})

PRIVATE_PATH_SNIPPET = """
/**
 * Private file path configuration.
 *
 * This directory should be outside the web root for security.
 * OpenSocial requires it before installation.
 */
$settings['file_private_path'] = '../private';
"""

DDEV_INCLUDE_SNIPPET = """
/**
 * Automatically generated include for settings managed by ddev.
 */
$ddev_settings = dirname(__FILE__) . '/settings.ddev.php';
if (getenv('IS_DDEV_PROJECT') == 'true' && is_readable($ddev_settings)) {
  require $ddev_settings;
}
"""


@dataclass
class SiteInfo:
    """Details shown in the completion banner."""
    url: Optional[str] = None
    login_link: Optional[str] = None


def describe_site(runner: CommandRunner, config: RunConfig) -> SiteInfo:
    """Look up the primary URL and a one-time admin login link."""
    info = SiteInfo()
    described = runner.run("ddev", "describe", config.instance_name, "-j", cwd=config.project_dir)
    if described.ok:
        info.url = parse_describe_json(described.stdout).get("primary_url")
    login_args = ["drush", "user:login"]
    if info.url:
        login_args.append(f"--uri={info.url}")
    login = runner.run("ddev", *login_args, cwd=config.project_dir)
    if login.ok and login.stdout.strip():
        info.login_link = login.stdout.strip().splitlines()[-1]
    return info


def _make_writable(path: Path) -> int:
    """Add owner write permission, returning the previous mode."""
    mode = stat.S_IMODE(path.stat().st_mode)
    path.chmod(mode | stat.S_IWUSR)
    return mode


def _chmod_tree(root: Path, mode: int) -> None:
    root.chmod(mode)
    for dirpath, dirnames, filenames in os.walk(root):
        for name in dirnames + filenames:
            target = Path(dirpath) / name
            if not target.is_symlink():
                target.chmod(mode)


class InstallSteps:
    """Step actions bound to a runner, site settings and a prompter."""

    def __init__(
        self,
        runner: CommandRunner,
        settings: Any,
        prompter: Optional[Prompter] = None,
        probes: Optional[ProbeSet] = None,
        sleep=time.sleep,
    ) -> None:
        self.runner = runner
        self.settings = settings
        self.prompter = prompter or NonInteractivePrompter()
        self.probes = probes or ProbeSet(runner, settings)
        self._sleep = sleep

    # Helpers -------------------------------------------------------------

    def ddev(self, config: RunConfig, *args: str, timeout: Optional[float] = None, redact=()):
        return self.runner.must("ddev", *args, cwd=config.project_dir, timeout=timeout, redact=redact)

    def ddev_try(self, config: RunConfig, *args: str, timeout: Optional[float] = None):
        return self.runner.run("ddev", *args, cwd=config.project_dir, timeout=timeout)

    @property
    def long_timeout(self) -> float:
        return self.settings.long_command_timeout_seconds

    def dry(self, config: RunConfig, description: str) -> bool:
        """True (and announce) when a filesystem change should be skipped."""
        if config.dry_run:
            display.print_substep(f"[dry-run] Would {description}")
        return config.dry_run

    def _confirm_destructive(self, config: RunConfig, question: str) -> bool:
        if config.force_clean:
            return True
        if config.interactive:
            return self.prompter.confirm(question, default=False)
        return False

    def _installed_module_status(self, config: RunConfig, module: str) -> Optional[str]:
        listing = self.ddev(config, "drush", "pm:list", "--format=json")
        return parse_module_status(listing.stdout, module)

    # Step 1 --------------------------------------------------------------

    def preflight(self, config: RunConfig) -> ActionResult:
        missing = [tool for tool in ("ddev", "composer", "git") if not self.runner.which(tool)]
        if missing:
            raise StepActionFailed(f"Required tools not found: {', '.join(missing)}")

        display.print_status("Checking Docker status...")
        if self.runner.run("docker", "ps").ok:
            display.print_success("Docker is running")
            return ActionResult.success()

        display.print_warning("Docker is not running")
        if self.dry(config, "start the docker daemon"):
            return ActionResult.success()
        display.print_status("Starting Docker...")
        self.runner.run("sudo", "systemctl", "start", "docker")
        self._sleep(DOCKER_DAEMON_SETTLE_S)
        if not self.runner.run("docker", "ps").ok:
            self._sleep(DOCKER_DAEMON_SETTLE_S)
            self.runner.must("docker", "ps")
        display.print_success("Docker started successfully")
        return ActionResult.success()

    # Step 2 --------------------------------------------------------------

    def setup_directory(self, config: RunConfig) -> ActionResult:
        directory = config.project_dir
        display.print_status(f"Installation directory: {directory}")
        if not directory.exists():
            if self.dry(config, f"create {directory}"):
                return ActionResult.success()
            display.print_substep("Creating project directory...")
            directory.mkdir(parents=True)
            display.print_success(f"Project directory created: {directory}")
            return ActionResult.success()

        if not directory.is_dir():
            raise ResourceConflict(f"{directory} exists and is not a directory")

        display.print_substep(f"Directory already exists: {directory}")
        if visible_entries(directory):
            if (directory / "composer.json").is_file():
                display.print_substep("Appears to be existing project, will resume")
            else:
                raise ResourceConflict(
                    f"Directory {directory} contains unknown files; "
                    "use an empty directory or remove existing files"
                )
        return ActionResult.success()

    # Step 3 --------------------------------------------------------------

    def create_composer_project(self, config: RunConfig) -> ActionResult:
        directory = config.project_dir
        composer_json = directory / "composer.json"

        if composer_json.is_file():
            content = composer_json.read_text(encoding="utf-8", errors="replace")
            if parse_composer_template(content, self.settings.template_markers):
                display.print_success("Valid OpenSocial project detected")
                return ActionResult.success()
            display.print_warning("Directory contains a different project")
            if not config.interactive and not config.force_clean:
                raise ResourceConflict(
                    f"{directory} contains an incompatible Composer project (non-interactive mode)"
                )
            if not self._confirm_destructive(config, "Remove and recreate?"):
                raise UserCancelled()
            if not self.dry(config, f"empty {directory}"):
                for entry in directory.iterdir():
                    if entry.is_dir() and not entry.is_symlink():
                        shutil.rmtree(entry)
                    else:
                        entry.unlink()

        display.print_status(f"Using template: {self.settings.composer_template}")
        display.print_substep("This may take several minutes...")
        self.runner.must(
            "composer", "create-project", self.settings.composer_template, ".", "--no-interaction",
            cwd=directory,
            timeout=self.long_timeout,
        )
        if not config.dry_run and not composer_json.is_file():
            raise StepActionFailed("composer.json not found - project creation may have failed")
        display.print_success("Composer project created successfully")
        return ActionResult.success()

    # Step 4 --------------------------------------------------------------

    def create_private_directory(self, config: RunConfig) -> ActionResult:
        private_dir = config.private_dir
        display.print_status("Setting up private files directory outside web root...")
        if not self.dry(config, f"create {private_dir}"):
            private_dir.mkdir(parents=True, exist_ok=True)
            display.print_success(f"Private directory ready: {private_dir.resolve()}")
        return ActionResult.success()

    # Step 5 --------------------------------------------------------------

    def ddev_config_document(self, config: RunConfig) -> Dict[str, Any]:
        s = self.settings
        return {
            "name": config.instance_name,
            "type": s.project_type,
            "docroot": s.docroot,
            "php_version": s.php_version,
            "webserver_type": s.webserver_type,
            "xdebug_enabled": False,
            "additional_hostnames": [],
            "additional_fqdns": [],
            "database": {"type": s.database_type, "version": s.database_version},
            "use_dns_when_possible": True,
            "composer_version": "2",
            "web_environment": [],
            "nodejs_version": s.nodejs_version,
        }

    def initialize_ddev(self, config: RunConfig) -> ActionResult:
        directory = config.project_dir
        name = config.instance_name

        display.print_status("Shutting down all DDEV services...")
        if not self.dry(config, "run ddev poweroff"):
            self.runner.run("ddev", "poweroff")
            display.print_success("All DDEV services stopped")

        registered = self.runner.run("ddev", "describe", name)
        if registered.ok:
            display.print_warning(f"DDEV project '{name}' is registered with an invalid configuration")
            if not self._confirm_destructive(config, f"Delete DDEV project '{name}' and its database?"):
                raise ResourceConflict(
                    f"DDEV project '{name}' is registered with a different configuration; "
                    "rerun with --clean or in interactive mode to replace it"
                )
            if not self.dry(config, f"delete DDEV project '{name}'"):
                self.runner.run("ddev", "delete", "-O", "-y", name)

        display.print_status(f"Performing Docker cleanup for project: {name}")
        if not self.dry(config, f"purge docker resources of '{name}'"):
            purge_docker_resources(self.runner, name, self.settings.cleanup_max_attempts)
        display.print_success("Docker cleanup completed")

        if self.dry(config, f"rewrite {directory / '.ddev' / 'config.yaml'}"):
            return ActionResult.success()

        for compose in ("docker-compose.yml", "docker-compose.yaml"):
            path = directory / compose
            if path.is_file():
                display.print_warning(f"Found {compose} - it conflicts with DDEV")
                path.replace(path.with_name(compose + ".backup"))
                display.print_substep(f"Renamed: {compose} → {compose}.backup")

        ddev_dir = directory / ".ddev"
        if ddev_dir.exists():
            display.print_substep("Removing .ddev directory for fresh start...")
            shutil.rmtree(ddev_dir)
        ddev_dir.mkdir(parents=True)

        config_file = ddev_dir / "config.yaml"
        display.print_substep(f"Writing config.yaml with {self.settings.database_type} settings...")
        with open(config_file, "w", encoding="utf-8") as f:
            yaml.safe_dump(self.ddev_config_document(config), f, sort_keys=False, default_flow_style=False)

        written = config_file.read_text(encoding="utf-8")
        if not parse_ddev_config(
            written,
            project_type=self.settings.project_type,
            database_type=self.settings.database_type,
            database_version=self.settings.database_version,
            expected_name=name,
        ):
            raise StepActionFailed("DDEV config verification failed")
        display.print_success(
            f"Verified: {self.settings.database_type} {self.settings.database_version} configured"
        )
        return ActionResult.success()

    # Step 6 --------------------------------------------------------------

    def _php_version(self, config: RunConfig) -> Optional[str]:
        result = self.ddev_try(config, "exec", "php", "-v")
        return parse_php_version(result.stdout) if result.ok else None

    def start_ddev(self, config: RunConfig) -> ActionResult:
        display.print_status(f"Starting Docker containers for {config.instance_name}...")
        display.print_substep("This may take a few minutes on first run...")

        attempts = self.settings.container_start_retries + 1
        for attempt in range(1, attempts + 1):
            if config.dry_run:
                self.ddev(config, "start", timeout=self.long_timeout)
                return ActionResult.success()
            started = self.ddev_try(config, "start", timeout=self.long_timeout)
            if started.ok:
                break
            if attempt == attempts:
                raise StepActionFailed(f"Failed to start DDEV containers: {started.failure_reason()}")
            display.print_warning(
                f"ddev start failed, retrying in {self.settings.container_start_retry_delay_seconds:g}s..."
            )
            self._sleep(self.settings.container_start_retry_delay_seconds)
        display.print_success("DDEV containers started successfully")

        expected = self.settings.php_version
        display.print_substep(f"Restarting to apply PHP {expected} configuration...")
        self.ddev(config, "restart", timeout=self.long_timeout)

        version = self._php_version(config)
        if version != expected:
            display.print_warning(f"PHP version is {version or 'unknown'}, expected {expected}; restarting once more")
            self.ddev(config, "restart", timeout=self.long_timeout)
            version = self._php_version(config)
            if version != expected:
                return ActionResult.failure(
                    f"Still running PHP {version or 'unknown'} after restart (expected {expected})"
                )
        display.print_success(f"PHP version confirmed: {version}")

        self.ddev(config, "describe", config.instance_name)
        display.print_success("All containers are running")
        return ActionResult.success()

    # Step 7 --------------------------------------------------------------

    def configure_github_token(self, config: RunConfig) -> ActionResult:
        if not config.has_token:
            display.print_warning("No GitHub token provided")
            display.print_substep("Using unauthenticated access (60 requests/hour limit)")
            display.print_substep("Pass --token or export GITHUB_TOKEN to raise the limit")
            return ActionResult.success()

        display.print_status("GitHub token detected, configuring Composer authentication...")
        token = config.token or ""
        self.ddev(
            config, "composer", "config", "--global", "--auth", "github-oauth.github.com", token,
            redact=(token,),
        )
        display.print_success("GitHub token configured successfully")
        return ActionResult.success()

    # Step 8 --------------------------------------------------------------

    def install_dependencies(self, config: RunConfig) -> ActionResult:
        display.print_status("Installing all project dependencies...")
        display.print_substep("This step may take 5-10 minutes...")
        self.ddev(config, "composer", "install", timeout=self.long_timeout)
        display.print_success("All dependencies installed successfully")

        if config.dry_run:
            return ActionResult.success()

        docroot = self.probes.docroot(config)
        missing = [
            str(path.relative_to(config.project_dir))
            for path in (config.project_dir / "vendor", docroot / "core", docroot / "profiles" / "contrib" / "social")
            if not path.is_dir()
        ]
        if missing:
            raise StepActionFailed(f"Dependency installation incomplete, missing: {', '.join(missing)}")

        shown = self.ddev_try(config, "composer", "show")
        if shown.ok:
            count = len([line for line in shown.stdout.splitlines() if line.strip()])
            display.print_success(f"Total packages installed: {count}")
        return ActionResult.success()

    # Step 9 --------------------------------------------------------------

    def prepare_settings_php(self, config: RunConfig) -> None:
        sites_default = self.probes.sites_default(config)
        settings_php = self.probes.settings_php(config)
        if not sites_default.is_dir():
            raise StepActionFailed(f"{sites_default} not found; dependencies are not installed")

        (sites_default / "files" / "private").mkdir(parents=True, exist_ok=True)
        sites_default.chmod(0o755)

        if not settings_php.is_file():
            default_settings = sites_default / "default.settings.php"
            if not default_settings.is_file():
                raise StepActionFailed("default.settings.php not found")
            display.print_substep("Creating settings.php from default.settings.php...")
            shutil.copyfile(default_settings, settings_php)
        settings_php.chmod(0o666)

        content = settings_php.read_text(encoding="utf-8")
        additions = []
        if not PRIVATE_PATH_PATTERN.search(content):
            additions.append(PRIVATE_PATH_SNIPPET)
        if "settings.ddev.php" not in content:
            additions.append(DDEV_INCLUDE_SNIPPET)
        if additions:
            with open(settings_php, "a", encoding="utf-8") as f:
                f.write("".join(additions))
        display.print_success("settings.php prepared")

    def install_drupal(self, config: RunConfig) -> ActionResult:
        s = self.settings
        display.print_status("Preparing settings.php before installation...")
        if not self.dry(config, "prepare settings.php"):
            self.prepare_settings_php(config)

        status = self.ddev_try(config, "drush", "status", "bootstrap")
        if status.ok and parse_bootstrap_successful(status.stdout):
            display.print_substep("Drupal appears to be already installed")
            if not self._confirm_destructive(config, "Reinstall Drupal? This will erase all data!"):
                display.print_status("Keeping existing Drupal installation")
                return ActionResult.success()
            display.print_warning("Dropping existing database...")
            self.ddev(config, "drush", "sql:drop", "-y")

        display.print_status(f"Running Drupal installation with the {s.install_profile} profile...")
        display.print_substep(f"Site name: {s.site_name}")
        display.print_substep(f"Admin username: {s.admin_user}")
        display.print_substep("This step may take 5-10 minutes...")
        self.ddev(
            config,
            "drush", "site:install", s.install_profile,
            f"--site-name={s.site_name}",
            f"--account-name={s.admin_user}",
            f"--account-pass={s.admin_password}",
            f"--account-mail={s.admin_email}",
            f"--site-mail={s.site_email}",
            "--yes",
            timeout=self.long_timeout,
            redact=(s.admin_password,),
        )
        if config.dry_run:
            return ActionResult.success()

        verify = self.ddev_try(config, "drush", "status", "bootstrap")
        if not (verify.ok and parse_bootstrap_successful(verify.stdout)):
            return ActionResult.failure("Drupal bootstrap failed after site:install")
        display.print_success("Drupal installed successfully")
        return ActionResult.success()

    # Step 10 -------------------------------------------------------------

    def configure_site(self, config: RunConfig) -> ActionResult:
        s = self.settings
        display.print_status("Applying site configuration...")

        for description, args in (
            (f"Setting site timezone to {s.site_timezone}",
             ("drush", "config:set", "system.date", "timezone.default", s.site_timezone, "--yes")),
            ("Configuring email settings",
             ("drush", "config:set", "system.site", "mail", s.site_email, "--yes")),
        ):
            display.print_substep(f"{description}...")
            if config.dry_run or self.ddev_try(config, *args).ok:
                display.print_success("Done")
            else:
                display.print_warning(f"{description} failed")

        settings_php = self.probes.settings_php(config)
        if not settings_php.is_file():
            raise StepActionFailed("settings.php not found")
        display.print_substep("Configuring private file path...")
        if not self.dry(config, "add private file path to settings.php"):
            content = settings_php.read_text(encoding="utf-8")
            if PRIVATE_PATH_PATTERN.search(content):
                display.print_substep("Private file path already configured")
            else:
                previous = _make_writable(settings_php)
                with open(settings_php, "a", encoding="utf-8") as f:
                    f.write(PRIVATE_PATH_SNIPPET)
                settings_php.chmod(previous)
                display.print_success("Private file path added to settings.php")

        display.print_substep("Clearing Drupal cache...")
        if config.dry_run or self.ddev_try(config, "drush", "cache:rebuild").ok:
            display.print_success("Cache cleared successfully")
        else:
            display.print_warning("Cache clear failed")
        return ActionResult.success()

    # Step 11 -------------------------------------------------------------

    def create_demo_content(self, config: RunConfig) -> ActionResult:
        module = self.settings.demo_module
        status = self._installed_module_status(config, module)
        if status is None and not config.dry_run:
            display.print_substep("Demo content module not available, skipping")
            return ActionResult.success()

        if status != "enabled":
            display.print_substep(f"Enabling {module} module...")
            self.ddev(config, "drush", "pm:enable", module, "-y")
            display.print_success("Demo content module enabled")

        display.print_substep("Generating demo users, groups, and content...")
        if config.dry_run or self.ddev_try(config, "drush", "social-demo:add", "--all",
                                           timeout=self.long_timeout).ok:
            display.print_success("Demo content created successfully")
        else:
            display.print_warning("Demo content generation had issues")
        return ActionResult.success()

    # Step 12 -------------------------------------------------------------

    def enable_modules(self, config: RunConfig) -> ActionResult:
        module = self.settings.extra_module
        path = self.probes.module_path(config, module)
        if path is None:
            display.print_substep(f"{module} module not found in project")
            return ActionResult.success()

        display.print_success(f"Module found at: {path.relative_to(config.project_dir)}")
        if self._installed_module_status(config, module) == "enabled":
            display.print_substep("Module is already enabled")
            return ActionResult.success()

        display.print_substep(f"Enabling {module}...")
        self.ddev(config, "drush", "pm:enable", module, "-y")
        display.print_success(f"{module} module enabled")
        return ActionResult.success()

    # Step 13 -------------------------------------------------------------

    def set_permissions(self, config: RunConfig) -> ActionResult:
        sites_default = self.probes.sites_default(config)
        settings_php = self.probes.settings_php(config)
        if not sites_default.is_dir():
            raise StepActionFailed(f"{sites_default} not found")
        if not settings_php.is_file():
            raise StepActionFailed(f"{settings_php} not found")
        if self.dry(config, "set file permissions"):
            return ActionResult.success()

        display.print_substep("Setting permissions on sites/default...")
        sites_default.chmod(0o755)

        files_dir = sites_default / "files"
        files_dir.mkdir(exist_ok=True)
        display.print_substep("Setting permissions on files directory...")
        _chmod_tree(files_dir, 0o775)

        if config.private_dir.is_dir():
            display.print_substep("Setting permissions on private directory...")
            _chmod_tree(config.private_dir, 0o775)

        display.print_substep("Setting permissions on settings.php...")
        settings_php.chmod(0o444)
        display.print_success("File permissions configured")
        return ActionResult.success()

    # Step 14 -------------------------------------------------------------

    def final_verification(self, config: RunConfig) -> ActionResult:
        display.print_status("Rebuilding cache before verification...")
        self.ddev(config, "drush", "cache:rebuild")
        if config.dry_run:
            return ActionResult.success()

        failed: List[str] = []
        for name, ok, detail in self.probes.verify_site(config):
            if ok:
                display.print_success(detail)
            else:
                display.print_warning(detail)
                failed.append(name)
        if failed:
            return ActionResult.failure(f"Verification failed: {', '.join(failed)}")
        return ActionResult.success()

    # Table ---------------------------------------------------------------

    def table(self) -> List[Step]:
        p = self.probes
        return [
            Step(1, "Pre-flight checks", p.preflight, self.preflight),
            Step(2, "Set up project directory", p.project_directory, self.setup_directory),
            Step(3, "Create Composer project from template", p.composer_project, self.create_composer_project),
            Step(4, "Create private files directory", p.private_directory, self.create_private_directory),
            Step(5, "Initialize DDEV configuration", p.ddev_config, self.initialize_ddev),
            Step(6, "Start DDEV containers", p.ddev_started, self.start_ddev),
            Step(7, "Configure GitHub authentication token", p.github_token, self.configure_github_token,
                 optional=True),
            Step(8, "Install Composer dependencies", p.dependencies, self.install_dependencies),
            Step(9, "Install Drupal with OpenSocial profile", p.drupal_installed, self.install_drupal),
            Step(10, "Configure site settings", p.site_configured, self.configure_site),
            Step(11, "Create demo content", p.demo_content, self.create_demo_content, optional=True),
            Step(12, "Enable additional recommended modules", p.extra_modules, self.enable_modules,
                 optional=True),
            Step(13, "Set file permissions", p.permissions, self.set_permissions),
            Step(14, "Final verification", p.site_verified, self.final_verification, optional=True),
        ]


def build_steps(
    runner: CommandRunner,
    settings: Any,
    prompter: Optional[Prompter] = None,
) -> List[Step]:
    """Build the ordered, immutable step table."""
    return InstallSteps(runner, settings, prompter).table()
