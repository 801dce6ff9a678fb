"""
Read-only state probes, one per installation step.

Probes inspect the filesystem and query external tools to decide whether a
step's effect already exists. They never create, delete or modify anything.
A probe that cannot decide (tool missing, query timed out, unexpected error)
degrades to ``StateResult.INDETERMINATE`` instead of crashing the run.

Tool output is interpreted only through the small ``parse_*`` functions
below, so they can be tested against canned output.

Usage::

    probes = ProbeSet(runner, settings)
    state = probes.drupal_installed(run_config)
"""

from __future__ import annotations

import functools
import json
import logging
import re
import stat
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import yaml

from commonsinstall.errors import ProbeIndeterminate
from commonsinstall.models import RunConfig, StateResult
from commonsinstall.runner import CommandResult, CommandRunner

__all__ = [
    "ProbeSet",
    "read_only_probe",
    "parse_bootstrap_successful",
    "parse_composer_template",
    "parse_ddev_config",
    "parse_github_oauth_configured",
    "parse_module_status",
    "parse_php_version",
    "parse_describe_json",
    "parse_http_status",
    "parse_outdated_count",
    "PRIVATE_PATH_PATTERN",
]

logger = logging.getLogger(__name__)

PRIVATE_PATH_PATTERN = re.compile(r"^\s*\$settings\['file_private_path'\]\s*=", re.MULTILINE)
GITHUB_OAUTH_KEY = "github-oauth.github.com"


# ---------------------------------------------------------------------------
# Output parsers
# ---------------------------------------------------------------------------


def parse_bootstrap_successful(output: str) -> bool:
    """``drush status bootstrap`` reports ``Drupal bootstrap : Successful``."""
    return "Successful" in output


def parse_composer_template(content: str, markers: Sequence[str]) -> bool:
    """True if composer.json content names one of the recognised templates."""
    return any(marker in content for marker in markers)


def parse_ddev_config(
    content: str,
    project_type: str,
    database_type: str,
    database_version: str,
    expected_name: Optional[str] = None,
) -> bool:
    """Check a ``.ddev/config.yaml`` against the expected stack."""
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError:
        return False
    if not isinstance(data, dict):
        return False

    database = data.get("database") or {}
    if not isinstance(database, dict):
        return False

    if expected_name is not None and data.get("name") != expected_name:
        return False
    return (
        data.get("type") == project_type
        and database.get("type") == database_type
        and str(database.get("version")) == database_version
    )


def parse_github_oauth_configured(output: str) -> bool:
    return GITHUB_OAUTH_KEY in output


def parse_module_status(output: str, module: str) -> Optional[str]:
    """
    Read a module's status from ``drush pm:list --format=json``.

    Returns:
        ``"enabled"``, ``"disabled"``, or None if the module is not listed.
    """
    try:
        data = json.loads(output)
    except (json.JSONDecodeError, TypeError):
        return None
    if not isinstance(data, dict):
        return None
    entry = data.get(module)
    if not isinstance(entry, dict):
        return None
    status = str(entry.get("status", "")).strip().lower()
    return status or None


def parse_php_version(output: str) -> Optional[str]:
    """Extract ``major.minor`` from the first line of ``php -v``."""
    match = re.search(r"PHP (\d+\.\d+)", output)
    return match.group(1) if match else None


def parse_describe_json(output: str) -> Dict[str, Any]:
    """
    Extract the ``raw`` project description from ``ddev describe -j``.

    ddev may print several JSON log lines; the one carrying ``raw`` wins.
    """
    for line in reversed(output.strip().splitlines()):
        line = line.strip()
        if not line.startswith("{"):
            continue
        try:
            data = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict) and isinstance(data.get("raw"), dict):
            return data["raw"]
    return {}


def parse_http_status(output: str) -> Optional[int]:
    """Parse the status code written by ``curl -w '%{http_code}'``."""
    text = output.strip()
    if len(text) >= 3 and text[-3:].isdigit():
        return int(text[-3:])
    return None


def parse_outdated_count(output: str) -> int:
    """Count packages reported by ``composer outdated --direct --format=json``."""
    try:
        data = json.loads(output)
    except (json.JSONDecodeError, TypeError):
        return 0
    if isinstance(data, dict):
        return len(data.get("installed") or [])
    return 0


# ---------------------------------------------------------------------------
# Probe plumbing
# ---------------------------------------------------------------------------


def read_only_probe(fn: Callable[..., StateResult]) -> Callable[..., StateResult]:
    """Degrade any probe error to ``INDETERMINATE``."""

    @functools.wraps(fn)
    def wrapper(*args: Any, **kwargs: Any) -> StateResult:
        try:
            return fn(*args, **kwargs)
        except ProbeIndeterminate as e:
            logger.warning("Probe %s indeterminate: %s", fn.__name__, e.reason)
            return StateResult.INDETERMINATE
        except Exception as e:
            logger.warning("Probe %s raised %s: %s", fn.__name__, type(e).__name__, e)
            return StateResult.INDETERMINATE

    return wrapper


def _answered(result: CommandResult) -> CommandResult:
    """Reject results that say nothing about state (missing tool, timeout)."""
    if result.not_found or result.timed_out:
        raise ProbeIndeterminate(result.failure_reason())
    return result


def _state(flag: bool) -> StateResult:
    return StateResult.SATISFIED if flag else StateResult.UNSATISFIED


def _read_text(path: Path) -> Optional[str]:
    if not path.is_file():
        return None
    return path.read_text(encoding="utf-8", errors="replace")


def visible_entries(directory: Path) -> List[Path]:
    return [p for p in directory.iterdir() if not p.name.startswith(".")]


# ---------------------------------------------------------------------------
# Probes
# ---------------------------------------------------------------------------


class ProbeSet:
    """Per-step state probes bound to a command runner and site settings."""

    def __init__(self, runner: CommandRunner, settings: Any) -> None:
        self.runner = runner
        self.settings = settings

    # Paths ---------------------------------------------------------------

    def docroot(self, config: RunConfig) -> Path:
        return config.project_dir / self.settings.docroot

    def sites_default(self, config: RunConfig) -> Path:
        return self.docroot(config) / "sites" / "default"

    def settings_php(self, config: RunConfig) -> Path:
        return self.sites_default(config) / "settings.php"

    def module_path(self, config: RunConfig, module: str) -> Optional[Path]:
        for kind in ("contrib", "custom"):
            candidate = self.docroot(config) / "modules" / kind / module
            if candidate.is_dir():
                return candidate
        return None

    def ddev(self, config: RunConfig, *args: str, timeout: Optional[float] = None) -> CommandResult:
        return self.runner.run("ddev", *args, cwd=config.project_dir, timeout=timeout)

    def module_status(self, config: RunConfig, module: str) -> Optional[str]:
        result = _answered(self.ddev(config, "drush", "pm:list", "--format=json"))
        if not result.ok:
            raise ProbeIndeterminate(result.failure_reason())
        return parse_module_status(result.stdout, module)

    # Step probes ---------------------------------------------------------

    @read_only_probe
    def preflight(self, config: RunConfig) -> StateResult:
        tools_present = all(self.runner.which(tool) for tool in ("ddev", "composer", "git"))
        if not tools_present:
            return StateResult.UNSATISFIED
        return _state(_answered(self.runner.run("docker", "ps")).ok)

    @read_only_probe
    def project_directory(self, config: RunConfig) -> StateResult:
        directory = config.project_dir
        if not directory.is_dir():
            return StateResult.UNSATISFIED
        entries = visible_entries(directory)
        return _state(not entries or (directory / "composer.json").is_file())

    @read_only_probe
    def composer_project(self, config: RunConfig) -> StateResult:
        content = _read_text(config.project_dir / "composer.json")
        if content is None:
            return StateResult.UNSATISFIED
        return _state(parse_composer_template(content, self.settings.template_markers))

    @read_only_probe
    def private_directory(self, config: RunConfig) -> StateResult:
        return _state(config.private_dir.is_dir())

    @read_only_probe
    def ddev_config(self, config: RunConfig) -> StateResult:
        content = _read_text(config.project_dir / ".ddev" / "config.yaml")
        if content is None:
            return StateResult.UNSATISFIED
        return _state(parse_ddev_config(
            content,
            project_type=self.settings.project_type,
            database_type=self.settings.database_type,
            database_version=self.settings.database_version,
            expected_name=config.instance_name,
        ))

    @read_only_probe
    def ddev_started(self, config: RunConfig) -> StateResult:
        if not config.project_dir.is_dir():
            return StateResult.UNSATISFIED
        if not _answered(self.ddev(config, "describe", config.instance_name)).ok:
            return StateResult.UNSATISFIED
        return _state(_answered(self.ddev(config, "exec", "php", "-v")).ok)

    @read_only_probe
    def github_token(self, config: RunConfig) -> StateResult:
        if not config.has_token:
            # Nothing to configure without a token
            return StateResult.SATISFIED
        result = _answered(self.ddev(config, "composer", "config", "--global", "--auth", "-l"))
        return _state(result.ok and parse_github_oauth_configured(result.stdout))

    @read_only_probe
    def dependencies(self, config: RunConfig) -> StateResult:
        docroot = self.docroot(config)
        return _state(
            (config.project_dir / "vendor").is_dir()
            and (docroot / "core").is_dir()
            and (docroot / "profiles" / "contrib" / "social").is_dir()
        )

    @read_only_probe
    def drupal_installed(self, config: RunConfig) -> StateResult:
        if not config.project_dir.is_dir():
            return StateResult.UNSATISFIED
        result = _answered(self.ddev(config, "drush", "status", "bootstrap"))
        return _state(result.ok and parse_bootstrap_successful(result.stdout))

    @read_only_probe
    def site_configured(self, config: RunConfig) -> StateResult:
        content = _read_text(self.settings_php(config))
        if content is None:
            return StateResult.UNSATISFIED
        return _state(PRIVATE_PATH_PATTERN.search(content) is not None)

    @read_only_probe
    def demo_content(self, config: RunConfig) -> StateResult:
        status = self.module_status(config, self.settings.demo_module)
        # Not available counts as done
        return _state(status != "disabled")

    @read_only_probe
    def extra_modules(self, config: RunConfig) -> StateResult:
        if self.module_path(config, self.settings.extra_module) is None:
            return StateResult.SATISFIED
        return _state(self.module_status(config, self.settings.extra_module) == "enabled")

    @read_only_probe
    def permissions(self, config: RunConfig) -> StateResult:
        sites_default = self.sites_default(config)
        settings_php = self.settings_php(config)
        if not (sites_default.is_dir() and (sites_default / "files").is_dir() and settings_php.is_file()):
            return StateResult.UNSATISFIED
        dir_mode = stat.S_IMODE(sites_default.stat().st_mode)
        file_mode = stat.S_IMODE(settings_php.stat().st_mode)
        return _state(dir_mode == 0o755 and file_mode & 0o222 == 0)

    @read_only_probe
    def site_verified(self, config: RunConfig) -> StateResult:
        if not config.project_dir.is_dir():
            return StateResult.UNSATISFIED
        checks = self.verify_site(config)
        return _state(all(ok for _, ok, _ in checks))

    # Verification --------------------------------------------------------

    def verify_site(self, config: RunConfig) -> List[Tuple[str, bool, str]]:
        """Read-only health checks: (name, passed, detail) per check."""
        checks: List[Tuple[str, bool, str]] = []

        status = self.ddev(config, "drush", "status", "--format=json")
        checks.append((
            "drupal_status",
            status.ok,
            "Drupal is responding correctly" if status.ok else "Drupal status check failed",
        ))

        users = self.ddev(config, "drush", "sqlq", "SELECT COUNT(*) FROM users")
        user_count = users.stdout.strip()
        checks.append((
            "database",
            users.ok,
            f"Database connection verified ({user_count} users found)" if users.ok
            else "Database verification failed",
        ))

        web = self.ddev(config, "exec", "curl", "-s", "-o", "/dev/null", "-w", "%{http_code}", "http://localhost")
        code = parse_http_status(web.stdout) if web.ok else None
        checks.append((
            "web_server",
            code == 200,
            "Web server responding correctly" if code == 200 else f"Web server check failed (status {code})",
        ))
        return checks
