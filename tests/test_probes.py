"""
Tests for output parsers and state probes.
"""

import json

import pytest

from conftest import FakeRunner
from commonsinstall.models import StateResult
from commonsinstall.probes import (
    ProbeSet,
    parse_bootstrap_successful,
    parse_composer_template,
    parse_ddev_config,
    parse_describe_json,
    parse_github_oauth_configured,
    parse_http_status,
    parse_module_status,
    parse_outdated_count,
    parse_php_version,
    read_only_probe,
)

MARKERS = ("rjzaar/commons_template", "goalgorilla/social_template")

GOOD_CONFIG = """\
name: mysite
type: drupal10
docroot: html
php_version: "8.3"
database:
  type: mariadb
  version: "10.11"
"""


class TestParsers:

    def test_bootstrap(self):
        assert parse_bootstrap_successful(" Drupal bootstrap : Successful\n")
        assert not parse_bootstrap_successful("")

    def test_composer_template(self):
        assert parse_composer_template('{"name": "goalgorilla/social_template"}', MARKERS)
        assert not parse_composer_template('{"name": "drupal/recommended-project"}', MARKERS)

    def test_ddev_config_valid(self):
        assert parse_ddev_config(GOOD_CONFIG, "drupal10", "mariadb", "10.11", expected_name="mysite")

    def test_ddev_config_unquoted_version(self):
        content = GOOD_CONFIG.replace('"10.11"', "10.11")
        assert parse_ddev_config(content, "drupal10", "mariadb", "10.11")

    @pytest.mark.parametrize("content", [
        GOOD_CONFIG.replace("mariadb", "mysql"),
        GOOD_CONFIG.replace("drupal10", "drupal9"),
        "not: [valid",
        "just a string",
        "",
    ])
    def test_ddev_config_rejected(self, content):
        assert not parse_ddev_config(content, "drupal10", "mariadb", "10.11")

    def test_ddev_config_name_mismatch(self):
        assert not parse_ddev_config(GOOD_CONFIG, "drupal10", "mariadb", "10.11", expected_name="other")

    def test_github_oauth(self):
        assert parse_github_oauth_configured('{"github-oauth.github.com": "x"}')
        assert not parse_github_oauth_configured("{}")

    def test_module_status(self):
        listing = json.dumps({
            "social_demo": {"status": "Disabled"},
            "workflow_assignment": {"status": "Enabled"},
        })
        assert parse_module_status(listing, "social_demo") == "disabled"
        assert parse_module_status(listing, "workflow_assignment") == "enabled"
        assert parse_module_status(listing, "missing") is None
        assert parse_module_status("garbage", "social_demo") is None

    def test_php_version(self):
        assert parse_php_version("PHP 8.3.4 (cli) (built: Mar 16 2024)") == "8.3"
        assert parse_php_version("nothing here") is None

    def test_describe_json_picks_raw(self):
        output = "\n".join([
            '{"level":"info","msg":"starting"}',
            json.dumps({"level": "info", "raw": {"approot": "/srv/mysite", "primary_url": "https://mysite.ddev.site"}}),
        ])
        raw = parse_describe_json(output)
        assert raw["approot"] == "/srv/mysite"
        assert raw["primary_url"] == "https://mysite.ddev.site"

    def test_describe_json_garbage(self):
        assert parse_describe_json("Error: project not found") == {}

    def test_http_status(self):
        assert parse_http_status("200") == 200
        assert parse_http_status("  404\n") == 404
        assert parse_http_status("") is None

    def test_outdated_count(self):
        assert parse_outdated_count('{"installed": [{"name": "a"}, {"name": "b"}]}') == 2
        assert parse_outdated_count('{"installed": []}') == 0
        assert parse_outdated_count("not json") == 0


class TestReadOnlyProbe:

    def test_exception_becomes_indeterminate(self):
        @read_only_probe
        def broken(config):
            raise RuntimeError("boom")

        assert broken(None) is StateResult.INDETERMINATE


class TestFilesystemProbes:

    @pytest.fixture
    def probes(self, fake_runner, settings):
        return ProbeSet(fake_runner, settings)

    def test_directory_missing(self, probes, run_config):
        assert probes.project_directory(run_config) is StateResult.UNSATISFIED

    def test_directory_empty_is_satisfied(self, probes, run_config):
        run_config.project_dir.mkdir()
        (run_config.project_dir / ".hidden").write_text("x")
        assert probes.project_directory(run_config) is StateResult.SATISFIED

    def test_directory_with_unknown_files(self, probes, run_config):
        run_config.project_dir.mkdir()
        (run_config.project_dir / "notes.txt").write_text("x")
        assert probes.project_directory(run_config) is StateResult.UNSATISFIED

    def test_composer_project(self, probes, run_config, drupal_tree):
        assert probes.composer_project(run_config) is StateResult.SATISFIED
        (drupal_tree / "composer.json").write_text('{"name": "other/project"}')
        assert probes.composer_project(run_config) is StateResult.UNSATISFIED

    def test_private_directory(self, probes, run_config):
        assert probes.private_directory(run_config) is StateResult.UNSATISFIED
        run_config.private_dir.mkdir(parents=True)
        assert probes.private_directory(run_config) is StateResult.SATISFIED

    def test_ddev_config(self, probes, run_config):
        ddev_dir = run_config.project_dir / ".ddev"
        ddev_dir.mkdir(parents=True)
        assert probes.ddev_config(run_config) is StateResult.UNSATISFIED
        (ddev_dir / "config.yaml").write_text(GOOD_CONFIG)
        assert probes.ddev_config(run_config) is StateResult.SATISFIED

    def test_dependencies(self, probes, run_config, drupal_tree):
        assert probes.dependencies(run_config) is StateResult.SATISFIED
        (drupal_tree / "html" / "core").rmdir()
        assert probes.dependencies(run_config) is StateResult.UNSATISFIED

    def test_site_configured(self, probes, run_config, drupal_tree):
        settings_php = drupal_tree / "html" / "sites" / "default" / "settings.php"
        assert probes.site_configured(run_config) is StateResult.UNSATISFIED
        settings_php.write_text("<?php\n$settings['file_private_path'] = '../private';\n")
        assert probes.site_configured(run_config) is StateResult.SATISFIED

    def test_permissions(self, probes, run_config, drupal_tree):
        sites_default = drupal_tree / "html" / "sites" / "default"
        settings_php = sites_default / "settings.php"
        settings_php.write_text("<?php\n")
        sites_default.chmod(0o755)
        settings_php.chmod(0o644)
        assert probes.permissions(run_config) is StateResult.UNSATISFIED
        settings_php.chmod(0o444)
        assert probes.permissions(run_config) is StateResult.SATISFIED


class TestCommandProbes:

    def test_preflight(self, settings, run_config):
        runner = FakeRunner()
        assert ProbeSet(runner, settings).preflight(run_config) is StateResult.SATISFIED
        runner.on("docker", "ps", exit_code=1)
        assert ProbeSet(runner, settings).preflight(run_config) is StateResult.UNSATISFIED

    def test_preflight_missing_tool(self, settings, run_config):
        runner = FakeRunner(tools=("ddev", "git", "docker"))
        assert ProbeSet(runner, settings).preflight(run_config) is StateResult.UNSATISFIED

    def test_ddev_started(self, settings, run_config):
        run_config.project_dir.mkdir()
        runner = FakeRunner()
        probes = ProbeSet(runner, settings)
        assert probes.ddev_started(run_config) is StateResult.SATISFIED
        runner.on("ddev", "exec", "php", exit_code=1)
        assert probes.ddev_started(run_config) is StateResult.UNSATISFIED

    def test_ddev_timeout_is_indeterminate(self, settings, run_config):
        run_config.project_dir.mkdir()
        runner = FakeRunner().on("ddev", "describe", timed_out=True, exit_code=124)
        assert ProbeSet(runner, settings).ddev_started(run_config) is StateResult.INDETERMINATE

    def test_github_token_absent_is_satisfied(self, settings, run_config):
        runner = FakeRunner()
        assert ProbeSet(runner, settings).github_token(run_config) is StateResult.SATISFIED
        assert not runner.calls

    def test_github_token_configured(self, settings, make_config):
        config = make_config(token="ghp_abc")
        runner = FakeRunner().on("ddev", "composer", "config", stdout='{"github-oauth.github.com": "ghp"}')
        assert ProbeSet(runner, settings).github_token(config) is StateResult.SATISFIED
        runner.on("ddev", "composer", "config", stdout="{}")
        assert ProbeSet(runner, settings).github_token(config) is StateResult.UNSATISFIED

    def test_drupal_installed(self, settings, run_config):
        run_config.project_dir.mkdir()
        runner = FakeRunner().on("ddev", "drush", "status", "bootstrap", stdout="Drupal bootstrap : Successful")
        assert ProbeSet(runner, settings).drupal_installed(run_config) is StateResult.SATISFIED
        runner.on("ddev", "drush", "status", "bootstrap", stdout="")
        assert ProbeSet(runner, settings).drupal_installed(run_config) is StateResult.UNSATISFIED

    def test_drush_missing_is_indeterminate(self, settings, run_config):
        run_config.project_dir.mkdir()
        runner = FakeRunner().on("ddev", not_found=True, exit_code=127)
        assert ProbeSet(runner, settings).drupal_installed(run_config) is StateResult.INDETERMINATE

    @pytest.mark.parametrize("status,expected", [
        ("Disabled", StateResult.UNSATISFIED),
        ("Enabled", StateResult.SATISFIED),
        (None, StateResult.SATISFIED),
    ])
    def test_demo_content(self, settings, run_config, status, expected):
        listing = {"social_demo": {"status": status}} if status else {}
        runner = FakeRunner().on("ddev", "drush", "pm:list", stdout=json.dumps(listing))
        assert ProbeSet(runner, settings).demo_content(run_config) is expected

    def test_extra_module_absent_is_satisfied(self, settings, run_config, drupal_tree):
        runner = FakeRunner()
        assert ProbeSet(runner, settings).extra_modules(run_config) is StateResult.SATISFIED

    def test_extra_module_present_but_disabled(self, settings, run_config, drupal_tree):
        (drupal_tree / "html" / "modules" / "contrib" / "workflow_assignment").mkdir(parents=True)
        runner = FakeRunner().on(
            "ddev", "drush", "pm:list",
            stdout=json.dumps({"workflow_assignment": {"status": "Disabled"}}),
        )
        assert ProbeSet(runner, settings).extra_modules(run_config) is StateResult.UNSATISFIED

    def test_site_verified(self, settings, run_config):
        run_config.project_dir.mkdir()
        runner = FakeRunner().on("ddev", "exec", "curl", stdout="200")
        assert ProbeSet(runner, settings).site_verified(run_config) is StateResult.SATISFIED
        runner.on("ddev", "exec", "curl", stdout="500")
        assert ProbeSet(runner, settings).site_verified(run_config) is StateResult.UNSATISFIED

    def test_probes_never_mutate(self, settings, run_config, drupal_tree):
        runner = FakeRunner()
        probes = ProbeSet(runner, settings)
        for name in ("preflight", "project_directory", "composer_project", "private_directory",
                     "ddev_config", "ddev_started", "github_token", "dependencies",
                     "drupal_installed", "site_configured", "demo_content", "extra_modules",
                     "permissions", "site_verified"):
            getattr(probes, name)(run_config)
        mutating = {"start", "restart", "poweroff", "delete", "install", "site:install", "pm:enable", "rm"}
        for call in runner.calls:
            assert not mutating & set(call), call
        assert not run_config.private_dir.exists()
