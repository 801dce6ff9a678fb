"""
Tests for component updates on an existing site.
"""

import json

import pytest

from commonsinstall.updates import Updater

from conftest import ScriptedPrompter

OUTDATED = json.dumps({"installed": [{"name": "drupal/core"}, {"name": "goalgorilla/open_social"}]})
MODULE_ENABLED = json.dumps({"workflow_assignment": {"status": "Enabled"}})


@pytest.fixture
def module_checkout(drupal_tree):
    path = drupal_tree / "html" / "modules" / "custom" / "workflow_assignment"
    (path / ".git").mkdir(parents=True)
    return path


class TestComposerUpdates:

    def test_up_to_date(self, fake_runner, settings, run_config, drupal_tree):
        fake_runner.on("ddev", "composer", "outdated", stdout='{"installed": []}')
        summary = Updater(fake_runner, settings).run(run_config)
        assert summary.outdated_packages == 0
        assert not fake_runner.called("ddev", "composer", "update")

    def test_updates_without_asking_when_non_interactive(self, fake_runner, settings, run_config, drupal_tree):
        fake_runner.on("ddev", "composer", "outdated", stdout=OUTDATED)
        summary = Updater(fake_runner, settings).run(run_config)
        assert summary.outdated_packages == 2
        assert summary.composer_updated
        assert fake_runner.called("ddev", "composer", "update")
        assert fake_runner.called("ddev", "drush", "updatedb", "-y")

    def test_declined_interactively(self, fake_runner, settings, make_config, drupal_tree):
        fake_runner.on("ddev", "composer", "outdated", stdout=OUTDATED)
        prompter = ScriptedPrompter(confirm=[False])
        summary = Updater(fake_runner, settings, prompter).run(make_config(interactive=True))
        assert not summary.composer_updated
        assert "Update composer dependencies?" in prompter.questions

    def test_missing_project(self, fake_runner, settings, run_config):
        summary = Updater(fake_runner, settings).run(run_config)
        assert fake_runner.calls == []
        assert not summary.composer_updated


class TestExtraModuleUpdates:

    def test_behind_remote_is_reinstalled(self, fake_runner, settings, run_config, module_checkout):
        fake_runner.on("ddev", "drush", "pm:list", stdout=MODULE_ENABLED)
        fake_runner.on("git", "rev-parse", "HEAD", stdout="aaaaaaaaaaaa\n")
        fake_runner.on("git", "rev-parse", "origin/HEAD", stdout="bbbbbbbbbbbb\n")
        summary = Updater(fake_runner, settings).run(run_config)
        assert summary.module_behind
        assert summary.module_updated
        assert fake_runner.called("ddev", "drush", "pm:uninstall", "workflow_assignment", "-y")
        assert fake_runner.called("git", "pull", "origin")
        assert fake_runner.called("ddev", "drush", "pm:enable", "workflow_assignment", "-y")

    def test_current_module_untouched(self, fake_runner, settings, run_config, module_checkout):
        fake_runner.on("ddev", "drush", "pm:list", stdout=MODULE_ENABLED)
        fake_runner.on("git", "rev-parse", stdout="aaaaaaaaaaaa\n")
        summary = Updater(fake_runner, settings).run(run_config)
        assert not summary.module_behind
        assert not fake_runner.called("git", "pull")

    def test_dry_run_does_not_reinstall(self, fake_runner, settings, make_config, module_checkout):
        fake_runner.on("ddev", "drush", "pm:list", stdout=MODULE_ENABLED)
        fake_runner.on("git", "rev-parse", "HEAD", stdout="aaaaaaaaaaaa\n")
        fake_runner.on("git", "rev-parse", "origin/HEAD", stdout="bbbbbbbbbbbb\n")
        summary = Updater(fake_runner, settings).run(make_config(dry_run=True))
        assert summary.module_behind
        assert not summary.module_updated
        assert not fake_runner.called("ddev", "drush", "pm:uninstall")

    def test_module_absent(self, fake_runner, settings, run_config, drupal_tree):
        summary = Updater(fake_runner, settings).run(run_config)
        assert not summary.module_behind
        assert not fake_runner.called("git")
