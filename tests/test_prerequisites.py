"""Tests for host prerequisite checks."""

import pytest

from commonsinstall.errors import EXIT_PREREQUISITE_MISSING, PrerequisiteMissing
from commonsinstall.prerequisites import REQUIRED_TOOLS, check_prerequisites

from conftest import FakeRunner


def test_all_present():
    paths = check_prerequisites(FakeRunner())
    assert paths == [f"/usr/bin/{tool}" for tool in REQUIRED_TOOLS]


def test_reports_every_missing_tool():
    with pytest.raises(PrerequisiteMissing) as exc:
        check_prerequisites(FakeRunner(tools=("git",)))
    assert exc.value.missing == ["ddev", "composer", "docker"]
    assert exc.value.exit_code == EXIT_PREREQUISITE_MISSING
    assert "ddev" in exc.value.hints


def test_runs_no_commands():
    runner = FakeRunner()
    check_prerequisites(runner)
    assert runner.calls == []
