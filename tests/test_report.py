"""
Tests for RunReport rendering and exit codes.
"""

import pytest

from commonsinstall.config import InstallerSettings
from commonsinstall.models import StepOutcome
from commonsinstall.report import RunReport, StepRecord, render_completion


def record(step_id, outcome, **kwargs):
    return StepRecord(step_id=step_id, label=f"Label {step_id}", outcome=outcome, **kwargs)


@pytest.fixture
def partial_report():
    report = RunReport(total_steps=14)
    for step_id in range(1, 6):
        report.append(record(step_id, StepOutcome.SKIPPED))
    report.append(record(6, StepOutcome.FAILED, reason="timeout", error_kind="step_action_failed", exit_code=1))
    return report


class TestRunReport:

    def test_empty_report_succeeds(self):
        report = RunReport(total_steps=14)
        assert report.exit_code == 0
        assert report.succeeded

    def test_counts(self, partial_report):
        counts = partial_report.counts()
        assert counts["skipped"] == 5
        assert counts["failed"] == 1
        assert counts["ran"] == 0

    def test_exit_code_of_halting_failure(self, partial_report):
        assert partial_report.exit_code == 1
        assert partial_report.halted_by.step_id == 6

    def test_exit_code_carries_error_kind(self):
        report = RunReport(total_steps=2)
        report.append(record(1, StepOutcome.FAILED, reason="conflict", exit_code=4))
        assert report.exit_code == 4

    def test_optional_failure_keeps_exit_zero(self):
        report = RunReport(total_steps=2)
        report.append(record(1, StepOutcome.FAILED, reason="x", exit_code=1, optional=True))
        report.append(record(2, StepOutcome.RAN))
        assert report.exit_code == 0
        assert report.failures

    def test_render_names_failed_step(self, partial_report):
        text = partial_report.render(use_colors=False)
        assert "Total steps:          14" in text
        assert "Skipped:              5" in text
        assert "Not reached:          8" in text
        assert "Failed at step 6 doing Label 6: timeout" in text

    def test_to_dict(self, partial_report):
        data = partial_report.to_dict()
        assert data["exit_code"] == 1
        assert data["records"][5]["outcome"] == "failed"


class TestCompletionBanner:

    def test_contents(self, run_config):
        settings = InstallerSettings(_env_file=None)
        text = render_completion(run_config, settings, url="https://mysite.ddev.site",
                                 login_link="https://mysite.ddev.site/user/reset/1")
        assert "Project Name: mysite" in text
        assert "Site URL: https://mysite.ddev.site" in text
        assert "Admin Username: admin" in text
        assert "mariadb 10.11" in text
        assert "PHP Version: 8.3" in text
        assert "https://mysite.ddev.site/user/reset/1" in text
        assert "admin_password" not in text
