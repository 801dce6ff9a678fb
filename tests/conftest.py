"""
Pytest configuration and fixtures for commons-install tests.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Dict, Generator, List, Optional, Sequence, Tuple

import pytest

from commonsinstall.config import InstallerSettings, reset_settings
from commonsinstall.models import RunConfig
from commonsinstall.prompts import Prompter
from commonsinstall.runner import CommandResult, CommandRunner


# ============================================================================
# Fake command runner
# ============================================================================


class FakeRunner(CommandRunner):
    """
    Scripted command runner.

    Responses are matched by argv prefix; the most recently registered
    matching rule wins. Unmatched commands succeed with empty output unless
    ``default_exit_code`` says otherwise.
    """

    def __init__(
        self,
        tools: Sequence[str] = ("ddev", "composer", "git", "docker"),
        default_exit_code: int = 0,
        dry_run: bool = False,
    ) -> None:
        super().__init__(dry_run=dry_run)
        self.tools = set(tools)
        self.default_exit_code = default_exit_code
        self.calls: List[Tuple[str, ...]] = []
        self._rules: List[Tuple[Tuple[str, ...], Callable[[Tuple[str, ...]], CommandResult]]] = []

    def which(self, tool: str) -> Optional[str]:
        return f"/usr/bin/{tool}" if tool in self.tools else None

    def on(
        self,
        *prefix: str,
        exit_code: int = 0,
        stdout: str = "",
        stderr: str = "",
        timed_out: bool = False,
        not_found: bool = False,
        effect: Optional[Callable[[], None]] = None,
    ) -> "FakeRunner":
        def respond(argv: Tuple[str, ...]) -> CommandResult:
            if effect is not None:
                effect()
            return CommandResult(
                command=argv[0],
                args=argv[1:],
                exit_code=exit_code,
                stdout=stdout,
                stderr=stderr,
                timed_out=timed_out,
                not_found=not_found,
            )

        self._rules.append((tuple(prefix), respond))
        return self

    def on_call(self, *prefix: str, handler: Callable[[Tuple[str, ...]], CommandResult]) -> "FakeRunner":
        """Answer with whatever ``handler(argv)`` returns."""
        self._rules.append((tuple(prefix), handler))
        return self

    def on_sequence(self, *prefix: str, results: Sequence[int]) -> "FakeRunner":
        """Answer successive calls with the given exit codes (last one repeats)."""
        remaining = list(results)

        def respond(argv: Tuple[str, ...]) -> CommandResult:
            code = remaining.pop(0) if len(remaining) > 1 else remaining[0]
            return CommandResult(command=argv[0], args=argv[1:], exit_code=code)

        self._rules.append((tuple(prefix), respond))
        return self

    def run(self, command, *args, cwd=None, env=None, timeout=None, redact=()):
        argv = (command, *args)
        self.calls.append(argv)
        for prefix, respond in reversed(self._rules):
            if argv[: len(prefix)] == prefix:
                return respond(argv)
        return CommandResult(command=command, args=tuple(args), exit_code=self.default_exit_code)

    def called(self, *prefix: str) -> bool:
        return any(call[: len(prefix)] == prefix for call in self.calls)

    def count(self, *prefix: str) -> int:
        return sum(1 for call in self.calls if call[: len(prefix)] == prefix)


class ScriptedPrompter(Prompter):
    """Answers prompts from queues; falls back to the base defaults."""

    def __init__(
        self,
        run: Optional[Dict[int, bool]] = None,
        redo: Optional[Dict[int, bool]] = None,
        confirm: Sequence[bool] = (),
        choice: Optional[str] = None,
    ) -> None:
        self.run_answers = run or {}
        self.redo_answers = redo or {}
        self.confirm_answers = list(confirm)
        self.choice = choice
        self.questions: List[str] = []

    def confirm_run(self, step) -> bool:
        return self.run_answers.get(step.id, True)

    def confirm_redo(self, step) -> bool:
        return self.redo_answers.get(step.id, False)

    def confirm(self, question: str, default: bool = False) -> bool:
        self.questions.append(question)
        if self.confirm_answers:
            return self.confirm_answers.pop(0)
        return default

    def choose(self, question, choices, default):
        self.questions.append(question)
        return self.choice or default


# ============================================================================
# Environment Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def clean_env(monkeypatch) -> Generator[None, None, None]:
    """Keep host configuration out of the tests."""
    for key in ("GITHUB_TOKEN", "COMMONS_INSTALL_GITHUB_TOKEN", "COMMONS_INSTALL_LOG_LEVEL"):
        monkeypatch.delenv(key, raising=False)
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def settings() -> InstallerSettings:
    return InstallerSettings(_env_file=None, container_start_retry_delay_seconds=0)


@pytest.fixture
def run_config(tmp_path: Path) -> RunConfig:
    return RunConfig(
        project_name="mysite",
        instance_name="mysite",
        working_dir=tmp_path,
        project_dir=tmp_path / "mysite",
    )


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., RunConfig]:
    """Build a RunConfig for tmp_path/mysite with overrides."""

    def build(**overrides) -> RunConfig:
        values = dict(
            project_name="mysite",
            instance_name="mysite",
            working_dir=tmp_path,
            project_dir=tmp_path / "mysite",
        )
        values.update(overrides)
        return RunConfig(**values)

    return build


@pytest.fixture
def prompter_factory() -> Callable[..., ScriptedPrompter]:
    return ScriptedPrompter


@pytest.fixture
def drupal_tree(run_config: RunConfig) -> Path:
    """A project directory laid out like an installed OpenSocial site."""
    root = run_config.project_dir
    (root / "vendor").mkdir(parents=True)
    (root / "html" / "core").mkdir(parents=True)
    (root / "html" / "profiles" / "contrib" / "social").mkdir(parents=True)
    sites_default = root / "html" / "sites" / "default"
    (sites_default / "files").mkdir(parents=True)
    (sites_default / "default.settings.php").write_text("<?php\n$databases = [];\n")
    (root / "composer.json").write_text('{"name": "rjzaar/commons_template"}')
    return root
