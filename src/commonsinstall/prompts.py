"""Interactive decisions, asked through click."""

from __future__ import annotations

from typing import Sequence, Tuple

import click

from commonsinstall.errors import UserCancelled
from commonsinstall.models import Step

__all__ = ["Prompter", "ClickPrompter", "NonInteractivePrompter", "EXISTING_PROJECT_CHOICES"]

EXISTING_PROJECT_CHOICES: Tuple[Tuple[str, str], ...] = (
    ("resume", "Resume installation (recommended)"),
    ("remove", "Remove and start fresh"),
    ("update", "Update only changed components"),
    ("cancel", "Cancel"),
)


class Prompter:
    """Interface for the decisions the installer may ask the user."""

    def confirm_run(self, step: Step) -> bool:
        """Asked before probing a step. False skips it by request."""
        return True

    def confirm_redo(self, step: Step) -> bool:
        """Asked when a step's effect is already present."""
        return False

    def confirm(self, question: str, default: bool = False) -> bool:
        return default

    def choose(self, question: str, choices: Sequence[Tuple[str, str]], default: str) -> str:
        return default


class NonInteractivePrompter(Prompter):
    """Answers every question with its default."""


class ClickPrompter(Prompter):
    """Prompts on the terminal. Ctrl-C or EOF turn into ``UserCancelled``."""

    def confirm_run(self, step: Step) -> bool:
        click.echo()
        click.echo(click.style(f"Step {step.id}: {step.label}", fg="blue"))
        return self.confirm("Run this step?", default=True)

    def confirm_redo(self, step: Step) -> bool:
        click.echo(click.style("This step appears to be completed.", fg="green"))
        return self.confirm("Redo this step?", default=False)

    def confirm(self, question: str, default: bool = False) -> bool:
        try:
            return click.confirm(question, default=default)
        except click.Abort as e:
            raise UserCancelled() from e

    def choose(self, question: str, choices: Sequence[Tuple[str, str]], default: str) -> str:
        click.echo()
        click.echo(click.style(question, fg="yellow"))
        for index, (_, text) in enumerate(choices, start=1):
            click.echo(f"  {index}) {text}")
        keys = [key for key, _ in choices]
        default_index = str(keys.index(default) + 1)
        try:
            answer = click.prompt(
                f"Choose option (1-{len(choices)})",
                type=click.Choice([str(i) for i in range(1, len(choices) + 1)]),
                default=default_index,
                show_choices=False,
            )
        except click.Abort as e:
            raise UserCancelled() from e
        return keys[int(answer) - 1]
