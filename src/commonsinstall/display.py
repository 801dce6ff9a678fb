"""Console progress output, kept separate from captured command output."""

from __future__ import annotations

import click

__all__ = [
    "RULE",
    "banner",
    "step_header",
    "step_complete",
    "print_status",
    "print_error",
    "print_warning",
    "print_skip",
    "print_substep",
    "print_success",
]

RULE = "━" * 70


def banner(title: str, *lines: str) -> None:
    click.echo(RULE)
    click.echo(click.style(title, fg="magenta"))
    for line in lines:
        click.echo(click.style(line, fg="cyan"))
    click.echo(RULE)
    click.echo()


def step_header(step_id: int, label: str, total: int) -> None:
    progress = step_id * 100 // total if total else 100
    click.echo()
    click.echo(RULE)
    click.echo(f"{click.style(f'STEP {step_id} of {total}', fg='magenta')} ({progress}% complete)")
    click.echo(click.style(f"▶ {label}", fg="cyan"))
    click.echo(RULE)


def step_complete(step_id: int, label: str) -> None:
    click.echo()
    click.echo(f"{click.style(f'✓ STEP {step_id} COMPLETED:', fg='green')} {label}")
    click.echo(click.style(RULE, fg="green"))
    click.echo()


def print_status(message: str) -> None:
    click.echo(f"{click.style('  ▸', fg='green')} {message}")


def print_error(message: str) -> None:
    click.echo(f"{click.style('  ✗ ERROR:', fg='red')} {message}", err=True)


def print_warning(message: str) -> None:
    click.echo(f"{click.style('  ⚠ WARNING:', fg='yellow')} {message}")


def print_skip(message: str) -> None:
    click.echo(f"{click.style('  ⊳ SKIPPED:', fg='blue')} {message}")


def print_substep(message: str) -> None:
    click.echo(f"{click.style('    →', fg='cyan')} {message}")


def print_success(message: str) -> None:
    click.echo(f"{click.style('    ✓', fg='green')} {message}")
