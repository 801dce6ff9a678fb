"""External command execution for installation steps."""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Mapping, Optional, Sequence, Tuple, Union

from commonsinstall.errors import StepActionFailed
from commonsinstall.timeouts import (
    CANNOT_EXECUTE_EXIT_CODE,
    COMMAND_DEFAULT_TIMEOUT_S,
    NOT_FOUND_EXIT_CODE,
    TIMEOUT_EXIT_CODE,
)

__all__ = ["CommandResult", "CommandRunner"]

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Outcome of one external command."""
    command: str
    args: Sequence[str] = field(default_factory=tuple)
    exit_code: int = 0
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    not_found: bool = False
    error: Optional[str] = None
    duration_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def command_line(self) -> str:
        return " ".join([self.command, *self.args])

    def failure_reason(self) -> str:
        """Short description suitable for a step failure report."""
        if self.timed_out:
            return "timeout"
        if self.not_found:
            return f"command not found: {self.command}"
        if self.error:
            return self.error
        detail = (self.stderr or self.stdout).strip().splitlines()
        suffix = f": {detail[-1]}" if detail else ""
        return f"'{self.command_line}' exited {self.exit_code}{suffix}"


class CommandRunner:
    """
    Runs external commands and returns structured results.

    ``run()`` never raises for a non-zero exit, a missing executable or a
    timeout; the caller decides significance. ``must()`` is the strict
    variant used by step actions.
    """

    def __init__(
        self,
        default_timeout: float = COMMAND_DEFAULT_TIMEOUT_S,
        dry_run: bool = False,
    ) -> None:
        self.default_timeout = default_timeout
        self.dry_run = dry_run

    def which(self, tool: str) -> Optional[str]:
        return shutil.which(tool)

    def run(
        self,
        command: str,
        *args: str,
        cwd: Optional[Union[str, Path]] = None,
        env: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
        redact: Sequence[str] = (),
    ) -> CommandResult:
        """
        Run command and return its exit status and buffered output.

        Values in ``redact`` are masked in logs and in the returned
        ``CommandResult.args``.
        """
        timeout = self.default_timeout if timeout is None else timeout
        shown_args = _mask(args, redact)
        merged_env: Optional[Dict[str, str]] = None
        if env:
            merged_env = dict(os.environ)
            merged_env.update(env)

        if cwd is not None and not Path(cwd).is_dir():
            logger.debug("Working directory missing for %s: %s", command, cwd)
            return CommandResult(
                command=command,
                args=shown_args,
                exit_code=CANNOT_EXECUTE_EXIT_CODE,
                error=f"working directory not found: {cwd}",
            )

        argv = [command, *args]
        logger.debug("Running: %s (cwd=%s)", " ".join([command, *shown_args]), cwd or os.getcwd())
        start = time.monotonic()

        try:
            completed = subprocess.run(
                argv,
                cwd=str(cwd) if cwd is not None else None,
                env=merged_env,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            logger.warning("Command timed out after %ss: %s", timeout, " ".join([command, *shown_args]))
            return CommandResult(
                command=command,
                args=shown_args,
                exit_code=TIMEOUT_EXIT_CODE,
                stdout=_decode(e.stdout),
                stderr=_decode(e.stderr),
                timed_out=True,
                duration_seconds=time.monotonic() - start,
            )
        except FileNotFoundError as e:
            logger.debug("Command not found: %s (%s)", command, e)
            return CommandResult(
                command=command,
                args=shown_args,
                exit_code=NOT_FOUND_EXIT_CODE,
                stderr=str(e),
                not_found=True,
                duration_seconds=time.monotonic() - start,
            )
        except OSError as e:
            logger.debug("Command could not be started: %s (%s)", command, e)
            return CommandResult(
                command=command,
                args=shown_args,
                exit_code=CANNOT_EXECUTE_EXIT_CODE,
                stderr=str(e),
                error=f"could not start {command}: {e}",
                duration_seconds=time.monotonic() - start,
            )

        result = CommandResult(
            command=command,
            args=shown_args,
            exit_code=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
            duration_seconds=time.monotonic() - start,
        )
        if not result.ok:
            logger.debug(
                "Command failed with exit code %d: %s\nSTDERR: %s",
                result.exit_code,
                result.command_line,
                result.stderr.strip(),
            )
        return result

    def must(
        self,
        command: str,
        *args: str,
        cwd: Optional[Union[str, Path]] = None,
        env: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
        redact: Sequence[str] = (),
    ) -> CommandResult:
        """
        Run a command that has to succeed.

        Raises:
            StepActionFailed: On non-zero exit, timeout or missing executable.
        """
        if self.dry_run:
            shown_args = _mask(args, redact)
            logger.info("[dry-run] %s", " ".join([command, *shown_args]))
            return CommandResult(command=command, args=shown_args)

        result = self.run(command, *args, cwd=cwd, env=env, timeout=timeout, redact=redact)
        if not result.ok:
            raise StepActionFailed(result.failure_reason())
        return result


def _mask(args: Sequence[str], secrets: Sequence[str]) -> Tuple[str, ...]:
    masked = []
    for arg in args:
        for secret in secrets:
            if secret:
                arg = arg.replace(secret, "***")
        masked.append(arg)
    return tuple(masked)


def _decode(stream: Union[bytes, str, None]) -> str:
    if stream is None:
        return ""
    if isinstance(stream, bytes):
        return stream.decode("utf-8", errors="replace")
    return stream
