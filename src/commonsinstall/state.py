"""
Run lock and progress checkpoint for installer runs.

The checkpoint file records ``STEP_<id>=done`` lines. It is a hint only:
live probes always decide whether a step runs. The orchestrator consults it
to report drift (a step once completed whose effect has disappeared) and to
announce where a resumed run picks up.

Both files live in the working directory, next to the project directory,
so they survive the project directory being removed and recreated.
"""

from __future__ import annotations

import contextlib
import logging
import os
import sys
import tempfile
from pathlib import Path
from typing import IO, Dict, Generator, List, Optional

from commonsinstall.errors import RunLocked

__all__ = ["file_lock", "run_lock", "CheckpointFile", "checkpoint_path", "lock_path"]

logger = logging.getLogger(__name__)


# Cross-platform file locking
if sys.platform == "win32":
    import msvcrt

    def _lock_file(f: IO, blocking: bool = True) -> None:
        """Lock file on Windows."""
        msvcrt.locking(f.fileno(), msvcrt.LK_LOCK if blocking else msvcrt.LK_NBLCK, 1)

    def _unlock_file(f: IO) -> None:
        """Unlock file on Windows."""
        msvcrt.locking(f.fileno(), msvcrt.LK_UNLCK, 1)
else:
    import fcntl

    def _lock_file(f: IO, blocking: bool = True) -> None:
        """Lock file on Unix."""
        flags = fcntl.LOCK_EX if blocking else fcntl.LOCK_EX | fcntl.LOCK_NB
        fcntl.flock(f.fileno(), flags)

    def _unlock_file(f: IO) -> None:
        """Unlock file on Unix."""
        fcntl.flock(f.fileno(), fcntl.LOCK_UN)


def checkpoint_path(working_dir: Path, instance_name: str) -> Path:
    return working_dir / f".commons-install-{instance_name}.progress"


def lock_path(working_dir: Path, instance_name: str) -> Path:
    return working_dir / f".commons-install-{instance_name}.lock"


@contextlib.contextmanager
def file_lock(path: Path) -> Generator[IO, None, None]:
    """
    Hold an exclusive lock on a sidecar ``.lock`` file while writing ``path``.

    Example:
        with file_lock(checkpoint):
            checkpoint.write_text(...)
    """
    sidecar = path.with_suffix(path.suffix + ".lock")
    sidecar.parent.mkdir(parents=True, exist_ok=True)
    sidecar.touch(exist_ok=True)

    lock_file = open(sidecar, "r+")
    try:
        _lock_file(lock_file)
        yield lock_file
    finally:
        try:
            _unlock_file(lock_file)
        except OSError as e:
            logger.debug("Failed to unlock %s: %s", sidecar, e)
        finally:
            lock_file.close()


@contextlib.contextmanager
def run_lock(path: Path) -> Generator[IO, None, None]:
    """
    Advisory, non-blocking lock held for the duration of one run.

    Raises:
        RunLocked: If another process already holds the lock.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    lock_file = open(path, "a+")
    try:
        _lock_file(lock_file, blocking=False)
    except OSError as e:
        lock_file.close()
        raise RunLocked(f"Another installation is already running (lock: {path})") from e

    try:
        lock_file.seek(0)
        lock_file.truncate()
        lock_file.write(str(os.getpid()))
        lock_file.flush()
        yield lock_file
    finally:
        try:
            _unlock_file(lock_file)
        except OSError as e:
            logger.debug("Failed to unlock %s: %s", path, e)
        finally:
            lock_file.close()


class CheckpointFile:
    """
    ``key=value`` progress marker with atomic rewrites.

    Usage:
        checkpoint = CheckpointFile(checkpoint_path(working_dir, "mysite"))
        checkpoint.mark_done(3)
        checkpoint.is_done(3)  # True
    """

    def __init__(self, path: Path):
        self.path = path

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> Dict[str, str]:
        """Read all entries. Malformed lines are ignored."""
        if not self.path.exists():
            return {}
        entries: Dict[str, str] = {}
        try:
            text = self.path.read_text(encoding="utf-8")
        except OSError as e:
            logger.warning("Could not read checkpoint %s: %s", self.path, e)
            return {}
        for line in text.splitlines():
            key, sep, value = line.strip().partition("=")
            if sep and key:
                entries[key] = value
        return entries

    def is_done(self, step_id: int) -> bool:
        return self.load().get(f"STEP_{step_id}") == "done"

    def completed_steps(self) -> List[int]:
        done = []
        for key, value in self.load().items():
            if value == "done" and key.startswith("STEP_") and key[5:].isdigit():
                done.append(int(key[5:]))
        return sorted(done)

    def last_completed(self) -> Optional[int]:
        done = self.completed_steps()
        return done[-1] if done else None

    def mark_done(self, step_id: int) -> None:
        with file_lock(self.path):
            entries = self.load()
            entries[f"STEP_{step_id}"] = "done"
            self._write(entries)

    def clear(self) -> None:
        with file_lock(self.path):
            if self.path.exists():
                self.path.unlink()

    def _write(self, entries: Dict[str, str]) -> None:
        """Temp file + rename so a crash never leaves a half-written marker."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(
            dir=self.path.parent,
            prefix=".commons-install-",
            suffix=".tmp",
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                for key, value in entries.items():
                    f.write(f"{key}={value}\n")
            os.replace(temp_path, self.path)
        except Exception:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise
