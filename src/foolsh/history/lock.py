"""Cross-process exclusive lock for the history file."""

from __future__ import annotations

import contextlib
import fcntl
from collections.abc import Generator
from pathlib import Path

from foolsh.errors import PersistenceError

LOCK_SUFFIX = ".lock"


def lock_path_for(path: Path) -> Path:
    """Sidecar lock path; it survives the data file being replaced by rename."""

    return path.with_name(f"{path.name}{LOCK_SUFFIX}")


@contextlib.contextmanager
def exclusive_lock(path: Path) -> Generator[Path, None, None]:
    """Hold an advisory exclusive lock on the sidecar of ``path``."""

    lock_path = lock_path_for(path)
    try:
        handle = lock_path.open("a", encoding="utf-8")
    except OSError as exc:
        raise PersistenceError(f"Failed to open history lock {lock_path}: {exc.strerror or exc}") from exc

    with handle:
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
        except OSError as exc:
            raise PersistenceError(f"Failed to lock {lock_path}: {exc.strerror or exc}") from exc
        try:
            yield lock_path
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
