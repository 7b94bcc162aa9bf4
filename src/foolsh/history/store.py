"""Bounded, file-backed command history.

Entries are appended to the backing file (one JSON object per line) only
once their exit code is known. Every ``max_entries`` additions the file is
rewritten from memory so it never grows far beyond the retention window.
All writes go through the sidecar lock, so several shells can share one
history file.
"""

from __future__ import annotations

import os
from collections import deque
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from foolsh.errors import PersistenceError
from foolsh.history.entry import HistoryEntry
from foolsh.history.lock import exclusive_lock

TEMP_SUFFIX = ".tmp"


@dataclass
class _Buffered:
    entry: HistoryEntry
    awaiting_finalization: bool = False


class History:
    """In-memory history window with optional durable backing file."""

    def __init__(self, file_path: Path | None, max_entries: int) -> None:
        self._max_entries = max(1, max_entries)
        self._file_path = file_path
        self._entries: deque[_Buffered] = deque(maxlen=self._max_entries)
        self._entries_since_compact = 0
        self._load()

    @classmethod
    def open(cls, file_path: str | Path, max_entries: int) -> History:
        """Open a file-backed history, creating its directory if needed."""

        path = Path(file_path).expanduser()
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise PersistenceError(f"Failed to create history directory {path.parent}: {exc.strerror or exc}") from exc
        return cls(path, max_entries)

    @classmethod
    def memory_only(cls, max_entries: int) -> History:
        return cls(None, max_entries)

    @property
    def file_path(self) -> Path | None:
        return self._file_path

    @property
    def max_entries(self) -> int:
        return self._max_entries

    @property
    def pending(self) -> bool:
        """Whether the newest entry still waits for its exit code."""

        return bool(self._entries) and self._entries[-1].awaiting_finalization

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[HistoryEntry]:
        return (slot.entry for slot in self._entries)

    def _load(self) -> None:
        if self._file_path is None or not self._file_path.exists():
            return
        try:
            with self._file_path.open("r", encoding="utf-8", errors="replace") as handle:
                for number, line in enumerate(handle, start=1):
                    entry = HistoryEntry.from_line(line)
                    if entry is None:
                        if line.strip():
                            logger.debug("skipping unreadable history line {} in {}", number, self._file_path)
                        continue
                    self._entries.append(_Buffered(entry))
        except OSError as exc:
            raise PersistenceError(f"Failed to read history file {self._file_path}: {exc.strerror or exc}") from exc

    def add(self, entry: HistoryEntry) -> None:
        """Buffer a new entry; it reaches disk once its exit code is set."""

        self._entries.append(_Buffered(entry, awaiting_finalization=True))
        self._entries_since_compact += 1
        if self._file_path is not None and self._entries_since_compact >= self._max_entries:
            self.compact()
            self._entries_since_compact = 0

    def update_last_exit_code(self, code: int) -> None:
        """Attach the exit code to the newest entry and persist it."""

        if not self._entries:
            return
        slot = self._entries[-1]
        slot.entry.exit_code = code
        if self._file_path is None or not slot.awaiting_finalization:
            return

        line = slot.entry.to_line()
        with exclusive_lock(self._file_path):
            try:
                separator = "" if _ends_with_newline(self._file_path) else "\n"
                with self._file_path.open("a", encoding="utf-8") as handle:
                    handle.write(f"{separator}{line}\n")
                    handle.flush()
            except OSError as exc:
                raise PersistenceError(f"Failed to write history file {self._file_path}: {exc.strerror or exc}") from exc
        slot.awaiting_finalization = False

    def compact(self) -> None:
        """Rewrite the backing file to hold exactly the in-memory window.

        A newest entry that still waits for its exit code is left out; it is
        appended later by :meth:`update_last_exit_code`.
        """

        if self._file_path is None:
            return

        slots = list(self._entries)
        if slots and slots[-1].awaiting_finalization:
            slots = slots[:-1]

        temp_path = self._file_path.with_name(f"{self._file_path.name}{TEMP_SUFFIX}")
        with exclusive_lock(self._file_path):
            try:
                with temp_path.open("w", encoding="utf-8") as handle:
                    for slot in slots:
                        handle.write(slot.entry.to_line() + "\n")
                    handle.flush()
                    os.fsync(handle.fileno())
                os.replace(temp_path, self._file_path)
            except OSError as exc:
                temp_path.unlink(missing_ok=True)
                raise PersistenceError(f"Failed to compact history file {self._file_path}: {exc.strerror or exc}") from exc

        for slot in slots:
            slot.awaiting_finalization = False
        logger.debug("compacted history {} to {} entries", self._file_path, len(slots))

    def clear(self) -> None:
        """Forget every entry, removing the backing file as well."""

        self._entries.clear()
        self._entries_since_compact = 0
        if self._file_path is None:
            return
        with exclusive_lock(self._file_path):
            try:
                self._file_path.unlink(missing_ok=True)
            except OSError as exc:
                raise PersistenceError(f"Failed to remove history file {self._file_path}: {exc.strerror or exc}") from exc

    def last(self) -> HistoryEntry | None:
        if not self._entries:
            return None
        return self._entries[-1].entry

    def get_recent(self, count: int) -> list[HistoryEntry]:
        if count <= 0:
            return []
        return [slot.entry for slot in list(self._entries)[-count:]]

    def get_all_commands(self) -> list[str]:
        return [slot.entry.command for slot in self._entries]

    def search(self, query: str) -> list[HistoryEntry]:
        return [slot.entry for slot in self._entries if query in slot.entry.command]

    def search_prefix(self, prefix: str) -> list[HistoryEntry]:
        return [slot.entry for slot in self._entries if slot.entry.command.startswith(prefix)]

    def format_for_ai(self, count: int) -> list[dict[str, str]]:
        """Recent commands as chat messages for the AI assistant."""

        messages: list[dict[str, str]] = []
        for entry in self.get_recent(count):
            messages.append({"role": "user", "content": entry.command})
            if entry.exit_code is None:
                continue
            response = f"(Exit Code: {entry.exit_code})"
            if entry.stdout_summary is not None:
                response = f"{response} Output: {entry.stdout_summary}"
            messages.append({"role": "assistant", "content": response})
        return messages


def _ends_with_newline(path: Path) -> bool:
    """Whether appending to ``path`` starts on a fresh line."""

    try:
        with path.open("rb") as handle:
            handle.seek(0, os.SEEK_END)
            if handle.tell() == 0:
                return True
            handle.seek(-1, os.SEEK_END)
            return handle.read(1) == b"\n"
    except FileNotFoundError:
        return True
