"""Command history persistence."""

from .entry import HistoryEntry
from .lock import exclusive_lock, lock_path_for
from .store import History

__all__ = [
    "History",
    "HistoryEntry",
    "exclusive_lock",
    "lock_path_for",
]
