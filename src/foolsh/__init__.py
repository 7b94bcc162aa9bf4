"""Fool Shell: a state-machine driven shell with AI integration."""

__version__ = "0.1.0"

from .history import History, HistoryEntry  # noqa: E402
from .shell import Executor, Parser, parse  # noqa: E402

__all__ = [
    "Executor",
    "History",
    "HistoryEntry",
    "Parser",
    "__version__",
    "parse",
]
