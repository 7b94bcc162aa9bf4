"""Command-line entry points."""

from .app import app
from .repl import Repl

__all__ = ["Repl", "app"]
