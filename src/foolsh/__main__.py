"""Fool Shell CLI bootstrap."""

from __future__ import annotations

from foolsh.cli.app import app

if __name__ == "__main__":
    app()
