"""Typer entry point for the ``fool`` command."""

from __future__ import annotations

from pathlib import Path

import typer
from loguru import logger

from foolsh import __version__
from foolsh.config import Settings, init_config_file, load_settings
from foolsh.errors import ConfigurationError, PersistenceError
from foolsh.history import History
from foolsh.logging_utils import configure_logging

from .repl import Repl

app = typer.Typer(
    name="fool",
    help="A state-machine driven shell with AI integration.",
    add_completion=False,
)


def _load(config: Path | None) -> Settings:
    try:
        return load_settings(config)
    except ConfigurationError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(1) from exc


@app.command(context_settings={"ignore_unknown_options": True, "allow_interspersed_args": False})
def main(
    words: list[str] | None = typer.Argument(None, help="Remaining words of the -c command"),  # noqa: B008
    command: str | None = typer.Option(None, "--command", "-c", help="Execute a single command and exit"),
    config: Path | None = typer.Option(None, "--config", help="Path to config.toml"),  # noqa: B008
    init_config: bool = typer.Option(False, "--init-config", help="Write the default config file and exit"),
    version: bool = typer.Option(False, "--version", "-v", help="Print version and exit"),
) -> None:
    """Start an interactive session, or run one command with -c."""

    configure_logging()

    if version:
        typer.echo(f"Fool Shell v{__version__}")
        return

    if init_config:
        path, created = init_config_file(config)
        if created:
            typer.echo(f"Created config file at: {path}")
        else:
            typer.echo(f"Config file already exists at: {path}")
        return

    if command is None and words:
        typer.echo("Error: unexpected arguments; use -c to run a command", err=True)
        raise typer.Exit(1)

    settings = _load(config)

    if command is not None:
        line = " ".join([command, *(words or [])])
        logger.debug("running single command: {}", line)
        repl = Repl(settings, history=History.memory_only(settings.history.max_entries))
        raise typer.Exit(repl.handle_line(line))

    try:
        repl = Repl(settings)
    except PersistenceError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(1) from exc
    raise typer.Exit(repl.run())
