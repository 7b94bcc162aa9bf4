"""Application-level exception types for Fool Shell."""

from __future__ import annotations


class FoolError(Exception):
    """Base exception for Fool Shell."""


class ShellSyntaxError(FoolError):
    """Raised when literal text has an unclosed quote or a trailing backslash."""


class ExecutionError(FoolError):
    """Base exception for failures while running a pipeline."""


class SpawnError(ExecutionError):
    """Raised when a pipeline segment cannot be started."""

    def __init__(self, program: str, message: str) -> None:
        super().__init__(message)
        self.program = program


class CommandNotFoundError(SpawnError):
    """Raised when the program of a segment does not exist."""


class RedirectIoError(ExecutionError):
    """Raised when a redirection target cannot be opened."""


class BuiltinError(ExecutionError):
    """Raised when a built-in command fails."""


class PersistenceError(FoolError):
    """Raised when the history file or its lock cannot be written."""


class ConfigurationError(FoolError):
    """Base exception for configuration and startup validation errors."""


class ConfigFileError(ConfigurationError):
    """Raised when the config file cannot be read or parsed."""


class AiNotConfiguredError(ConfigurationError):
    """Raised when an AI query is issued without an API key."""


class AiRequestError(FoolError):
    """Raised when the chat completion endpoint fails."""
