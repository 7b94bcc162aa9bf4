"""Configuration management for Fool Shell."""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from .errors import ConfigFileError

DEFAULT_TRIGGER_PREFIX = "!"
DEFAULT_MAX_ENTRIES = 10_000
DEFAULT_SYSTEM_PROMPT = (
    "You are Fool, a helpful assistant running inside a command-line shell. "
    "Be concise and provide direct answers. When suggesting commands, "
    "provide them in a way that can be easily copied and executed."
)
CONFIG_DIR_NAME = "fool"
CONFIG_FILE_NAME = "config.toml"


class UiSettings(BaseModel):
    """Terminal presentation settings."""

    theme: str = Field(default="dracula", description="Prompt and highlighting theme: dracula, light or plain")


class HistorySettings(BaseModel):
    """Where and how much history is kept."""

    file_path: str = Field(default="~/.local/share/fool/history", description="History file path")
    max_entries: int = Field(default=DEFAULT_MAX_ENTRIES, description="Maximum history entries")

    @field_validator("max_entries")
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        return max(1, value)

    def resolved_path(self) -> Path:
        return Path(self.file_path).expanduser()


class AiSettings(BaseModel):
    """AI assistant settings."""

    trigger_prefix: str = Field(default=DEFAULT_TRIGGER_PREFIX, description="Prefix that marks an AI query")
    api_base: str = Field(default="https://api.openai.com/v1", description="OpenAI-compatible API base URL")
    api_key: str = Field(default="", description="API key; FOOL_AI_KEY or OPENAI_API_KEY are used when empty")
    model: str = Field(default="gpt-4o", description="Model name")
    temperature: float = Field(default=0.7, description="Sampling temperature")
    context_lines: int = Field(default=10, ge=0, description="Recent history entries sent as context")
    system_prompt: str = Field(default=DEFAULT_SYSTEM_PROMPT, description="System prompt")
    timeout_seconds: int = Field(default=60, ge=1, description="Request timeout in seconds")

    @field_validator("trigger_prefix")
    @classmethod
    def _non_empty_prefix(cls, value: str) -> str:
        return value.strip() or DEFAULT_TRIGGER_PREFIX

    def resolved_api_key(self) -> str | None:
        if self.api_key:
            return self.api_key
        return os.getenv("FOOL_AI_KEY") or os.getenv("OPENAI_API_KEY") or None


class Settings(BaseSettings):
    """Application settings.

    Values from the TOML config file are handed in as init values; the
    source order below lets environment variables and ``.env`` override them.
    """

    model_config = SettingsConfigDict(
        env_prefix="FOOL_",
        env_nested_delimiter="__",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    ui: UiSettings = Field(default_factory=UiSettings)
    history: HistorySettings = Field(default_factory=HistorySettings)
    ai: AiSettings = Field(default_factory=AiSettings)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return env_settings, dotenv_settings, init_settings, file_secret_settings


def default_config_path() -> Path:
    base = os.getenv("XDG_CONFIG_HOME")
    root = Path(base) if base else Path.home() / ".config"
    return root / CONFIG_DIR_NAME / CONFIG_FILE_NAME


def read_config_file(path: Path) -> dict[str, Any]:
    """Read a TOML config file; a missing file is an empty config."""

    if not path.exists():
        return {}
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except OSError as exc:
        raise ConfigFileError(f"Failed to read config file {path}: {exc.strerror or exc}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigFileError(f"Failed to parse config file {path}: {exc}") from exc


def load_settings(config_path: Path | None = None) -> Settings:
    """Load settings from the config file, environment and ``.env``."""

    path = config_path or default_config_path()
    data = read_config_file(path)
    try:
        return Settings(**data)
    except ValidationError as exc:
        raise ConfigFileError(f"Invalid configuration in {path}: {exc}") from exc


def init_config_file(path: Path | None = None) -> tuple[Path, bool]:
    """Write the commented default config unless one exists.

    Returns the path and whether a file was created.
    """

    target = path or default_config_path()
    if target.exists():
        return target, False
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(DEFAULT_CONFIG_TEXT, encoding="utf-8")
    return target, True


DEFAULT_CONFIG_TEXT = f"""# Fool Shell Configuration

[ui]
theme = "dracula"          # dracula, light or plain

[history]
file_path = "~/.local/share/fool/history"
max_entries = {DEFAULT_MAX_ENTRIES}        # Maximum history entries

[ai]
# AI trigger prefix, default is "!"
trigger_prefix = "{DEFAULT_TRIGGER_PREFIX}"

# OpenAI API configuration (compatible with OpenAI V1 format)
api_base = "https://api.openai.com/v1"
api_key = ""  # Or set FOOL_AI_KEY or OPENAI_API_KEY environment variable
model = "gpt-4o"
temperature = 0.7

# How many recent interactions to include as context
context_lines = 10

# System prompt for AI
system_prompt = "{DEFAULT_SYSTEM_PROMPT}"
"""
