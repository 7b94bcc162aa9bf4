"""History entry model and its JSON line encoding."""

from __future__ import annotations

import json
import os
from datetime import UTC, datetime

from pydantic import BaseModel, Field, ValidationError, field_validator

INT32_MIN = -(2**31)
INT32_MAX = 2**31 - 1


class HistoryEntry(BaseModel):
    """One executed command and what came of it."""

    command: str
    exit_code: int | None = Field(default=None, ge=INT32_MIN, le=INT32_MAX)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    cwd: str | None = None
    stdout_summary: str | None = None

    @field_validator("timestamp")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    @classmethod
    def new(cls, command: str, *, cwd: str | None = None) -> HistoryEntry:
        """Create an entry stamped with the current time and directory."""

        if cwd is None:
            try:
                cwd = os.getcwd()
            except OSError:
                cwd = None
        return cls(command=command, cwd=cwd)

    def with_exit_code(self, code: int) -> HistoryEntry:
        return self.model_copy(update={"exit_code": code})

    def with_stdout_summary(self, summary: str) -> HistoryEntry:
        return self.model_copy(update={"stdout_summary": summary})

    def to_line(self) -> str:
        payload = self.model_dump(mode="json")
        if payload.get("stdout_summary") is None:
            payload.pop("stdout_summary", None)
        return json.dumps(payload, ensure_ascii=False)

    @classmethod
    def from_line(cls, line: str) -> HistoryEntry | None:
        """Decode one stored line, or None when it is not a valid entry."""

        stripped = line.strip()
        if not stripped:
            return None
        try:
            return cls.model_validate_json(stripped)
        except ValidationError:
            return None
