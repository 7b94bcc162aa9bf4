from __future__ import annotations

import io
import json
from collections.abc import Callable
from pathlib import Path

import pytest
from prompt_toolkit.history import InMemoryHistory
from rich.console import Console

import foolsh.cli.repl as repl_module
from foolsh.cli.prompt import ShellAutoSuggest, ShellLexer
from foolsh.cli.repl import Repl
from foolsh.config import Settings
from foolsh.errors import AiRequestError, PersistenceError
from foolsh.history import History, HistoryEntry


class _FakeAgent:
    def __init__(
        self,
        *,
        configured: bool = True,
        pieces: list[str] | None = None,
        error: Exception | None = None,
    ) -> None:
        self.configured = configured
        self.pieces = pieces or []
        self.error = error
        self.queries: list[str] = []

    def is_configured(self) -> bool:
        return self.configured

    def query_stream(self, query: str, history: History, on_delta: Callable[[str], None] | None = None) -> str:
        self.queries.append(query)
        if self.error is not None:
            raise self.error
        for piece in self.pieces:
            if on_delta is not None:
                on_delta(piece)
        return "".join(self.pieces)


class _UnwritableHistory(History):
    def update_last_exit_code(self, code: int) -> None:
        raise PersistenceError("disk full")


class _Session:
    def __init__(self, history: History, agent: _FakeAgent | None = None) -> None:
        self.out = io.StringIO()
        self.err = io.StringIO()
        self.agent = agent or _FakeAgent(configured=False)
        self.repl = Repl(
            Settings(),
            history=history,
            agent=self.agent,  # type: ignore[arg-type]
            console=Console(file=self.out, force_terminal=False, width=200),
            error_console=Console(file=self.err, force_terminal=False, width=200),
        )


@pytest.fixture(autouse=True)
def _isolated(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("FOOL_AI_KEY", raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)


def _codes(history: History) -> list[tuple[str, int | None]]:
    return [(entry.command, entry.exit_code) for entry in history]


def test_command_is_recorded_with_exit_code() -> None:
    session = _Session(History.memory_only(10))

    assert session.repl.handle_line("  true  ") == 0
    assert session.repl.handle_line("false | false") == 1
    assert _codes(session.repl.history) == [("true", 0), ("false | false", 1)]
    assert not session.repl.history.pending


def test_missing_program_reports_127() -> None:
    session = _Session(History.memory_only(10))

    assert session.repl.handle_line("fool-no-such-program") == 127
    assert "Command not found: fool-no-such-program" in session.err.getvalue()
    assert _codes(session.repl.history) == [("fool-no-such-program", 127)]


def test_builtin_error_is_reported_and_recorded() -> None:
    session = _Session(History.memory_only(10))

    assert session.repl.handle_line("cd does-not-exist") == 1
    assert "Error: cd: does-not-exist: No such file or directory" in session.err.getvalue()
    assert _codes(session.repl.history) == [("cd does-not-exist", 1)]


def test_parse_error_is_not_recorded() -> None:
    session = _Session(History.memory_only(10))

    assert session.repl.handle_line("echo 'open") == 1
    assert "Parse Error: Unclosed quote" in session.err.getvalue()
    assert len(session.repl.history) == 0


def test_blank_line_does_nothing() -> None:
    session = _Session(History.memory_only(10))
    assert session.repl.handle_line("   ") == 0
    assert len(session.repl.history) == 0


def test_history_builtin_sees_session_commands() -> None:
    session = _Session(History.memory_only(10))
    session.repl.handle_line("true")
    session.repl.handle_line("history")

    assert session.out.getvalue().splitlines()[-2:] == ["    1  true", "    2  history"]


def test_empty_ai_query_prints_usage() -> None:
    session = _Session(History.memory_only(10))

    assert session.repl.handle_line("!") == 1
    assert "Usage: ! <your question>" in session.out.getvalue()
    assert len(session.repl.history) == 0


def test_unconfigured_ai_query_fails_without_crashing() -> None:
    session = _Session(History.memory_only(10))

    assert session.repl.handle_line("! what is ls") == 1
    assert "AI not configured" in session.err.getvalue()
    assert _codes(session.repl.history) == [("! what is ls", 1)]


def test_ai_query_streams_answer() -> None:
    agent = _FakeAgent(pieces=["Use ", "`du -sh`"])
    history = History.memory_only(10)
    session = _Session(history, agent)

    assert session.repl.handle_line("!   how big is this dir  ") == 0
    assert agent.queries == ["how big is this dir"]
    assert "AI: Use `du -sh`" in session.out.getvalue()
    assert _codes(history) == [("! how big is this dir", 0)]


def test_ai_request_failure_is_reported() -> None:
    agent = _FakeAgent(error=AiRequestError("API request failed with status 500"))
    session = _Session(History.memory_only(10), agent)

    assert session.repl.handle_line("! hi") == 1
    assert "AI Error: API request failed with status 500" in session.err.getvalue()
    assert _codes(session.repl.history) == [("! hi", 1)]


def test_persistence_failure_does_not_stop_session(tmp_path: Path) -> None:
    history = _UnwritableHistory(tmp_path / "history", 10)
    session = _Session(history)

    assert session.repl.handle_line("true") == 0
    assert session.repl.handle_line("false") == 1


def test_file_backed_session_persists(tmp_path: Path) -> None:
    path = tmp_path / "history"
    session = _Session(History.open(path, 10))
    session.repl.handle_line("true")
    session.repl.handle_line("false")

    lines = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
    assert [(line["command"], line["exit_code"]) for line in lines] == [("true", 0), ("false", 1)]
    assert all(line["cwd"] == str(tmp_path) for line in lines)


def test_history_opened_from_settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = tmp_path / "data" / "history"
    monkeypatch.setenv("FOOL_HISTORY__FILE_PATH", str(path))
    repl = Repl(Settings(), console=Console(file=io.StringIO()), error_console=Console(file=io.StringIO()))

    assert repl.history.file_path == path
    assert path.parent.is_dir()


class _InterruptedExecutor:
    last_exit_code = 130

    def set_history(self, commands: list[str]) -> None:
        self.history = list(commands)

    def execute_pipeline(self, commands: object) -> object:
        raise KeyboardInterrupt


def test_interrupted_command_is_recorded_as_130() -> None:
    history = History.memory_only(10)
    out = io.StringIO()
    repl = Repl(
        Settings(),
        history=history,
        executor=_InterruptedExecutor(),  # type: ignore[arg-type]
        agent=_FakeAgent(configured=False),  # type: ignore[arg-type]
        console=Console(file=out, force_terminal=False, width=200),
        error_console=Console(file=io.StringIO(), force_terminal=False, width=200),
    )

    assert repl.handle_line("sleep 3") == 130
    assert _codes(history) == [("sleep 3", 130)]
    assert "^C" in out.getvalue()


class _ScriptedPromptSession:
    instances: list[_ScriptedPromptSession] = []

    def __init__(self, **kwargs: object) -> None:
        self.kwargs = kwargs
        self.history = InMemoryHistory()
        self.lines = ["sleep 3", "exit-code-check"]
        _ScriptedPromptSession.instances.append(self)

    def prompt(self, message: object) -> str:
        if not self.lines:
            raise EOFError
        return self.lines.pop(0)


def test_run_survives_interrupt_and_wires_prompt(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(repl_module, "PromptSession", _ScriptedPromptSession)
    _ScriptedPromptSession.instances.clear()
    history = History.memory_only(10)
    history.add(HistoryEntry.new("git status"))
    history.update_last_exit_code(0)
    repl = Repl(
        Settings(),
        history=history,
        executor=_InterruptedExecutor(),  # type: ignore[arg-type]
        agent=_FakeAgent(configured=False),  # type: ignore[arg-type]
        console=Console(file=io.StringIO(), force_terminal=False, width=200),
        error_console=Console(file=io.StringIO(), force_terminal=False, width=200),
    )

    assert repl.run() == 130

    session = _ScriptedPromptSession.instances[0]
    assert isinstance(session.kwargs["lexer"], ShellLexer)
    assert isinstance(session.kwargs["auto_suggest"], ShellAutoSuggest)
    assert list(session.history.get_strings()) == ["git status"]
    assert [code for _, code in _codes(history)] == [0, 130, 130]
