"""Interactive loop: parse, execute, record."""

from __future__ import annotations

from loguru import logger
from prompt_toolkit import PromptSession
from prompt_toolkit.history import InMemoryHistory
from rich.console import Console
from rich.markup import escape

from foolsh import __version__
from foolsh.ai import AiAgent
from foolsh.config import Settings
from foolsh.errors import (
    CommandNotFoundError,
    ConfigurationError,
    ExecutionError,
    FoolError,
    PersistenceError,
)
from foolsh.history import History, HistoryEntry
from foolsh.shell import AIQuery, Commands, Executor, ParseError, Parser

from .prompt import ShellAutoSuggest, ShellCompleter, ShellLexer, build_prompt, quote_is_open, style_for_theme

COMMAND_NOT_FOUND_EXIT_CODE = 127
FAILURE_EXIT_CODE = 1
INTERRUPTED_EXIT_CODE = 130


class Repl:
    """One shell session wiring the parser, executor, history and AI agent."""

    def __init__(
        self,
        settings: Settings,
        *,
        history: History | None = None,
        executor: Executor | None = None,
        agent: AiAgent | None = None,
        console: Console | None = None,
        error_console: Console | None = None,
    ) -> None:
        self._settings = settings
        self._trigger_prefix = settings.ai.trigger_prefix
        self._console = console or Console()
        self._error_console = error_console or Console(stderr=True)
        self._parser = Parser(self._trigger_prefix)
        self._executor = executor or Executor(
            trigger_prefix=self._trigger_prefix,
            console=self._console,
            error_console=self._error_console,
        )
        if history is None:
            history = History.open(settings.history.resolved_path(), settings.history.max_entries)
        self._history = history
        self._agent = agent or AiAgent(settings.ai)

    @property
    def history(self) -> History:
        return self._history

    @property
    def executor(self) -> Executor:
        return self._executor

    def handle_line(self, line: str) -> int:
        """Parse and run one line; return its exit code."""

        result = self._parser.parse(line)
        if isinstance(result, Commands):
            return self._run_commands(line.strip(), result)
        if isinstance(result, AIQuery):
            return self._run_query(result.query)
        if isinstance(result, ParseError):
            self._report("Parse Error", result.message)
            return FAILURE_EXIT_CODE
        return 0

    def run(self) -> int:
        """Read lines until end of input."""

        session: PromptSession[str] = PromptSession(
            history=InMemoryHistory(),
            completer=ShellCompleter(self._trigger_prefix),
            complete_while_typing=False,
            auto_suggest=ShellAutoSuggest(self._trigger_prefix),
            lexer=ShellLexer(self._trigger_prefix),
            multiline=quote_is_open,
            style=style_for_theme(self._settings.ui.theme),
        )
        for command in self._history.get_all_commands():
            session.history.append_string(command)

        self._welcome()
        while True:
            try:
                line = session.prompt(build_prompt)
            except KeyboardInterrupt:
                self._console.print("^C", markup=False)
                continue
            except EOFError:
                self._console.print("exit", markup=False)
                break
            if not line.strip():
                continue
            try:
                self.handle_line(line)
            except KeyboardInterrupt:
                self._console.print("^C", markup=False)
        return self._executor.last_exit_code

    def _run_commands(self, line: str, result: Commands) -> int:
        self._record(HistoryEntry.new(line))
        self._executor.set_history(self._history.get_all_commands())
        try:
            code = self._executor.execute_pipeline(result.commands).exit_code
        except CommandNotFoundError as exc:
            self._report("Error", str(exc))
            code = COMMAND_NOT_FOUND_EXIT_CODE
        except ExecutionError as exc:
            self._report("Error", str(exc))
            code = FAILURE_EXIT_CODE
        except KeyboardInterrupt:
            self._console.print("^C", markup=False)
            code = INTERRUPTED_EXIT_CODE
        self._finalize(code)
        return code

    def _run_query(self, query: str) -> int:
        if not query:
            self._console.print(f"[yellow]Usage: {escape(self._trigger_prefix)} <your question>[/yellow]")
            return FAILURE_EXIT_CODE

        self._record(HistoryEntry.new(f"{self._trigger_prefix} {query}"))
        if not self._agent.is_configured():
            self._report("Error", "AI not configured. Set FOOL_AI_KEY or OPENAI_API_KEY environment variable.")
            self._finalize(FAILURE_EXIT_CODE)
            return FAILURE_EXIT_CODE

        status = self._console.status("Thinking...", spinner="dots")
        status.start()
        started = False

        def on_delta(text: str) -> None:
            nonlocal started
            if not started:
                status.stop()
                self._console.print("[bold green]AI:[/bold green] ", end="")
                started = True
            self._console.print(text, end="", markup=False, highlight=False)

        try:
            self._agent.query_stream(query, self._history, on_delta)
        except ConfigurationError as exc:
            self._report("Error", str(exc))
            code = FAILURE_EXIT_CODE
        except FoolError as exc:
            self._report("AI Error", str(exc))
            code = FAILURE_EXIT_CODE
        except KeyboardInterrupt:
            code = INTERRUPTED_EXIT_CODE
        else:
            code = 0
        finally:
            status.stop()
            if started:
                self._console.print()
        self._finalize(code)
        return code

    def _record(self, entry: HistoryEntry) -> None:
        try:
            self._history.add(entry)
        except PersistenceError as exc:
            logger.warning("history not saved: {}", exc)

    def _finalize(self, code: int) -> None:
        try:
            self._history.update_last_exit_code(code)
        except PersistenceError as exc:
            logger.warning("history not saved: {}", exc)

    def _report(self, title: str, message: str) -> None:
        self._error_console.print(f"[bold red]{title}:[/bold red] ", end="")
        self._error_console.print(message, markup=False, highlight=False)

    def _welcome(self) -> None:
        self._console.print(f"[bold green]Fool Shell[/bold green] v{__version__}")
        self._console.print("Type [yellow]help[/yellow] for help, [yellow]exit[/yellow] to exit")
        self._console.print(f"Use [magenta]{escape(self._trigger_prefix)} <question>[/magenta] to ask AI for help\n")
