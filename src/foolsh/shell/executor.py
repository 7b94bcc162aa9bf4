"""Pipeline execution and built-in commands."""

from __future__ import annotations

import contextlib
import os
import re
import subprocess
import sys
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import IO, NoReturn

from loguru import logger
from rich.console import Console

from foolsh.errors import (
    BuiltinError,
    CommandNotFoundError,
    ExecutionError,
    RedirectIoError,
    ShellSyntaxError,
    SpawnError,
)
from foolsh.shell.parser import (
    DEFAULT_TRIGGER_PREFIX,
    AIQuery,
    Command,
    Commands,
    ParseError,
    parse,
    split_literal,
)

FAILURE_EXIT_CODE = 1
INTERRUPTED_EXIT_CODE = 130
MAX_SOURCE_DEPTH = 64
ENV_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
CLEAR_SCREEN = "\x1b[2J\x1b[1;1H"


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of one pipeline or built-in."""

    exit_code: int
    stdout: str | None = None

    @classmethod
    def success(cls) -> ExecutionResult:
        return cls(exit_code=0)

    @classmethod
    def with_code(cls, code: int) -> ExecutionResult:
        return cls(exit_code=code)


class BuiltinCommand(Enum):
    """Commands handled inside the shell process."""

    CD = "cd"
    EXIT = "exit"
    EXPORT = "export"
    UNSET = "unset"
    HISTORY = "history"
    HELP = "help"
    CLEAR = "clear"
    PWD = "pwd"
    ALIAS = "alias"
    SOURCE = "source"

    @classmethod
    def from_name(cls, name: str) -> BuiltinCommand | None:
        if name == "quit":
            return cls.EXIT
        if name == ".":
            return cls.SOURCE
        try:
            return cls(name)
        except ValueError:
            return None


HELP_TEXT = """Fool Shell - A state-machine driven shell with AI integration

Built-in commands:
  cd [dir]          Change directory (~, ~/path and - are understood)
  pwd               Print working directory
  export VAR=val    Set environment variable
  unset VAR         Unset environment variable
  alias [n[=v]]     List, show or define aliases
  source FILE       Run commands from FILE (also: . FILE)
  history [n]       Show command history
  clear             Clear the screen
  help              Show this help
  exit [code]       Exit the shell (also: quit)

AI mode:
  {prefix} query          Send a query to the AI assistant
  Example: {prefix} how to find large files in Linux"""


class Executor:
    """Runs parsed pipelines for one shell session.

    The executor owns the session's environment map and alias table. Three
    built-ins also touch process-wide state: ``cd`` changes the working
    directory of this process, ``export`` and ``unset`` mirror their change
    into ``os.environ`` so that later children and the prompt see it.
    """

    def __init__(
        self,
        *,
        trigger_prefix: str = DEFAULT_TRIGGER_PREFIX,
        console: Console | None = None,
        error_console: Console | None = None,
        stdin: IO[bytes] | int | None = None,
        stdout: IO[bytes] | int | None = None,
    ) -> None:
        self.trigger_prefix = trigger_prefix or DEFAULT_TRIGGER_PREFIX
        self._console = console or Console()
        self._error_console = error_console or Console(stderr=True)
        # None inherits the shell's own descriptors.
        self._stdin = stdin
        self._stdout = stdout
        self._env: dict[str, str] = dict(os.environ)
        self._aliases: dict[str, list[str]] = {}
        self._last_exit_code = 0
        self._history: list[str] = []
        self._source_depth = 0
        self._builtins: dict[BuiltinCommand, Callable[[list[str]], ExecutionResult]] = {
            BuiltinCommand.CD: self._builtin_cd,
            BuiltinCommand.EXIT: self._builtin_exit,
            BuiltinCommand.EXPORT: self._builtin_export,
            BuiltinCommand.UNSET: self._builtin_unset,
            BuiltinCommand.HISTORY: self._builtin_history,
            BuiltinCommand.HELP: self._builtin_help,
            BuiltinCommand.CLEAR: self._builtin_clear,
            BuiltinCommand.PWD: self._builtin_pwd,
            BuiltinCommand.ALIAS: self._builtin_alias,
            BuiltinCommand.SOURCE: self._builtin_source,
        }

    @property
    def last_exit_code(self) -> int:
        return self._last_exit_code

    @property
    def aliases(self) -> dict[str, list[str]]:
        return {name: list(tokens) for name, tokens in self._aliases.items()}

    @staticmethod
    def is_builtin(name: str) -> bool:
        return BuiltinCommand.from_name(name) is not None

    def set_history(self, commands: Sequence[str]) -> None:
        self._history = list(commands)

    def get_env(self, key: str) -> str | None:
        return self._env.get(key)

    def set_env(self, key: str, value: str) -> None:
        os.environ[key] = value
        self._env[key] = value

    def execute_pipeline(self, commands: Sequence[Command]) -> ExecutionResult:
        """Run a pipeline and return the exit code of its last segment."""

        if not commands:
            return ExecutionResult.success()

        if len(commands) == 1:
            program, args = self.resolve_alias(commands[0])
            builtin = BuiltinCommand.from_name(program)
            if builtin is not None:
                return self._builtins[builtin](args)

        try:
            result = self._run_external(list(commands))
        except ExecutionError:
            self._last_exit_code = FAILURE_EXIT_CODE
            raise
        self._last_exit_code = result.exit_code
        return result

    def resolve_alias(self, command: Command) -> tuple[str, list[str]]:
        """Expand an alias into (program, args), keeping caller arguments."""

        tokens = self._aliases.get(command.program)
        if not tokens:
            return command.program, list(command.args)
        logger.debug("alias {} -> {}", command.program, tokens)
        return tokens[0], [*tokens[1:], *command.args]

    def _run_external(self, commands: list[Command]) -> ExecutionResult:
        children: list[subprocess.Popen[bytes]] = []
        previous_stdout: IO[bytes] | None = None
        last_index = len(commands) - 1

        try:
            for index, command in enumerate(commands):
                program, args = self.resolve_alias(command)
                if _redirect_breaks_chain(command, index, last_index):
                    logger.warning(
                        "redirection on segment {} ({}) bypasses the pipe chain",
                        index + 1,
                        program,
                    )
                with contextlib.ExitStack() as files:
                    stdin = self._bind_stdin(command, index, previous_stdout, files)
                    stdout = self._bind_stdout(command, index == last_index, files)
                    child = self._spawn(program, args, stdin, stdout)
                if previous_stdout is not None:
                    # The child holds its own copy of the read end.
                    previous_stdout.close()
                    previous_stdout = None
                children.append(child)
                if stdout == subprocess.PIPE:
                    previous_stdout = child.stdout
        except ExecutionError:
            if previous_stdout is not None:
                previous_stdout.close()
            _reap(children)
            raise

        returncode = 0
        try:
            for child in children:
                returncode = child.wait()
        except KeyboardInterrupt:
            _reap(children)
            self._last_exit_code = INTERRUPTED_EXIT_CODE
            raise
        return ExecutionResult(exit_code=_exit_code(returncode))

    def _bind_stdin(
        self,
        command: Command,
        index: int,
        previous_stdout: IO[bytes] | None,
        files: contextlib.ExitStack,
    ) -> IO[bytes] | int | None:
        if command.stdin_redirect is not None:
            try:
                return files.enter_context(open(command.stdin_redirect, "rb"))  # noqa: SIM115
            except OSError as exc:
                raise RedirectIoError(f"Cannot open file for input: {command.stdin_redirect}: {exc.strerror}") from exc
        if index == 0:
            return self._stdin
        if previous_stdout is not None:
            return previous_stdout
        # The previous segment redirected its output elsewhere.
        return subprocess.DEVNULL

    def _bind_stdout(self, command: Command, is_last: bool, files: contextlib.ExitStack) -> IO[bytes] | int | None:
        if command.stdout_redirect is not None:
            mode = "ab" if command.stdout_append else "wb"
            try:
                return files.enter_context(open(command.stdout_redirect, mode))  # noqa: SIM115
            except OSError as exc:
                raise RedirectIoError(
                    f"Cannot open file for output: {command.stdout_redirect}: {exc.strerror}"
                ) from exc
        if is_last:
            # The last segment writes to the terminal; its output is not captured.
            return self._stdout
        return subprocess.PIPE

    def _spawn(
        self,
        program: str,
        args: list[str],
        stdin: IO[bytes] | int | None,
        stdout: IO[bytes] | int | None,
    ) -> subprocess.Popen[bytes]:
        logger.debug("spawn {} {}", program, args)
        try:
            return subprocess.Popen(  # noqa: S603
                [program, *args],
                stdin=stdin,
                stdout=stdout,
                stderr=None,
                env=self._env,
            )
        except FileNotFoundError as exc:
            raise CommandNotFoundError(program, f"Command not found: {program}") from exc
        except PermissionError as exc:
            raise SpawnError(program, f"{program}: Permission denied") from exc
        except OSError as exc:
            raise SpawnError(program, f"{program}: {exc.strerror or exc}") from exc

    # Built-ins

    def _builtin_cd(self, args: list[str]) -> ExecutionResult:
        target = args[0] if args else "~"
        if target == "-":
            oldpwd = self._env.get("OLDPWD")
            if oldpwd is None:
                self._last_exit_code = FAILURE_EXIT_CODE
                raise BuiltinError("cd: OLDPWD not set")
            path = Path(oldpwd)
        else:
            path = _expand_home(target)

        previous = _current_dir()
        try:
            os.chdir(path)
        except OSError as exc:
            self._last_exit_code = FAILURE_EXIT_CODE
            reason = "No such file or directory" if isinstance(exc, FileNotFoundError) else exc.strerror
            raise BuiltinError(f"cd: {path}: {reason}") from exc

        if previous is not None:
            self.set_env("OLDPWD", previous)
        current = _current_dir()
        if current is not None:
            self.set_env("PWD", current)
        return self._done(0)

    def _builtin_exit(self, args: list[str]) -> NoReturn:
        code = 0
        if args:
            with contextlib.suppress(ValueError):
                code = int(args[0])
        sys.exit(code)

    def _builtin_export(self, args: list[str]) -> ExecutionResult:
        for arg in args:
            name, sep, value = arg.partition("=")
            if not ENV_NAME_RE.match(name):
                self._last_exit_code = FAILURE_EXIT_CODE
                raise BuiltinError(f"export: `{arg}': not a valid identifier")
            if sep:
                self.set_env(name, value)
            elif name in self._env:
                os.environ[name] = self._env[name]
        return self._done(0)

    def _builtin_unset(self, args: list[str]) -> ExecutionResult:
        for name in args:
            self._env.pop(name, None)
            os.environ.pop(name, None)
        return self._done(0)

    def _builtin_history(self, args: list[str]) -> ExecutionResult:
        if not self._history:
            self._print("No history available")
            return self._done(0)
        start = 0
        if args:
            try:
                count = int(args[0])
            except ValueError as exc:
                self._last_exit_code = FAILURE_EXIT_CODE
                raise BuiltinError(f"history: {args[0]}: numeric argument required") from exc
            start = max(len(self._history) - max(count, 0), 0)
        for number, command in enumerate(self._history[start:], start=start + 1):
            self._print(f"{number:5}  {command}")
        return self._done(0)

    def _builtin_help(self, _args: list[str]) -> ExecutionResult:
        self._print(HELP_TEXT.format(prefix=self.trigger_prefix))
        return self._done(0)

    def _builtin_clear(self, _args: list[str]) -> ExecutionResult:
        self._console.file.write(CLEAR_SCREEN)
        self._console.file.flush()
        return self._done(0)

    def _builtin_pwd(self, _args: list[str]) -> ExecutionResult:
        try:
            cwd = os.getcwd()
        except OSError as exc:
            self._last_exit_code = FAILURE_EXIT_CODE
            raise BuiltinError(f"pwd: error retrieving current directory: {exc.strerror or exc}") from exc
        self._print(cwd)
        return self._done(0)

    def _builtin_alias(self, args: list[str]) -> ExecutionResult:
        if not args:
            for name in sorted(self._aliases):
                self._print(_format_alias(name, self._aliases[name]))
            return self._done(0)

        code = 0
        for arg in args:
            name, sep, value = arg.partition("=")
            if sep:
                if not name:
                    self._last_exit_code = FAILURE_EXIT_CODE
                    raise BuiltinError(f"alias: `{arg}': invalid alias name")
                try:
                    self._aliases[name] = split_literal(value)
                except ShellSyntaxError as exc:
                    self._last_exit_code = FAILURE_EXIT_CODE
                    raise BuiltinError(f"alias: {name}: {exc}") from exc
            elif name in self._aliases:
                self._print(_format_alias(name, self._aliases[name]))
            else:
                self._error(f"alias: {name}: not found")
                code = FAILURE_EXIT_CODE
        return self._done(code)

    def _builtin_source(self, args: list[str]) -> ExecutionResult:
        if not args:
            self._last_exit_code = FAILURE_EXIT_CODE
            raise BuiltinError("source: usage: source <filename>")
        path = _expand_home(args[0])
        try:
            content = path.read_text(encoding="utf-8")
        except OSError as exc:
            self._last_exit_code = FAILURE_EXIT_CODE
            raise BuiltinError(f"source: {path}: {exc.strerror or exc}") from exc
        except UnicodeDecodeError as exc:
            self._last_exit_code = FAILURE_EXIT_CODE
            raise BuiltinError(f"source: {path}: not a text file") from exc

        if self._source_depth >= MAX_SOURCE_DEPTH:
            self._last_exit_code = FAILURE_EXIT_CODE
            raise BuiltinError(f"source: {path}: maximum nesting depth exceeded")

        self._source_depth += 1
        try:
            code = self._run_script(content)
        finally:
            self._source_depth -= 1
        return self._done(code)

    def _run_script(self, content: str) -> int:
        code = 0
        for raw_line in content.splitlines():
            line = raw_line.strip()
            if not line or line.startswith("#"):
                continue
            result = parse(self.trigger_prefix, line)
            if isinstance(result, Commands):
                try:
                    code = self.execute_pipeline(result.commands).exit_code
                except ExecutionError as exc:
                    self._error(f"source: error executing '{line}': {exc}")
                    code = FAILURE_EXIT_CODE
            elif isinstance(result, AIQuery):
                self._error(f"source: skipping AI query (not supported in scripts): {line}")
            elif isinstance(result, ParseError):
                self._error(f"source: parse error in '{line}': {result.message}")
                code = FAILURE_EXIT_CODE
        return code

    def _done(self, code: int) -> ExecutionResult:
        self._last_exit_code = code
        return ExecutionResult.with_code(code)

    def _print(self, message: str) -> None:
        self._console.print(message, markup=False, highlight=False, soft_wrap=True)

    def _error(self, message: str) -> None:
        self._error_console.print(message, markup=False, highlight=False, soft_wrap=True)


def _redirect_breaks_chain(command: Command, index: int, last_index: int) -> bool:
    if last_index == 0:
        return False
    if command.stdin_redirect is not None and index > 0:
        return True
    return command.stdout_redirect is not None and index < last_index


def _reap(children: list[subprocess.Popen[bytes]]) -> None:
    if children:
        logger.warning("tearing down {} pipeline process(es)", len(children))
    for child in children:
        with contextlib.suppress(OSError):
            child.kill()
        with contextlib.suppress(OSError):
            child.wait()
        if child.stdout is not None:
            with contextlib.suppress(OSError):
                child.stdout.close()


def _exit_code(returncode: int) -> int:
    if returncode < 0:
        # Killed by a signal; report it the way POSIX shells do.
        return 128 - returncode
    return returncode


def _current_dir() -> str | None:
    """Working directory, or None when it has been removed."""

    try:
        return os.getcwd()
    except OSError:
        return None


def _expand_home(path: str) -> Path:
    if path == "~":
        return Path.home()
    if path.startswith("~/"):
        return Path.home() / path[2:]
    return Path(path)


def _format_alias(name: str, tokens: list[str]) -> str:
    return f"alias {name}='{' '.join(tokens)}'"


__all__ = [
    "FAILURE_EXIT_CODE",
    "INTERRUPTED_EXIT_CODE",
    "BuiltinCommand",
    "ExecutionResult",
    "Executor",
]
