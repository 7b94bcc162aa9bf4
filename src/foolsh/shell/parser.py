"""State machine parser for command lines.

One input line becomes exactly one of: a pipeline of commands, an AI query
(line starts with the trigger prefix), an empty result, or a syntax error.
The machine walks the line left to right with a single character of
lookahead, used for ``>>`` and for escapes inside double quotes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from foolsh.errors import ShellSyntaxError

DEFAULT_TRIGGER_PREFIX = "!"

ERR_TRAILING_BACKSLASH = "Syntax error: trailing backslash"
ERR_UNCLOSED_QUOTE = "Unclosed quote"
ERR_DANGLING_PIPE = "Syntax error: pipe without following command"
ERR_DANGLING_REDIRECT_OUT = "Syntax error: output redirection without file"
ERR_DANGLING_REDIRECT_IN = "Syntax error: input redirection without file"

_BLANKS = frozenset(" \t")
_DQUOTE_ESCAPABLE = frozenset('"\\$')


class ParserState(Enum):
    """States of the command line machine."""

    IDLE = "idle"
    COMMAND_START = "command"
    ARGUMENT = "argument"
    SINGLE_QUOTE = "single_quote"
    DOUBLE_QUOTE = "double_quote"
    PIPE = "pipe"
    REDIRECT_OUT = "redirect_out"
    REDIRECT_APPEND = "redirect_append"
    REDIRECT_IN = "redirect_in"
    ESCAPE = "escape"


_WORD_STATES = frozenset({ParserState.IDLE, ParserState.COMMAND_START, ParserState.ARGUMENT})
_STDOUT_STATES = frozenset({ParserState.REDIRECT_OUT, ParserState.REDIRECT_APPEND})
_REDIRECT_STATES = _STDOUT_STATES | {ParserState.REDIRECT_IN}


@dataclass
class Command:
    """One pipeline segment."""

    program: str = ""
    args: list[str] = field(default_factory=list)
    stdin_redirect: str | None = None
    stdout_redirect: str | None = None
    stdout_append: bool = False

    def is_empty(self) -> bool:
        return not self.program

    def argv(self) -> list[str]:
        return [self.program, *self.args]


@dataclass(frozen=True)
class Commands:
    """A pipeline of one or more non-empty commands."""

    commands: list[Command]


@dataclass(frozen=True)
class AIQuery:
    """Natural-language query for the AI assistant."""

    query: str


@dataclass(frozen=True)
class Empty:
    """Nothing to do."""


@dataclass(frozen=True)
class ParseError:
    """Syntax error with a user-facing message."""

    message: str


ParseResult = Commands | AIQuery | Empty | ParseError


class _Machine:
    def __init__(self, text: str, *, operators: bool = True) -> None:
        self._text = text
        self._pos = 0
        self._operators = operators
        self.state = ParserState.IDLE
        self.prev_state = ParserState.IDLE
        self.token: list[str] = []
        self.command = Command()
        self.commands: list[Command] = []

    def run(self) -> ParseResult:
        while self._pos < len(self._text):
            char = self._text[self._pos]
            self._pos += 1
            self._step(char)
        return self._finish()

    def _peek(self) -> str | None:
        if self._pos < len(self._text):
            return self._text[self._pos]
        return None

    def _step(self, char: str) -> None:
        state = self.state
        if state in _WORD_STATES:
            self._word_char(char)
        elif state is ParserState.SINGLE_QUOTE:
            if char == "'":
                self.state = self.prev_state
            else:
                self.token.append(char)
        elif state is ParserState.DOUBLE_QUOTE:
            self._double_quote_char(char)
        elif state is ParserState.ESCAPE:
            self.token.append(char)
            self.state = self.prev_state
        elif state is ParserState.PIPE:
            if not char.isspace():
                # The first visible character after a pipe starts the next program.
                self.state = ParserState.COMMAND_START
                self._word_char(char)
        else:
            self._redirect_char(char)

    def _enter(self, state: ParserState) -> None:
        self.prev_state = self.state
        self.state = state

    def _enter_quoting(self, char: str) -> bool:
        if char == "'":
            self._enter(ParserState.SINGLE_QUOTE)
        elif char == '"':
            self._enter(ParserState.DOUBLE_QUOTE)
        elif char == "\\":
            self._enter(ParserState.ESCAPE)
        else:
            return False
        return True

    def _word_char(self, char: str) -> None:
        if char in _BLANKS:
            if self.token:
                self._flush_token(self.state)
                self.state = ParserState.ARGUMENT
            return
        if self._enter_quoting(char):
            return
        if self._operators and char == "|":
            self._flush_token(self.state)
            self._close_command()
            self.state = ParserState.PIPE
        elif self._operators and char == ">":
            self._flush_token(self.state)
            if self._peek() == ">":
                self._pos += 1
                self.state = ParserState.REDIRECT_APPEND
            else:
                self.state = ParserState.REDIRECT_OUT
        elif self._operators and char == "<":
            self._flush_token(self.state)
            self.state = ParserState.REDIRECT_IN
        else:
            self.token.append(char)
            if self.state is ParserState.IDLE:
                self.state = ParserState.COMMAND_START

    def _double_quote_char(self, char: str) -> None:
        if char == '"':
            self.state = self.prev_state
            return
        following = self._peek()
        if char == "\\" and following is not None and following in _DQUOTE_ESCAPABLE:
            self.token.append(following)
            self._pos += 1
            return
        self.token.append(char)

    def _redirect_char(self, char: str) -> None:
        if char in _BLANKS:
            if self.token:
                self._apply_redirect(self.state)
                self.state = ParserState.ARGUMENT
            return
        if self._enter_quoting(char):
            return
        self.token.append(char)

    def _flush_token(self, state: ParserState) -> None:
        if not self.token:
            return
        value = "".join(self.token)
        self.token.clear()
        if self.command.is_empty() or state is ParserState.COMMAND_START:
            self.command.program = value
        else:
            self.command.args.append(value)

    def _apply_redirect(self, state: ParserState) -> None:
        target = "".join(self.token)
        self.token.clear()
        if state is ParserState.REDIRECT_IN:
            self.command.stdin_redirect = target
        else:
            self.command.stdout_redirect = target
            self.command.stdout_append = state is ParserState.REDIRECT_APPEND

    def _close_command(self) -> None:
        if not self.command.is_empty():
            self.commands.append(self.command)
        self.command = Command()

    def _finish(self) -> ParseResult:
        state = self.state
        if self.token:
            if state in _REDIRECT_STATES:
                self._apply_redirect(state)
                state = ParserState.ARGUMENT
            elif state is ParserState.ESCAPE:
                self._flush_token(self.prev_state)
            else:
                self._flush_token(state)
        self._close_command()

        if state is ParserState.ESCAPE:
            return ParseError(ERR_TRAILING_BACKSLASH)
        if state in (ParserState.SINGLE_QUOTE, ParserState.DOUBLE_QUOTE):
            return ParseError(ERR_UNCLOSED_QUOTE)
        if state is ParserState.PIPE:
            return ParseError(ERR_DANGLING_PIPE)
        if state in _STDOUT_STATES:
            return ParseError(ERR_DANGLING_REDIRECT_OUT)
        if state is ParserState.REDIRECT_IN:
            return ParseError(ERR_DANGLING_REDIRECT_IN)

        if not self.commands:
            return Empty()
        return Commands(self.commands)


def parse(trigger_prefix: str, line: str) -> ParseResult:
    """Parse one input line."""

    stripped = line.strip()
    if not stripped:
        return Empty()
    if trigger_prefix and stripped.startswith(trigger_prefix):
        return AIQuery(stripped[len(trigger_prefix) :].strip())
    return _Machine(stripped).run()


def split_literal(value: str) -> list[str]:
    """Split text into words using the parser's quoting rules only.

    Pipe and redirection characters are ordinary characters here. Raises
    ``ShellSyntaxError`` on an unclosed quote or a trailing backslash.
    """

    result = _Machine(value.strip(), operators=False).run()
    if isinstance(result, ParseError):
        raise ShellSyntaxError(result.message)
    if isinstance(result, Commands):
        return [word for command in result.commands for word in command.argv()]
    return []


class Parser:
    """Parser bound to one session's AI trigger prefix."""

    def __init__(self, trigger_prefix: str = DEFAULT_TRIGGER_PREFIX) -> None:
        self.trigger_prefix = trigger_prefix or DEFAULT_TRIGGER_PREFIX

    def parse(self, line: str) -> ParseResult:
        return parse(self.trigger_prefix, line)
