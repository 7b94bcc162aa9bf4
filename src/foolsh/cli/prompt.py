"""Prompt, completion, highlighting and input continuation for the interactive shell."""

from __future__ import annotations

import getpass
import os
from collections.abc import Callable, Iterable
from pathlib import Path

from loguru import logger
from prompt_toolkit.application.current import get_app
from prompt_toolkit.auto_suggest import AutoSuggestFromHistory, Suggestion
from prompt_toolkit.buffer import Buffer
from prompt_toolkit.completion import CompleteEvent, Completer, Completion, PathCompleter
from prompt_toolkit.document import Document
from prompt_toolkit.filters import Condition
from prompt_toolkit.formatted_text import FormattedText, StyleAndTextTuples
from prompt_toolkit.lexers import Lexer
from prompt_toolkit.styles import Style

from foolsh.shell.executor import Executor

PROMPT_SYMBOL = "❯"
DEFAULT_THEME = "dracula"
THEMES: dict[str, dict[str, str]] = {
    "dracula": {
        "user": "ansigreen bold",
        "cwd": "ansiblue bold",
        "symbol": "ansimagenta bold",
        "shell.command": "ansigreen bold",
        "shell.unknown": "ansiwhite",
        "shell.flag": "ansicyan",
        "shell.variable": "ansiyellow",
        "shell.string": "ansigreen",
        "shell.operator": "ansimagenta",
        "ai.prefix": "ansiyellow bold",
        "ai.query": "ansicyan",
        "auto-suggestion": "ansibrightblack",
    },
    "light": {
        "user": "ansiblue bold",
        "cwd": "ansimagenta bold",
        "symbol": "ansiblack bold",
        "shell.command": "ansiblue bold",
        "shell.unknown": "ansiblack",
        "shell.flag": "ansicyan",
        "shell.variable": "ansired",
        "shell.string": "ansigreen",
        "shell.operator": "ansimagenta",
        "ai.prefix": "ansired bold",
        "ai.query": "ansiblue",
        "auto-suggestion": "ansigray",
    },
    "plain": {},
}

# Programs highlighted as known in command position, on top of the built-ins.
KNOWN_COMMANDS = frozenset(
    """
    ls cd pwd cat grep find echo rm cp mv mkdir rmdir touch chmod chown head tail
    less more vim nano git docker cargo npm python pip node make gcc g++ rustc ssh
    scp curl wget tar zip unzip ps top htop kill man which whereis sudo apt yum dnf
    pacman
    """.split()
)
_OPERATORS = frozenset("|<>")
_QUOTES = frozenset("'\"")


def style_for_theme(name: str) -> Style:
    """Prompt and highlighting style for a configured theme name."""

    rules = THEMES.get(name.strip().lower())
    if rules is None:
        logger.warning("unknown theme {!r}, falling back to {}", name, DEFAULT_THEME)
        rules = THEMES[DEFAULT_THEME]
    return Style.from_dict(rules)


def current_location() -> str:
    """Working directory with the home directory shown as ``~``."""

    try:
        cwd = Path.cwd()
    except OSError:
        return "?"
    home = Path.home()
    if cwd == home or home in cwd.parents:
        relative = cwd.relative_to(home).as_posix()
        return "~" if relative == "." else f"~/{relative}"
    return str(cwd)


def current_user() -> str:
    user = os.getenv("USER")
    if user:
        return user
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "user"


def build_prompt() -> FormattedText:
    return FormattedText(
        [
            ("class:user", current_user()),
            ("", " "),
            ("class:cwd", current_location()),
            ("", " "),
            ("class:symbol", PROMPT_SYMBOL),
            ("", " "),
        ]
    )


def plain_prompt() -> str:
    return f"{current_user()} {current_location()} {PROMPT_SYMBOL} "


def has_unclosed_quote(text: str) -> bool:
    """Whether ``text`` ends inside a single or double quoted string."""

    in_single = False
    in_double = False
    escaped = False
    for char in text:
        if escaped:
            escaped = False
            continue
        if char == "\\" and not in_single:
            escaped = True
        elif char == "'" and not in_double:
            in_single = not in_single
        elif char == '"' and not in_single:
            in_double = not in_double
    return in_single or in_double


@Condition
def quote_is_open() -> bool:
    return has_unclosed_quote(get_app().current_buffer.text)


class ShellCompleter(Completer):
    """Complete file names for the word under the cursor, except in AI queries."""

    def __init__(self, trigger_prefix: str) -> None:
        self._trigger_prefix = trigger_prefix
        self._paths = PathCompleter(expanduser=True)

    def get_completions(self, document: Document, complete_event: CompleteEvent) -> Iterable[Completion]:
        if document.text_before_cursor.lstrip().startswith(self._trigger_prefix):
            return
        word = document.get_word_before_cursor(WORD=True)
        yield from self._paths.get_completions(Document(word, len(word)), complete_event)


class ShellAutoSuggest(AutoSuggestFromHistory):
    """Suggest the rest of a matching past command, except in AI queries."""

    def __init__(self, trigger_prefix: str) -> None:
        super().__init__()
        self._trigger_prefix = trigger_prefix

    def get_suggestion(self, buffer: Buffer, document: Document) -> Suggestion | None:
        if document.text.lstrip().startswith(self._trigger_prefix):
            return None
        return super().get_suggestion(buffer, document)


class ShellLexer(Lexer):
    """Colour command lines word by word; AI queries get their own colours."""

    def __init__(self, trigger_prefix: str) -> None:
        self._trigger_prefix = trigger_prefix

    def lex_document(self, document: Document) -> Callable[[int], StyleAndTextTuples]:
        lines = document.lines

        def get_line(lineno: int) -> StyleAndTextTuples:
            try:
                return self.highlight(lines[lineno])
            except IndexError:
                return []

        return get_line

    def highlight(self, line: str) -> StyleAndTextTuples:
        stripped = line.lstrip()
        if self._trigger_prefix and stripped.startswith(self._trigger_prefix):
            fragments: StyleAndTextTuples = []
            indent = line[: len(line) - len(stripped)]
            if indent:
                fragments.append(("", indent))
            fragments.append(("class:ai.prefix", self._trigger_prefix))
            query = stripped[len(self._trigger_prefix) :]
            if query:
                fragments.append(("class:ai.query", query))
            return fragments
        return _shell_fragments(line)


def _shell_fragments(line: str) -> StyleAndTextTuples:
    fragments: StyleAndTextTuples = []
    word: list[str] = []
    quote: str | None = None
    command_position = True

    def flush() -> None:
        nonlocal command_position
        if not word:
            return
        text = "".join(word)
        word.clear()
        fragments.append((_word_style(text, command_position), text))
        command_position = False

    for char in line:
        if quote is not None:
            word.append(char)
            if char == quote:
                fragments.append(("class:shell.string", "".join(word)))
                word.clear()
                quote = None
        elif char in _QUOTES:
            flush()
            quote = char
            word.append(char)
            command_position = False
        elif char in _OPERATORS or char.isspace():
            flush()
            if char in _OPERATORS:
                fragments.append(("class:shell.operator", char))
                command_position = char == "|"
            else:
                fragments.append(("", char))
        else:
            word.append(char)

    if word:
        text = "".join(word)
        style = "class:shell.string" if quote is not None else _word_style(text, command_position)
        fragments.append((style, text))
    return fragments


def _word_style(word: str, command_position: bool) -> str:
    if word.startswith("-"):
        return "class:shell.flag"
    if word.startswith("$"):
        return "class:shell.variable"
    if not command_position:
        return ""
    if word in KNOWN_COMMANDS or Executor.is_builtin(word):
        return "class:shell.command"
    return "class:shell.unknown"
