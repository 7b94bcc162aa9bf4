from __future__ import annotations

import pytest

from foolsh.errors import ShellSyntaxError
from foolsh.shell.parser import (
    AIQuery,
    Command,
    Commands,
    Empty,
    ParseError,
    Parser,
    parse,
    split_literal,
)


def _commands(line: str, prefix: str = "!") -> list[Command]:
    result = parse(prefix, line)
    assert isinstance(result, Commands), result
    return result.commands


@pytest.mark.parametrize("line", ["", "   ", "\t", " \t  \t"])
def test_blank_line_is_empty(line: str) -> None:
    assert parse("!", line) == Empty()


@pytest.mark.parametrize(
    ("line", "query"),
    [
        ("! how do I list files", "how do I list files"),
        ("!   padded  ", "padded"),
        ("! find | grep > out 'unclosed", "find | grep > out 'unclosed"),
        ("  !trailing\\", "trailing\\"),
        ("!", ""),
    ],
)
def test_trigger_prefix_is_checked_before_tokenizing(line: str, query: str) -> None:
    assert parse("!", line) == AIQuery(query)


def test_custom_trigger_prefix() -> None:
    assert parse("??", "?? what now") == AIQuery("what now")
    commands = _commands("! not a query", prefix="??")
    assert commands[0].program == "!"


def test_quoted_arguments_keep_spaces() -> None:
    commands = _commands("cmd 'a b' \"c d\"")
    assert commands == [Command(program="cmd", args=["a b", "c d"])]


def test_pipeline_keeps_order() -> None:
    commands = _commands("a | b")
    assert [command.program for command in commands] == ["a", "b"]
    assert all(command.args == [] for command in commands)


def test_pipe_without_spaces() -> None:
    commands = _commands("ls -la|grep py|wc -l")
    assert [command.argv() for command in commands] == [["ls", "-la"], ["grep", "py"], ["wc", "-l"]]


def test_dangling_pipe_is_error() -> None:
    result = parse("!", "a |")
    assert isinstance(result, ParseError)
    assert "pipe" in result.message


@pytest.mark.parametrize("line", ["a >", "a >>", "a >   "])
def test_dangling_output_redirect_is_error(line: str) -> None:
    result = parse("!", line)
    assert isinstance(result, ParseError)
    assert "redirection" in result.message
    assert "output" in result.message


def test_dangling_input_redirect_is_error() -> None:
    result = parse("!", "sort <")
    assert isinstance(result, ParseError)
    assert "input redirection" in result.message


def test_append_redirect() -> None:
    (command,) = _commands("echo x >> f.txt")
    assert command.program == "echo"
    assert command.args == ["x"]
    assert command.stdout_redirect == "f.txt"
    assert command.stdout_append is True


def test_truncate_redirect() -> None:
    (command,) = _commands("echo x > f.txt")
    assert command.stdout_redirect == "f.txt"
    assert command.stdout_append is False


def test_redirect_without_spaces_and_input() -> None:
    (command,) = _commands("sort <in.txt >out.txt -r")
    assert command.stdin_redirect == "in.txt"
    assert command.stdout_redirect == "out.txt"
    assert command.args == ["-r"]


def test_redirect_target_accepts_quotes() -> None:
    (command,) = _commands("echo hi > 'my file.txt'")
    assert command.stdout_redirect == "my file.txt"


def test_redirects_attach_to_their_segment() -> None:
    first, second = _commands("cat < in.txt | wc -l > count.txt")
    assert first.stdin_redirect == "in.txt"
    assert first.stdout_redirect is None
    assert second.stdin_redirect is None
    assert second.stdout_redirect == "count.txt"


@pytest.mark.parametrize("line", ["echo x\\", "\\"])
def test_trailing_backslash_is_error(line: str) -> None:
    result = parse("!", line)
    assert isinstance(result, ParseError)
    assert "backslash" in result.message


@pytest.mark.parametrize("line", ["echo 'open", 'echo "open', "echo 'a' \"b"])
def test_unclosed_quote_is_error(line: str) -> None:
    result = parse("!", line)
    assert isinstance(result, ParseError)
    assert "quote" in result.message.lower()


def test_escape_outside_quotes() -> None:
    (command,) = _commands("echo a\\ b \\| \\>")
    assert command.args == ["a b", "|", ">"]


def test_double_quote_escapes() -> None:
    (command,) = _commands('echo "say \\"hi\\"" "\\$HOME" "back\\\\slash" "keep\\n"')
    assert command.args == ['say "hi"', "$HOME", "back\\slash", "keep\\n"]


def test_single_quotes_are_literal() -> None:
    (command,) = _commands("echo 'a | b > c \\ \"d\"'")
    assert command.args == ['a | b > c \\ "d"']


def test_adjacent_quotes_join_one_word() -> None:
    (command,) = _commands("echo pre'mid'\"post\"")
    assert command.args == ["premidpost"]


def test_tabs_separate_words() -> None:
    (command,) = _commands("echo\ta\t\tb")
    assert command.argv() == ["echo", "a", "b"]


def test_quoted_program_name() -> None:
    (command,) = _commands("'my prog' arg")
    assert command.argv() == ["my prog", "arg"]


def test_empty_segments_are_dropped() -> None:
    result = parse("!", "> out.txt")
    assert result == Empty()


def test_parser_defaults_empty_prefix() -> None:
    parser = Parser("")
    assert parser.trigger_prefix == "!"
    assert parser.parse("! hi") == AIQuery("hi")


def test_split_literal_ignores_operators() -> None:
    assert split_literal("ls -la | grep 'a b' > x") == ["ls", "-la", "|", "grep", "a b", ">", "x"]
    assert split_literal("   ") == []


def test_split_literal_rejects_unclosed_quote() -> None:
    with pytest.raises(ShellSyntaxError, match="Unclosed quote"):
        split_literal("'ls")
