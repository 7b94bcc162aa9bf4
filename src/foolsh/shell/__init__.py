"""Command parsing and pipeline execution."""

from .executor import BuiltinCommand, ExecutionResult, Executor
from .parser import (
    AIQuery,
    Command,
    Commands,
    Empty,
    ParseError,
    Parser,
    ParseResult,
    ParserState,
    parse,
    split_literal,
)

__all__ = [
    "AIQuery",
    "BuiltinCommand",
    "Command",
    "Commands",
    "Empty",
    "ExecutionResult",
    "Executor",
    "ParseError",
    "ParseResult",
    "Parser",
    "ParserState",
    "parse",
    "split_literal",
]
