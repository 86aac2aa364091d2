"""
Compile step for Strudel pattern code.

The snippet is parsed as JavaScript with esprima. Double-quoted strings
are mini-notation and have their grouping brackets checked as well.

Two error location shapes are produced:
  - ``loc = {"line": ..., "column": ...}`` for JavaScript syntax errors
    when ``simple_locs`` is set
  - ``location = {"start": {...}, "end": {...}}`` otherwise, and always
    for mini-notation errors

Lines and columns are 1-based and refer to the caller's snippet.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import esprima
from esprima.error_handler import Error as EsprimaError

from .mini import MiniNotationError, check_brackets

logger = logging.getLogger(__name__)

# Prefix ends in a newline: snippet lines shift by one, columns do not move.
_ASYNC_PREFIX = "(async () => {\n"
_ASYNC_SUFFIX = "\n})()"
_RETURN = "return "


class TranspileError(Exception):
    """A syntax error in JavaScript or mini-notation."""

    def __init__(
        self,
        message: str,
        loc: Optional[dict] = None,
        location: Optional[dict] = None,
    ):
        super().__init__(message)
        self.loc = loc
        self.location = location


@dataclass
class TranspileResult:
    output: str
    mini_locations: List[Tuple[int, int]] = field(default_factory=list)


def _position(line: int, column: int, simple: bool) -> dict:
    point = {"line": line, "column": column}
    if simple:
        return {"loc": point}
    return {"location": {"start": point, "end": dict(point)}}


def _body_statements(program, wrap_async: bool) -> list:
    """Statements of the snippet, looking through the async wrapper."""
    if not wrap_async:
        return list(program.body)

    if len(program.body) == 1:
        call = getattr(program.body[0], "expression", None)
        callee = getattr(call, "callee", None)
        if getattr(callee, "type", None) == "ArrowFunctionExpression":
            return list(callee.body.body)

    raise TranspileError("Unexpected token }")


def transpile(
    code: str,
    wrap_async: bool = False,
    add_return: bool = False,
    simple_locs: bool = False,
) -> TranspileResult:
    """Parse *code* and return the emitted source.

    Raises TranspileError on any syntax error.
    """
    source = f"{_ASYNC_PREFIX}{code}{_ASYNC_SUFFIX}" if wrap_async else code
    line_offset = 1 if wrap_async else 0
    code_lines = code.split("\n")

    mini_literals = []

    def collect(node, metadata):
        raw = getattr(node, "raw", None)
        if node.type == "Literal" and isinstance(raw, str) and raw.startswith('"'):
            mini_literals.append(node)

    try:
        program = esprima.parseScript(source, {"loc": True, "range": True}, collect)
    except EsprimaError as exc:
        message = getattr(exc, "description", None) or str(exc)
        line_number = getattr(exc, "lineNumber", None)
        column = getattr(exc, "column", None)
        if line_number is None or column is None:
            raise TranspileError(message) from exc

        line = line_number - line_offset
        if line > len(code_lines):
            # Error reported on the wrapper suffix: pin it to the end of the snippet
            line = len(code_lines)
            column = len(code_lines[-1]) + 1
        line = max(line, 1)
        raise TranspileError(message, **_position(line, column, simple_locs)) from exc

    for node in mini_literals:
        try:
            check_brackets(node.raw[1:-1])
        except MiniNotationError as exc:
            line = node.loc.start.line - line_offset
            # esprima columns are 0-based; skip the opening quote as well
            column = node.loc.start.column + 2 + exc.offset
            raise TranspileError(
                f"[mini] parse error at line {line}: {exc}",
                **_position(line, column, simple=False),
            ) from exc

    statements = _body_statements(program, wrap_async)

    output = source
    insert_at = None
    if add_return and statements and statements[-1].type == "ExpressionStatement":
        insert_at = statements[-1].range[0]
        output = f"{source[:insert_at]}{_RETURN}{source[insert_at:]}"

    mini_locations = []
    for node in mini_literals:
        start, end = node.range
        if insert_at is not None and start >= insert_at:
            start += len(_RETURN)
            end += len(_RETURN)
        mini_locations.append((start, end))

    logger.debug("Transpiled %d chars, %d mini-notation strings", len(code), len(mini_locations))
    return TranspileResult(output=output, mini_locations=mini_locations)
