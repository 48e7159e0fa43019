"""Structural locator contract plus a grammar-free reference implementation."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Protocol

from ..core.geo import Point, Range
from .document_model import Document

__all__ = ["HeuristicLocator", "StructuralLocator", "StructuralRange"]


@dataclass(slots=True, frozen=True)
class StructuralRange:
    """A located source construct such as a function or call expression."""

    kind: str
    name: str
    range: Range


class StructuralLocator(Protocol):
    """Protocol implemented by anything that can map a point to source structure."""

    def containing_structure(self, document: Document, point: Point) -> StructuralRange | None:
        ...

    def call_expression_at(self, document: Document, point: Point) -> StructuralRange | None:
        ...


_PY_DEF = re.compile(r"^(?P<indent>\s*)(?:async\s+)?def\s+(?P<name>\w+)")
_LUA_FUNCTION = re.compile(r"\bfunction\b\s*(?P<name>[\w.:]*)")
_LUA_OPENERS = re.compile(r"\b(function|if|do|repeat)\b")
_LUA_CLOSERS = re.compile(r"\b(end|until)\b")
_LUA_STRINGS = re.compile(r"\"(?:\\.|[^\"\\])*\"|'(?:\\.|[^'\\])*'")
_C_STRINGS = re.compile(r"\"(?:\\.|[^\"\\])*\"|'(?:\\.|[^'\\])*'|`[^`]*`")
_BRACE_HEADER = re.compile(r"(?P<name>[A-Za-z_][\w]*)\s*(?:<[^>]*>)?\s*\(")
_CALL = re.compile(r"(?P<name>[A-Za-z_][\w.:]*?)\s*\(")

_CONTROL_KEYWORDS = frozenset(
    {
        "if",
        "elif",
        "else",
        "for",
        "while",
        "switch",
        "catch",
        "return",
        "match",
        "with",
        "print",
        "sizeof",
        "and",
        "or",
        "not",
        "in",
        "function",
        "def",
        "fn",
        "func",
        "local",
        "elseif",
    }
)


class HeuristicLocator:
    """Indentation, brace, and keyword matching without real parsing.

    Python uses indentation, Lua uses block keywords, and everything else is
    treated as a brace language. Good enough for tests and the CLI; editor
    hosts are expected to plug in a grammar-backed locator.
    """

    def containing_structure(self, document: Document, point: Point) -> StructuralRange | None:
        lines = document.get_lines()
        if not lines or point.row >= len(lines):
            return None
        file_type = document.file_type
        if file_type == "python":
            found = _python_function(lines, point.row)
        elif file_type == "lua":
            found = _lua_function(lines, point.row)
        else:
            found = _brace_function(lines, point.row)
        if found is None:
            return None
        first, last, name = found
        return StructuralRange("function", name, Range(Point(first, 0), Point(last, len(lines[last]))))

    def call_expression_at(self, document: Document, point: Point) -> StructuralRange | None:
        lines = document.get_lines()
        if point.row >= len(lines):
            return None
        line = lines[point.row]
        best: tuple[int, Range, str] | None = None
        for match in _CALL.finditer(line):
            name = match.group("name")
            if name.split(".")[-1].split(":")[-1] in _CONTROL_KEYWORDS:
                continue
            close = _match_paren(lines, point.row, match.end() - 1)
            if close is None:
                continue
            start = Point(point.row, match.start())
            end = Point(close[0], close[1] + 1)
            span = Range(start, end)
            if not (start <= point <= end):
                continue
            width = (end.row - start.row) * 10_000 + (end.col - start.col)
            if best is None or width < best[0]:
                best = (width, span, name)
        if best is None:
            return None
        return StructuralRange("call", best[2], best[1])


def _indent_of(line: str) -> int:
    return len(line) - len(line.lstrip())


def _python_function(lines: list[str], row: int) -> tuple[int, int, str] | None:
    for candidate in range(row, -1, -1):
        match = _PY_DEF.match(lines[candidate])
        if match is None:
            continue
        indent = len(match.group("indent"))
        last = _python_signature_end(lines, candidate, match.end())
        for index in range(last + 1, len(lines)):
            text = lines[index]
            if not text.strip():
                continue
            if _indent_of(text) <= indent:
                break
            last = index
        if last >= row:
            return candidate, last, match.group("name")
    return None


def _python_signature_end(lines: list[str], row: int, col: int) -> int:
    """Return the row closing the parameter list of a (possibly wrapped) ``def`` header."""

    opener = lines[row].find("(", col)
    if opener < 0:
        return row
    close = _match_paren(lines, row, opener)
    if close is None:
        return row
    return close[0]


def _strip_lua(line: str) -> str:
    line = _LUA_STRINGS.sub('""', line)
    comment = line.find("--")
    return line if comment < 0 else line[:comment]


def _lua_function(lines: list[str], row: int) -> tuple[int, int, str] | None:
    for candidate in range(row, -1, -1):
        code = _strip_lua(lines[candidate])
        match = _LUA_FUNCTION.search(code)
        if match is None:
            continue
        depth = 0
        last = None
        for index in range(candidate, len(lines)):
            text = _strip_lua(lines[index])
            if index == candidate:
                text = text[match.start() :]
            tokens = sorted(
                [(m.start(), 1) for m in _LUA_OPENERS.finditer(text)]
                + [(m.start(), -1) for m in _LUA_CLOSERS.finditer(text)]
            )
            for _, step in tokens:
                depth += step
                if depth == 0:
                    last = index
                    break
            if last is not None:
                break
        if last is not None and last >= row:
            return candidate, last, match.group("name")
    return None


def _brace_function(lines: list[str], row: int) -> tuple[int, int, str] | None:
    for candidate in range(row, -1, -1):
        code = _C_STRINGS.sub('""', lines[candidate])
        brace = code.find("{")
        if brace < 0:
            continue
        header_row = candidate
        header = code[:brace]
        if not header.strip() and candidate > 0:
            header_row = candidate - 1
            header = lines[header_row]
        match = None
        for found in _BRACE_HEADER.finditer(header):
            if found.group("name") not in _CONTROL_KEYWORDS:
                match = found
        if match is None:
            continue
        close = _match_brace(lines, candidate, brace)
        if close is not None and close >= row:
            return header_row, close, match.group("name")
    return None


def _match_brace(lines: list[str], row: int, col: int) -> int | None:
    depth = 0
    for index in range(row, len(lines)):
        text = _C_STRINGS.sub('""', lines[index])
        if index == row:
            text = text[col:]
        for char in text:
            if char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return index
    return None


def _match_paren(lines: list[str], row: int, col: int) -> tuple[int, int] | None:
    depth = 0
    for index in range(row, len(lines)):
        text = lines[index]
        start = col if index == row else 0
        for offset in range(start, len(text)):
            char = text[offset]
            if char == "(":
                depth += 1
            elif char == ")":
                depth -= 1
                if depth == 0:
                    return index, offset
    return None
