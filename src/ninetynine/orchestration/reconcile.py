"""Write a finished provider response back into a live document.

A response may carry a preamble of import-like lines, separated from the
code body by :data:`IMPORTS_MARKER`. The body replaces (or is inserted at)
the request's target anchor; the preamble is merged into the top of the file
without duplicating anything already present.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Iterable, Sequence

from ..core.geo import Range
from ..editor.anchors import Anchor
from ..editor.document_model import Document
from ..errors import StaleAnchor

if TYPE_CHECKING:
    from .request import Request

__all__ = [
    "IMPORTS_MARKER",
    "Applied",
    "ParsedResponse",
    "apply",
    "apply_to_anchor",
    "find_preamble_insert_row",
    "is_import_line",
    "merge_preamble",
    "parse_response",
]

LOGGER = logging.getLogger(__name__)

IMPORTS_MARKER = "---99-IMPORTS-END---"

_IMPORT_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(pattern)
    for pattern in (
        r"^import ",
        r"^from .+ import",
        r"^use ",
        r"^local .+ = require",
        r"^require\(",
        r"^#include",
        r"^const .+ = require",
        r"^const \{.+\} from",
        r"^import \{",
        r"^import \(",
    )
)
_HEADER_PATTERNS: tuple[re.Pattern[str], ...] = (re.compile(r"^package "), re.compile(r"^#!"))


@dataclass(slots=True, frozen=True)
class ParsedResponse:
    preamble: tuple[str, ...]
    body: str

    @property
    def body_lines(self) -> list[str]:
        return self.body.split("\n")


@dataclass(slots=True, frozen=True)
class Applied:
    """What :func:`apply` wrote into the document."""

    body_range: Range | None
    inserted_preamble: tuple[str, ...] = ()
    skipped_preamble: tuple[str, ...] = ()


def parse_response(raw: str) -> ParsedResponse:
    """Split a raw response into its preamble lines and code body."""

    text = raw.replace("\r\n", "\n")
    position = text.find(IMPORTS_MARKER)
    if position < 0:
        preamble: tuple[str, ...] = ()
        body = text
    else:
        head = text[:position]
        body = text[position + len(IMPORTS_MARKER) :]
        if body.startswith("\n"):
            body = body[1:]
        body_lines = body.split("\n")
        while len(body_lines) > 1 and not body_lines[0].strip():
            body_lines.pop(0)
        body = "\n".join(body_lines)
        preamble = tuple(line.strip() for line in head.split("\n") if line.strip())
    if body.endswith("\n"):
        body = body[:-1]
    return ParsedResponse(preamble=preamble, body=body)


def is_import_line(line: str) -> bool:
    return any(pattern.match(line) for pattern in _IMPORT_PATTERNS)


def find_preamble_insert_row(lines: Sequence[str], protect: Range | None = None) -> int:
    """Return the row a preamble block should be inserted at.

    After the last import-like line, else after a leading ``package`` or
    shebang line, else row 0. The row never falls strictly inside
    ``protect``; such a row is moved up to the protected range's first row.
    """

    row = 0
    last_import = -1
    for index, line in enumerate(lines):
        if is_import_line(line):
            last_import = index
    if last_import >= 0:
        row = last_import + 1
    else:
        for index, line in enumerate(lines):
            if any(pattern.match(line) for pattern in _HEADER_PATTERNS):
                row = index + 1
                break
    if protect is not None:
        first, last = protect.rows
        if first < row <= last:
            row = first
    return row


def merge_preamble(
    document: Document,
    preamble: Iterable[str],
    *,
    protect: Range | None = None,
) -> tuple[tuple[str, ...], tuple[str, ...]]:
    """Insert preamble lines not already in ``document``; returns (inserted, skipped)."""

    existing = {line.strip() for line in document.get_lines()}
    to_add: list[str] = []
    skipped: list[str] = []
    for line in preamble:
        if line in existing:
            LOGGER.debug("Preamble line already present, skipping: %s", line)
            skipped.append(line)
            continue
        existing.add(line)
        to_add.append(line)
    if to_add:
        row = find_preamble_insert_row(document.get_lines(), protect)
        document.set_lines(row, row, to_add)
        LOGGER.debug("Inserted %d preamble line(s) at row %d", len(to_add), row)
    return tuple(to_add), tuple(skipped)


def apply_to_anchor(
    anchor: Anchor | None,
    raw_output: str,
    *,
    verify: Callable[[Anchor], bool] | None = None,
    pad_insert: bool = False,
) -> Applied:
    """Write ``raw_output`` through ``anchor`` and merge its preamble.

    Raises :class:`StaleAnchor` without touching the document when the anchor
    is gone or ``verify`` rejects it.
    """

    if anchor is None or not anchor.is_valid():
        raise StaleAnchor("target anchor is no longer valid")
    if verify is not None and not verify(anchor):
        raise StaleAnchor("target structure no longer matches the anchor")
    parsed = parse_response(raw_output)
    lines = parsed.body_lines
    if pad_insert:
        lines = lines + [""]
    written = anchor.replace_text(lines)
    inserted, skipped = merge_preamble(anchor.document, parsed.preamble, protect=written)
    return Applied(body_range=anchor.range(), inserted_preamble=inserted, skipped_preamble=skipped)


def apply(
    request: Request,
    raw_output: str,
    *,
    verify: Callable[[Anchor], bool] | None = None,
    pad_insert: bool = False,
) -> Applied:
    """Apply a successful request's output at its target anchor."""

    applied = apply_to_anchor(
        request.context.target_anchor,
        raw_output,
        verify=verify,
        pad_insert=pad_insert,
    )
    LOGGER.debug(
        "Request %s applied: body=%s, +%d preamble line(s)",
        request.id,
        applied.body_range.human() if applied.body_range else None,
        len(applied.inserted_preamble),
    )
    return applied
