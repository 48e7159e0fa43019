"""Position-stable anchors that survive concurrent edits to a document.

An anchor remembers the document version at which its position was last
known. Resolving it replays every logged :class:`~.document_model.LineEdit`
newer than that version, shifting, trimming, or invalidating the tracked span.
Nothing is pushed to anchors when the document changes, so edits stay cheap
and anchors that are never resolved cost nothing.
"""

from __future__ import annotations

import itertools
import logging
from enum import Enum
from typing import Sequence

from ..core.geo import Point, Range
from ..errors import StaleAnchor
from .document_model import Document, LineEdit

__all__ = [
    "Anchor",
    "AnchorPlacement",
    "create_anchor",
    "is_valid",
    "release",
    "replace_text",
    "resolve",
]

LOGGER = logging.getLogger(__name__)

_ANCHOR_IDS = itertools.count(1)


class AnchorPlacement(Enum):
    AT_START = "at_start"
    AT_END = "at_end"
    ABOVE_NODE = "above_node"
    BELOW_NODE = "below_node"


class _Kind(Enum):
    SPAN = "span"  # owns a charwise range
    POINT = "point"  # zero-width charwise insertion point
    LINE = "line"  # zero-width linewise insertion point next to a tracked node


class Anchor:
    """Handle bound to a region of a :class:`Document`."""

    __slots__ = (
        "id",
        "document",
        "placement",
        "_kind",
        "_first",
        "_last",
        "_start_col",
        "_end_col",
        "_synced_version",
        "_valid",
        "_released",
    )

    def __init__(self, document: Document, span: Range, placement: AnchorPlacement, kind: _Kind) -> None:
        self.id = f"anchor-{next(_ANCHOR_IDS)}"
        self.document = document
        self.placement = placement
        self._kind = kind
        self._first, self._last = span.rows
        self._start_col = span.start.col
        self._end_col = span.end.col
        self._synced_version = document.version_id
        self._valid = True
        self._released = False

    def __repr__(self) -> str:
        return f"Anchor(id={self.id!r}, placement={self.placement.value}, kind={self._kind.value}, rows={self._first}..{self._last})"

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    @property
    def synced_version(self) -> int:
        return self._synced_version

    @property
    def released(self) -> bool:
        return self._released

    @property
    def is_linewise(self) -> bool:
        return self._kind is _Kind.LINE

    def is_valid(self) -> bool:
        self._sync()
        return self._valid

    def position(self) -> Point | None:
        """Return the current anchor point, or ``None`` once invalid."""

        if not self.is_valid():
            return None
        if self._kind is _Kind.LINE:
            return Point(self._insert_row(), 0)
        span = self._current_range()
        if self._kind is _Kind.POINT or self.placement is not AnchorPlacement.AT_END:
            return span.start
        return span.end

    def range(self) -> Range | None:
        """Return the owned range, or the tracked node range for linewise anchors."""

        if not self.is_valid():
            return None
        return self._current_range()

    def text(self) -> str | None:
        span = self.range()
        if span is None:
            return None
        if self._kind is _Kind.POINT:
            return ""
        return self.document.text_in(span)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def replace_text(self, lines: Sequence[str]) -> Range:
        """Rewrite the owned region (or insert at a zero-width anchor).

        Afterwards the anchor owns exactly the written text. Other anchors on
        the document pick the change up from the edit log when next resolved.
        """

        if not self.is_valid():
            raise StaleAnchor(f"{self.id} is no longer valid")
        document = self.document
        lines = list(lines)
        if self._kind is _Kind.LINE:
            row = self._insert_row()
            if not lines:
                written = Range(Point(row, 0), Point(row, 0))
            else:
                document.set_lines(row, row, lines)
                written = Range(Point(row, 0), Point(row + len(lines) - 1, len(lines[-1])))
        else:
            span = self._current_range()
            written = document.set_text(span.start, span.end, lines)
        self._kind = _Kind.SPAN
        self._first, self._last = written.rows
        self._start_col = written.start.col
        self._end_col = written.end.col
        self._synced_version = document.version_id
        return written

    def release(self) -> None:
        """Detach from the document; the anchor is invalid from now on."""

        if self._released:
            return
        self._released = True
        self._valid = False
        self.document.detach_anchor(self)

    # ------------------------------------------------------------------
    # Replay
    # ------------------------------------------------------------------

    def _sync(self) -> None:
        if not self._valid:
            return
        if self._released or self.document.closed:
            self._valid = False
            return
        for edit in self.document.edits_since(self._synced_version):
            self._replay(edit)
            if not self._valid:
                LOGGER.debug("%s invalidated by edit v%s", self.id, edit.version)
                break
        self._synced_version = self.document.version_id

    def _replay(self, edit: LineEdit) -> None:
        first, last = self._first, self._last
        start, stop, count = edit.start, edit.end, edit.new_count
        delta = edit.delta

        if stop <= first:
            self._first, self._last = first + delta, last + delta
            return
        if start > last:
            return
        if start <= first and stop > last:
            if count == 0:
                self._valid = False
                return
            if self._kind is _Kind.POINT:
                row = start + min(first - start, count - 1)
                self._first = self._last = row
                return
            self._first, self._last = start, start + count - 1
            self._start_col = 0
            self._end_col = -1
            return
        if start <= first:
            self._first, self._last = start, last + delta
            self._start_col = 0
        elif stop - 1 <= last:
            self._last = last + delta
        else:
            self._last = start + count - 1 if count else start - 1
            self._end_col = -1
        if self._last < self._first:
            self._valid = False

    def _current_range(self) -> Range:
        document = self.document
        start_col = min(self._start_col, len(document.line(self._first)))
        end_line = document.line(self._last)
        end_col = len(end_line) if self._end_col < 0 else min(self._end_col, len(end_line))
        if self._kind is _Kind.POINT:
            point = Point(self._first, start_col)
            return Range(point, point)
        return Range(Point(self._first, start_col), Point(self._last, end_col))

    def _insert_row(self) -> int:
        if self.placement is AnchorPlacement.BELOW_NODE:
            return self._last + 1
        return self._first


def create_anchor(
    document: Document,
    target: Range | Point,
    placement: AnchorPlacement = AnchorPlacement.AT_START,
) -> Anchor:
    """Bind a new anchor to ``target`` on ``document``."""

    if document.closed:
        raise StaleAnchor(f"Document {document.document_id} is closed")
    if isinstance(target, Point):
        kind = _Kind.POINT
        span = Range(target, target)
    elif placement in (AnchorPlacement.ABOVE_NODE, AnchorPlacement.BELOW_NODE):
        kind = _Kind.LINE
        span = target
    else:
        kind = _Kind.SPAN
        span = target
    if span.start.row >= document.line_count:
        raise ValueError(f"Row {span.start.row} is outside the document ({document.line_count} rows)")
    anchor = Anchor(document, span, placement, kind)
    document.attach_anchor(anchor)
    return anchor


def resolve(anchor: Anchor) -> Point | None:
    return anchor.position()


def is_valid(anchor: Anchor) -> bool:
    return anchor.is_valid()


def replace_text(anchor: Anchor, lines: Sequence[str]) -> Range:
    return anchor.replace_text(lines)


def release(anchor: Anchor) -> None:
    anchor.release()
