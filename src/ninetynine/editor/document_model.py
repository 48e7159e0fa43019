"""Line-based document model with an edit log for anchor replay."""

from __future__ import annotations

import asyncio
import hashlib
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Iterable, Sequence

from ..core.geo import Point, Range

if TYPE_CHECKING:
    from .anchors import Anchor

__all__ = ["Document", "DocumentMetadata", "LineEdit"]

LOGGER = logging.getLogger(__name__)


def _utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""

    return datetime.now(timezone.utc)


def _hash_text(text: str) -> str:
    return hashlib.sha1(text.encode("utf-8")).hexdigest()


@dataclass(slots=True, frozen=True)
class LineEdit:
    """One ``set_lines`` call: rows ``[start, end)`` became ``new_count`` rows."""

    version: int
    start: int
    end: int
    new_count: int

    @property
    def delta(self) -> int:
        return self.new_count - (self.end - self.start)


@dataclass(slots=True)
class DocumentMetadata:
    """Metadata describing the loaded document."""

    path: Path | None = None
    file_type: str = ""
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)


class Document:
    """In-memory line buffer owned by a single event loop.

    Every write goes through :meth:`set_lines` and is appended to an edit
    log. Anchors record the version they were last resolved at and replay the
    log lazily, so edits never have to notify anchors eagerly.
    """

    def __init__(
        self,
        text: str = "",
        *,
        path: Path | str | None = None,
        file_type: str = "",
        loop: asyncio.AbstractEventLoop | None = None,
        document_id: str | None = None,
    ) -> None:
        self._lines: list[str] = text.split("\n")
        self.metadata = DocumentMetadata(
            path=Path(path) if path is not None else None,
            file_type=file_type or _guess_file_type(path),
        )
        self.document_id = document_id or uuid.uuid4().hex
        self.version_id = 1
        self._edits: list[LineEdit] = []
        self._anchors: dict[str, Anchor] = {}
        self._loop = loop
        self._owner_thread: int | None = threading.get_ident() if loop is not None else None
        self._closed = False

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def path(self) -> Path | None:
        return self.metadata.path

    @property
    def file_type(self) -> str:
        return self.metadata.file_type

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def line_count(self) -> int:
        return len(self._lines)

    @property
    def content_hash(self) -> str:
        return _hash_text(self.text())

    def get_lines(self, start: int = 0, end: int | None = None) -> list[str]:
        """Return rows ``[start, end)``; ``end=None`` reads to the last row."""

        start, end = self._check_span(start, end)
        return list(self._lines[start:end])

    def line(self, row: int) -> str:
        if 0 <= row < len(self._lines):
            return self._lines[row]
        return ""

    def text(self) -> str:
        return "\n".join(self._lines)

    def text_in(self, span: Range) -> str:
        """Return the characters covered by ``span``."""

        first, last = span.rows
        if first >= len(self._lines):
            return ""
        last = min(last, len(self._lines) - 1)
        if first == last:
            return self._lines[first][span.start.col : span.end.col]
        parts = [self._lines[first][span.start.col :]]
        parts.extend(self._lines[first + 1 : last])
        parts.append(self._lines[last][: span.end.col])
        return "\n".join(parts)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def set_lines(self, start: int, end: int | None, new_lines: Sequence[str]) -> LineEdit:
        """Replace rows ``[start, end)`` with ``new_lines``."""

        if self._closed:
            raise RuntimeError(f"Document {self.document_id} is closed")
        start, end = self._check_span(start, end)
        replacement = [str(line) for line in new_lines]
        for line in replacement:
            if "\n" in line:
                raise ValueError("set_lines expects one string per row")
        self._lines[start:end] = replacement
        self.version_id += 1
        edit = LineEdit(version=self.version_id, start=start, end=end, new_count=len(replacement))
        self._edits.append(edit)
        self.metadata.updated_at = _utcnow()
        LOGGER.debug(
            "Document %s v%s: rows [%s, %s) -> %s row(s)",
            self.document_id[:8],
            self.version_id,
            start,
            end,
            len(replacement),
        )
        return edit

    def set_text(self, start: Point, end: Point, new_lines: Sequence[str]) -> Range:
        """Replace characters between two points, returning the written range."""

        if end < start:
            start, end = end, start
        if start.row >= len(self._lines):
            prefix, first_row = "", len(self._lines)
            suffix, last_row = "", len(self._lines) - 1
        else:
            first_row = start.row
            last_row = min(end.row, len(self._lines) - 1)
            prefix = self._lines[first_row][: start.col]
            suffix = self._lines[last_row][end.col :] if end.row <= last_row else ""
        pieces = list(new_lines) or [""]
        written = list(pieces)
        written[0] = prefix + written[0]
        written[-1] = written[-1] + suffix
        self.set_lines(first_row, last_row + 1, written)
        end_row = first_row + len(pieces) - 1
        end_col = len(pieces[-1]) + (len(prefix) if len(pieces) == 1 else 0)
        return Range(Point(first_row, len(prefix)), Point(end_row, end_col))

    def close(self) -> None:
        """Close the document; every attached anchor becomes invalid."""

        self._closed = True
        self._edits.clear()

    # ------------------------------------------------------------------
    # Edit log and anchors
    # ------------------------------------------------------------------

    def edits_since(self, version: int) -> list[LineEdit]:
        """Return logged edits newer than ``version`` in order."""

        if version >= self.version_id:
            return []
        return [edit for edit in self._edits if edit.version > version]

    def attach_anchor(self, anchor: Anchor) -> None:
        self._anchors[anchor.id] = anchor

    def detach_anchor(self, anchor: Anchor) -> None:
        self._anchors.pop(anchor.id, None)
        self._compact_log()

    def anchors(self) -> tuple[Anchor, ...]:
        return tuple(self._anchors.values())

    def _compact_log(self) -> None:
        if not self._anchors:
            self._edits.clear()
            return
        oldest = min(anchor.synced_version for anchor in self._anchors.values())
        self._edits = [edit for edit in self._edits if edit.version > oldest]

    # ------------------------------------------------------------------
    # Owner turn
    # ------------------------------------------------------------------

    @property
    def loop(self) -> asyncio.AbstractEventLoop | None:
        return self._loop

    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        """Make ``loop`` the owner turn for all future scheduled mutations."""

        self._loop = loop
        self._owner_thread = threading.get_ident()

    def on_owner_turn(self) -> bool:
        if self._loop is None:
            return True
        return threading.get_ident() == self._owner_thread

    def schedule(self, callback: Callable[..., Any], *args: Any) -> None:
        """Run ``callback`` on the document-owner turn.

        Without an owner loop the host is synchronous and the callback runs
        immediately. From the owner thread the callback is queued behind the
        current turn; from any other thread it is handed over thread-safely.
        """

        loop = self._loop
        if loop is None or loop.is_closed():
            callback(*args)
            return
        if self.on_owner_turn():
            loop.call_soon(callback, *args)
        else:
            loop.call_soon_threadsafe(callback, *args)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _check_span(self, start: int, end: int | None) -> tuple[int, int]:
        size = len(self._lines)
        if end is None:
            end = size
        if start < 0 or end < start or end > size:
            raise IndexError(f"Row span [{start}, {end}) is outside 0..{size}")
        return start, end

    @classmethod
    def from_lines(cls, lines: Iterable[str], **kwargs: Any) -> Document:
        return cls("\n".join(lines), **kwargs)


_EXTENSION_FILE_TYPES = {
    ".py": "python",
    ".lua": "lua",
    ".rs": "rust",
    ".go": "go",
    ".zig": "zig",
    ".ts": "typescript",
    ".tsx": "typescriptreact",
    ".js": "javascript",
    ".jsx": "javascriptreact",
    ".c": "c",
    ".h": "c",
    ".cpp": "cpp",
    ".hpp": "cpp",
    ".java": "java",
    ".cs": "cs",
    ".kt": "kotlin",
    ".swift": "swift",
}


def _guess_file_type(path: Path | str | None) -> str:
    if path is None:
        return ""
    return _EXTENSION_FILE_TYPES.get(Path(path).suffix.lower(), "")
