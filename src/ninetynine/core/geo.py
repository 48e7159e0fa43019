"""Row/column geometry used by documents, anchors, and locators."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterator


@dataclass(slots=True, frozen=True, order=True)
class Point:
    """A 0-based ``(row, col)`` position inside a document."""

    row: int
    col: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "row", self._coerce_index(self.row, "row"))
        object.__setattr__(self, "col", self._coerce_index(self.col, "col"))

    @staticmethod
    def _coerce_index(value: Any, label: str) -> int:
        try:
            number = int(value)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Point {label} must be an integer") from exc
        if number < 0:
            return 0
        return number

    def __iter__(self) -> Iterator[int]:
        yield self.row
        yield self.col

    def to_tuple(self) -> tuple[int, int]:
        return (self.row, self.col)

    def to_dict(self) -> dict[str, int]:
        return {"row": self.row, "col": self.col}

    def human(self) -> str:
        """Return a 1-based ``line:col`` label for prompts and logs."""

        return f"{self.row + 1}:{self.col}"

    @classmethod
    def from_cursor(cls, line: int, col: int = 0) -> Point:
        """Build a point from a 1-based editor cursor line and 0-based column."""

        return cls(row=max(0, int(line) - 1), col=col)


@dataclass(slots=True, frozen=True)
class Range:
    """A span between two points; ``end.col`` is exclusive on ``end.row``."""

    start: Point
    end: Point

    def __post_init__(self) -> None:
        if self.end < self.start:
            start, end = self.end, self.start
            object.__setattr__(self, "start", start)
            object.__setattr__(self, "end", end)

    @classmethod
    def from_rows(cls, start_row: int, end_row: int, *, end_col: int = 0) -> Range:
        """Build a range covering ``start_row``..``end_row`` inclusive."""

        return cls(Point(start_row, 0), Point(end_row, end_col))

    @classmethod
    def from_value(cls, value: Any) -> Range:
        """Coerce a range, point, or ``((row, col), (row, col))`` pair."""

        if isinstance(value, Range):
            return value
        if isinstance(value, Point):
            return cls(value, value)
        try:
            start, end = value
            return cls(Point(*start), Point(*end))
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Cannot coerce {value!r} into a Range") from exc

    @property
    def rows(self) -> tuple[int, int]:
        """Return the inclusive ``(first_row, last_row)`` span."""

        return (self.start.row, self.end.row)

    @property
    def line_count(self) -> int:
        return self.end.row - self.start.row + 1

    @property
    def is_empty(self) -> bool:
        return self.start == self.end

    def contains(self, point: Point) -> bool:
        return self.start <= point <= self.end

    def overlaps(self, other: Range) -> bool:
        """Return ``True`` when the row spans of both ranges intersect."""

        return self.start.row <= other.end.row and other.start.row <= self.end.row

    def human(self) -> str:
        return f"Lines {self.start.human()} to {self.end.human()}"

    def to_dict(self) -> dict[str, dict[str, int]]:
        return {"start": self.start.to_dict(), "end": self.end.to_dict()}
