"""Tests for the row/column geometry helpers."""

from __future__ import annotations

import pytest

from ninetynine.core.geo import Point, Range


def test_point_clamps_negative_indices_and_orders() -> None:
    assert Point(-3, -1) == Point(0, 0)
    assert Point(1, 5) < Point(2, 0)
    assert sorted([Point(2, 1), Point(0, 4), Point(2, 0)]) == [Point(0, 4), Point(2, 0), Point(2, 1)]


def test_point_rejects_non_integers() -> None:
    with pytest.raises(ValueError):
        Point("row", 0)  # type: ignore[arg-type]


def test_point_from_cursor_is_one_based() -> None:
    point = Point.from_cursor(3, 7)

    assert point == Point(2, 7)
    assert point.human() == "3:7"
    assert tuple(point) == (2, 7)


def test_range_normalizes_reversed_points() -> None:
    span = Range(Point(4, 2), Point(1, 0))

    assert span.start == Point(1, 0)
    assert span.end == Point(4, 2)
    assert span.rows == (1, 4)
    assert span.line_count == 4


def test_range_from_value_accepts_pairs_and_points() -> None:
    assert Range.from_value(((0, 1), (2, 3))) == Range(Point(0, 1), Point(2, 3))
    assert Range.from_value(Point(5, 0)).is_empty
    with pytest.raises(ValueError):
        Range.from_value("nope")


def test_range_overlap_and_containment() -> None:
    first = Range.from_rows(2, 5)
    second = Range.from_rows(5, 8)
    third = Range.from_rows(6, 9)

    assert first.overlaps(second)
    assert not first.overlaps(third)
    assert first.contains(Point(3, 10))
    assert not first.contains(Point(5, 1))


def test_range_human_and_dict() -> None:
    span = Range.from_rows(0, 2, end_col=4)

    assert span.human() == "Lines 1:0 to 3:4"
    assert span.to_dict() == {"start": {"row": 0, "col": 0}, "end": {"row": 2, "col": 4}}
