"""Core geometry types shared across the package."""

from .geo import Point, Range

__all__ = ["Point", "Range"]
