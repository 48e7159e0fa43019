"""Process-wide table of active and historical requests."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from ..core.geo import Range
from ..editor.document_model import Document

if TYPE_CHECKING:
    from .request import Request

__all__ = ["Direction", "RegistryEntry", "RequestRegistry"]

LOGGER = logging.getLogger(__name__)


class Direction(Enum):
    NEXT = 1
    PREVIOUS = -1


@dataclass(slots=True, frozen=True)
class RegistryEntry:
    request: Request
    index: int


class RequestRegistry:
    """Insertion-ordered request history with an optional retention cap.

    The cap evicts the oldest terminal entries first; active requests are
    never evicted, so the table can temporarily exceed the cap while many
    requests are in flight.
    """

    def __init__(self, max_history: int | None = None) -> None:
        if max_history is not None and max_history < 1:
            raise ValueError("max_history must be positive or None")
        self._max_history = max_history
        self._requests: list[Request] = []
        self._lock = threading.RLock()
        self._closed = False

    def __len__(self) -> int:
        with self._lock:
            return len(self._requests)

    @property
    def max_history(self) -> int | None:
        return self._max_history

    @property
    def closed(self) -> bool:
        return self._closed

    def register(self, request: Request) -> None:
        with self._lock:
            if self._closed:
                raise RuntimeError("Request registry has been shut down")
            if any(existing is request for existing in self._requests):
                return
            self._requests.append(request)
            self._evict_locked()
        LOGGER.debug("Registered request %s", request.id)

    def all(self) -> list[Request]:
        with self._lock:
            return list(self._requests)

    def entries(self) -> list[RegistryEntry]:
        with self._lock:
            return [RegistryEntry(request, index) for index, request in enumerate(self._requests)]

    def latest(self) -> Request | None:
        with self._lock:
            return self._requests[-1] if self._requests else None

    def get(self, index: int) -> Request | None:
        with self._lock:
            if 0 <= index < len(self._requests):
                return self._requests[index]
            return None

    def index_of(self, request: Request) -> int | None:
        with self._lock:
            for index, existing in enumerate(self._requests):
                if existing is request:
                    return index
            return None

    def active(self) -> list[Request]:
        with self._lock:
            return [request for request in self._requests if not request.is_terminal]

    def overlapping(self, document: Document, span: Range) -> list[Request]:
        """Return active requests on ``document`` whose target overlaps ``span``."""

        matches: list[Request] = []
        for request in self.active():
            context = request.context
            if context.document is not document:
                continue
            anchor = context.target_anchor
            current = anchor.range() if anchor is not None else context.range
            if current is not None and current.overlaps(span):
                matches.append(request)
        return matches

    def cancel_all(self) -> int:
        """Cancel every non-terminal request; returns how many were cancelled."""

        pending = self.active()
        if not pending:
            return 0
        cancelled = 0
        for request in pending:
            if request.cancel():
                cancelled += 1
        LOGGER.info("Cancelled %d active request(s)", cancelled)
        return cancelled

    def clear_history(self) -> int:
        """Drop terminal entries; returns how many were removed."""

        with self._lock:
            before = len(self._requests)
            self._requests = [request for request in self._requests if not request.is_terminal]
            return before - len(self._requests)

    def navigate(self, current_index: int, direction: Direction) -> Request | None:
        return self.get(current_index + direction.value)

    def shutdown(self) -> int:
        """Cancel everything and refuse further registrations."""

        with self._lock:
            self._closed = True
        return self.cancel_all()

    def _evict_locked(self) -> None:
        if self._max_history is None:
            return
        overflow = len(self._requests) - self._max_history
        if overflow <= 0:
            return
        kept: list[Request] = []
        for request in self._requests:
            if overflow > 0 and request.is_terminal:
                overflow -= 1
                LOGGER.debug("Evicting request %s from history", request.id)
                continue
            kept.append(request)
        self._requests = kept
