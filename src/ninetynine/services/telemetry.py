"""In-process telemetry events for request and operation lifecycles."""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Callable, Iterable, Mapping

__all__ = [
    "EVENT_NAMES",
    "InMemoryTelemetrySink",
    "TelemetryEvent",
    "emit",
    "register_event_listener",
    "unregister_event_listener",
]

LOGGER = logging.getLogger(__name__)

EVENT_NAMES = (
    "request.started",
    "request.streaming",
    "request.completed",
    "operation.applied",
    "operation.apply_failed",
)

_EVENT_LISTENERS: dict[str, list[Callable[[dict[str, Any]], None]]] = {}
_LISTENER_LOCK = Lock()


@dataclass(slots=True)
class TelemetryEvent:
    """Single recorded event with its payload."""

    name: str
    payload: dict[str, Any]
    timestamp: float = field(default_factory=time.time)


class InMemoryTelemetrySink:
    """Simple ring-buffer telemetry sink for local inspection and tests."""

    def __init__(self, capacity: int = 200) -> None:
        self._capacity = max(10, capacity)
        self._buffer: deque[TelemetryEvent] = deque(maxlen=self._capacity)
        self._lock = Lock()
        self._attached: list[str] = []

    @property
    def capacity(self) -> int:
        return self._capacity

    def __call__(self, payload: dict[str, Any]) -> None:
        name = str(payload.get("event", ""))
        with self._lock:
            self._buffer.append(TelemetryEvent(name=name, payload=dict(payload)))

    def attach(self, event_names: Iterable[str] = EVENT_NAMES) -> InMemoryTelemetrySink:
        for name in event_names:
            register_event_listener(name, self)
            self._attached.append(name)
        return self

    def detach(self) -> None:
        for name in self._attached:
            unregister_event_listener(name, self)
        self._attached.clear()

    def tail(self, limit: int | None = None) -> list[TelemetryEvent]:
        with self._lock:
            events = list(self._buffer)
        if limit is None or limit >= len(events):
            return events
        return events[-limit:]

    def names(self) -> list[str]:
        return [event.name for event in self.tail()]

    def __len__(self) -> int:
        with self._lock:
            return len(self._buffer)


def register_event_listener(event_name: str, callback: Callable[[dict[str, Any]], None]) -> None:
    """Register a callback invoked whenever :func:`emit` fires *event_name*."""

    if not event_name or callback is None:
        return
    with _LISTENER_LOCK:
        listeners = _EVENT_LISTENERS.setdefault(event_name, [])
        if callback not in listeners:
            listeners.append(callback)


def unregister_event_listener(event_name: str, callback: Callable[[dict[str, Any]], None]) -> None:
    with _LISTENER_LOCK:
        listeners = _EVENT_LISTENERS.get(event_name)
        if not listeners:
            return
        try:
            listeners.remove(callback)
        except ValueError:
            return
        if not listeners:
            _EVENT_LISTENERS.pop(event_name, None)


def emit(event_name: str, payload: Mapping[str, Any] | None = None) -> None:
    """Broadcast a structured telemetry event to in-process listeners."""

    if not event_name:
        return
    event_payload: dict[str, Any] = {"event": event_name}
    if payload:
        event_payload.update(payload)
    with _LISTENER_LOCK:
        listeners = list(_EVENT_LISTENERS.get(event_name, ()))
    for callback in listeners:
        try:
            callback(dict(event_payload))
        except Exception:  # pragma: no cover - listeners must not break emitters
            LOGGER.debug("Telemetry listener %s failed", callback, exc_info=True)
    LOGGER.debug("Telemetry emit %s: %s", event_name, event_payload)
