"""Shared types for editor operations: options, observers, and handles."""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Protocol, Sequence

from ..errors import NinetyNineError
from ..orchestration.context import AgentRule
from ..orchestration.reconcile import Applied
from ..orchestration.request import Request, RequestStatus
from ..providers.base import BaseProvider

__all__ = [
    "LoggingObserver",
    "OpOptions",
    "Operation",
    "OperationObserver",
    "OperationOutcome",
]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class OpOptions:
    """Per-invocation knobs shared by every operation."""

    additional_prompt: str | None = None
    additional_rules: Sequence[AgentRule | Path | str] = ()
    provider: BaseProvider | None = None


@dataclass(slots=True, frozen=True)
class OperationOutcome:
    status: RequestStatus
    applied: Applied | None = None
    error: NinetyNineError | None = None
    output: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is RequestStatus.SUCCESS and self.applied is not None


class OperationObserver(Protocol):
    """UI sink for operation progress (status windows, virtual text, ...)."""

    def on_stdout(self, request: Request, line: str) -> None:
        ...

    def on_stderr(self, request: Request, line: str) -> None:
        ...

    def on_complete(self, request: Request, status: RequestStatus, output: str | None) -> None:
        ...

    def display_error(self, request: Request, message: str) -> None:
        ...


class LoggingObserver:
    """Default observer that routes everything to the module logger."""

    def on_stdout(self, request: Request, line: str) -> None:
        LOGGER.debug("[%s] %s", request.id, line)

    def on_stderr(self, request: Request, line: str) -> None:
        LOGGER.debug("[%s] stderr: %s", request.id, line)

    def on_complete(self, request: Request, status: RequestStatus, output: str | None) -> None:
        LOGGER.debug("[%s] completed with %s", request.id, status.value)

    def display_error(self, request: Request, message: str) -> None:
        LOGGER.error("[%s] %s", request.id, message)


@dataclass(slots=True)
class Operation:
    """Handle to a running operation; resolves once the document is updated."""

    name: str
    request: Request
    clean_up: Callable[[], None]
    _outcome: OperationOutcome | None = None
    _lock: threading.Lock = field(default_factory=threading.Lock)
    _waiters: list[tuple[asyncio.AbstractEventLoop, asyncio.Future[OperationOutcome]]] = field(
        default_factory=list
    )

    @property
    def done(self) -> bool:
        return self._outcome is not None

    @property
    def outcome(self) -> OperationOutcome | None:
        return self._outcome

    def cancel(self) -> None:
        """Cancel the underlying request and release the operation's anchors."""

        self.clean_up()

    async def wait(self) -> OperationOutcome:
        loop = asyncio.get_running_loop()
        with self._lock:
            if self._outcome is not None:
                return self._outcome
            future: asyncio.Future[OperationOutcome] = loop.create_future()
            self._waiters.append((loop, future))
        return await future

    def resolve(self, outcome: OperationOutcome) -> None:
        with self._lock:
            if self._outcome is not None:
                return
            self._outcome = outcome
            waiters, self._waiters = self._waiters, []
        for loop, future in waiters:
            if loop.is_closed():
                continue
            loop.call_soon_threadsafe(_set_outcome, future, outcome)


def _set_outcome(future: asyncio.Future[OperationOutcome], outcome: OperationOutcome) -> None:
    if not future.done():
        future.set_result(outcome)
