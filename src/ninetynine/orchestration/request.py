"""Request lifecycle: one provider process from prompt to terminal status.

``PENDING -> STREAMING -> {SUCCESS, FAILED, CANCELLED}``. Process exit,
timeout, and :meth:`Request.cancel` race for a single terminal guard; the
first to claim it decides the status and fires ``on_complete``. Everyone
else becomes a no-op.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import tempfile
import threading
import uuid
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable

from .. import prompts
from ..errors import (
    EmptyOutput,
    NinetyNineError,
    NonZeroExit,
    ProcessSpawnError,
    ProviderNotFound,
    RequestError,
    RequestTimeout,
)
from ..providers.base import BaseProvider, ProcessSinks, ProviderContext, SubprocessHandle
from ..providers.registry import resolve_provider
from ..services.telemetry import emit
from .context import RequestContext

if TYPE_CHECKING:
    from .registry import RequestRegistry

__all__ = ["Request", "RequestResult", "RequestSinks", "RequestStatus"]

LOGGER = logging.getLogger(__name__)

_REQUEST_IDS = itertools.count(1)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RequestStatus(str, Enum):
    PENDING = "pending"
    STREAMING = "streaming"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (RequestStatus.SUCCESS, RequestStatus.FAILED, RequestStatus.CANCELLED)


@dataclass(slots=True)
class RequestSinks:
    """Caller callbacks for a request.

    ``on_complete(status, output)`` receives the output on success, the
    diagnostic text on failure, and ``None`` on cancellation.
    """

    on_stdout: Callable[[str], Any] | None = None
    on_stderr: Callable[[str], Any] | None = None
    on_complete: Callable[[RequestStatus, str | None], Any] | None = None


@dataclass(slots=True, frozen=True)
class RequestResult:
    request_id: int
    status: RequestStatus
    output: str | None = None
    error: NinetyNineError | None = None
    exit_code: int | None = None

    @property
    def ok(self) -> bool:
        return self.status is RequestStatus.SUCCESS


def _invoke(label: str, callback: Callable[..., Any] | None, *args: Any) -> None:
    if callback is None:
        return
    try:
        callback(*args)
    except Exception:
        LOGGER.exception("Request %s callback failed", label)


def _resolve_future(future: asyncio.Future[RequestResult], result: RequestResult) -> None:
    if not future.done():
        future.set_result(result)


class Request:
    """A single prompt sent to a provider, tracked until it terminates."""

    def __init__(self, context: RequestContext, *, registry: RequestRegistry | None = None) -> None:
        self.id = next(_REQUEST_IDS)
        self.uid = uuid.uuid4().hex
        self.created_at = _utcnow()
        self.started_at: datetime | None = None
        self.completed_at: datetime | None = None
        self.context = context
        self.registry = registry if registry is not None else context.registry
        self.provider: BaseProvider | None = None
        self.model: str | None = None
        self.prompt: str | None = None
        self.tmp_file: Path | None = None
        self.status = RequestStatus.PENDING
        self.stdout_tail: deque[str] = deque(maxlen=max(1, context.stdout_rows))
        self.stderr: list[str] = []
        self.exit_code: int | None = None
        self.output: str | None = None
        self.error: NinetyNineError | None = None
        self._fragments: list[str] = []
        self._stdout: list[str] = []
        self._sinks = RequestSinks()
        self._handle: SubprocessHandle | None = None
        self._task: asyncio.Task[None] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._timeout_handle: asyncio.TimerHandle | None = None
        self._lock = threading.Lock()
        self._started = False
        self._terminal_claimed = False
        self._completed = False
        self._waiters: list[tuple[asyncio.AbstractEventLoop, asyncio.Future[RequestResult]]] = []

    def __repr__(self) -> str:
        return f"Request(id={self.id}, status={self.status.value}, provider={self.provider_name!r})"

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    @property
    def provider_name(self) -> str | None:
        return self.provider.name if self.provider is not None else None

    @property
    def is_terminal(self) -> bool:
        return self._terminal_claimed

    @property
    def raw_output(self) -> str:
        """Every stdout line received, including after a cancellation was requested."""

        return "\n".join(self._stdout)

    @property
    def fragments(self) -> tuple[str, ...]:
        return tuple(self._fragments)

    def result(self) -> RequestResult:
        return RequestResult(
            request_id=self.id,
            status=self.status,
            output=self.output if self.status is RequestStatus.SUCCESS else None,
            error=self.error,
            exit_code=self.exit_code,
        )

    def summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "uid": self.uid,
            "status": self.status.value,
            "provider": self.provider_name,
            "model": self.model,
            "document": self.context.document.document_id,
            "file": self.context.full_path or None,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "stdout_tail": list(self.stdout_tail),
            "stderr": list(self.stderr),
            "exit_code": self.exit_code,
            "error": str(self.error) if self.error is not None else None,
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def add_prompt_content(self, text: str) -> None:
        if self._started:
            raise RuntimeError(f"Request {self.id} already started")
        self._fragments.append(text)

    def start(self, sinks: RequestSinks | None = None, *, provider: BaseProvider | None = None) -> None:
        """Register the request and schedule the provider spawn on the running loop."""

        loop = asyncio.get_running_loop()
        with self._lock:
            if self._terminal_claimed:
                LOGGER.debug("Request %s was cancelled before start", self.id)
                return
            if self._started:
                raise RuntimeError(f"Request {self.id} already started")
            self._started = True
        self._loop = loop
        self._sinks = sinks or RequestSinks()
        self.provider = self.context.provider_override or provider or self.context.provider or resolve_provider()
        self.model = self.context.model or self.provider.default_model()
        self.tmp_file = self._allocate_tmp_file()
        self.prompt = self._build_prompt()
        self.started_at = _utcnow()
        if self.registry is not None:
            self.registry.register(self)
        LOGGER.info("Request %s starting with %s (%s)", self.id, self.provider.name, self.model)
        emit(
            "request.started",
            {"request_id": self.id, "provider": self.provider.name, "model": self.model},
        )
        try:
            self.provider.resolve_executable()
        except ProviderNotFound as exc:
            self._finish(RequestStatus.FAILED, error=exc)
            return
        self._task = loop.create_task(self._run(), name=f"ninetynine-request-{self.id}")

    def cancel(self) -> bool:
        """Cancel the request; returns ``False`` when it had already terminated."""

        if not self._claim_terminal():
            return False
        handle = self._handle
        if handle is not None:
            self._kill(handle)
        LOGGER.debug("Request %s cancelled", self.id)
        self._complete(RequestStatus.CANCELLED)
        return True

    async def wait(self) -> RequestResult:
        """Suspend the calling task until the request terminates."""

        loop = asyncio.get_running_loop()
        with self._lock:
            if self._completed:
                return self.result()
            future: asyncio.Future[RequestResult] = loop.create_future()
            self._waiters.append((loop, future))
        return await future

    # ------------------------------------------------------------------
    # Process plumbing
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        assert self.provider is not None and self.model is not None and self.prompt is not None
        provider_context = ProviderContext(
            model=self.model,
            cwd=self.context.cwd,
            api_key=self.context.api_key_for(self.provider.name),
        )
        sinks = ProcessSinks(
            on_stdout_line=self._on_stdout_line,
            on_stderr_line=self._on_stderr_line,
            on_exit=self._on_exit,
        )
        try:
            handle = await self.provider.make_request(self.prompt, provider_context, sinks)
        except RequestError as exc:
            self._finish(RequestStatus.FAILED, error=exc)
            return
        except Exception as exc:
            LOGGER.exception("Request %s: provider %s raised while spawning", self.id, self.provider.name)
            self._finish(
                RequestStatus.FAILED,
                error=ProcessSpawnError(self.provider.name, self.provider.executable, exc),
            )
            return
        self._handle = handle
        if self._terminal_claimed:
            handle.kill()
            return
        with self._lock:
            if self._terminal_claimed:
                return
            self.status = RequestStatus.STREAMING
        emit("request.streaming", {"request_id": self.id, "pid": handle.pid})
        timeout = self.context.timeout
        if timeout and timeout > 0:
            self._timeout_handle = asyncio.get_running_loop().call_later(timeout, self._on_timeout, timeout)

    def _on_stdout_line(self, line: str) -> None:
        self._stdout.append(line)
        if self._terminal_claimed:
            return
        self.stdout_tail.append(line)
        _invoke(f"{self.id} on_stdout", self._sinks.on_stdout, line)

    def _on_stderr_line(self, line: str) -> None:
        self.stderr.append(line)
        if self._terminal_claimed:
            return
        _invoke(f"{self.id} on_stderr", self._sinks.on_stderr, line)

    def _on_exit(self, code: int) -> None:
        self.exit_code = code
        if self._terminal_claimed:
            return
        if code != 0:
            self._finish(RequestStatus.FAILED, error=NonZeroExit(code, self.stderr))
            return
        output = self._read_output()
        if not output.strip():
            self._finish(RequestStatus.FAILED, error=EmptyOutput())
            return
        self._finish(RequestStatus.SUCCESS, output=output)

    def _on_timeout(self, seconds: float) -> None:
        self._timeout_handle = None
        if not self._claim_terminal():
            return
        if self._handle is not None:
            self._kill(self._handle)
        LOGGER.warning("Request %s timed out after %ss", self.id, seconds)
        self._complete(RequestStatus.FAILED, error=RequestTimeout(seconds))

    def _kill(self, handle: SubprocessHandle) -> None:
        loop = self._loop
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if loop is None or running is loop or loop.is_closed():
            handle.kill()
        else:
            loop.call_soon_threadsafe(handle.kill)

    # ------------------------------------------------------------------
    # Terminal guard
    # ------------------------------------------------------------------

    def _claim_terminal(self) -> bool:
        with self._lock:
            if self._terminal_claimed:
                return False
            self._terminal_claimed = True
            return True

    def _finish(
        self,
        status: RequestStatus,
        *,
        output: str | None = None,
        error: NinetyNineError | None = None,
    ) -> bool:
        if not self._claim_terminal():
            return False
        self._complete(status, output=output, error=error)
        return True

    def _complete(
        self,
        status: RequestStatus,
        *,
        output: str | None = None,
        error: NinetyNineError | None = None,
    ) -> None:
        self.status = status
        self.output = output
        self.error = error
        self.completed_at = _utcnow()
        if self._timeout_handle is not None:
            self._timeout_handle.cancel()
            self._timeout_handle = None
        self._remove_tmp_file()
        if status is RequestStatus.FAILED:
            LOGGER.info("Request %s failed: %s", self.id, error)
        else:
            LOGGER.info("Request %s finished: %s", self.id, status.value)

        if status is RequestStatus.SUCCESS:
            payload: str | None = output
        elif status is RequestStatus.FAILED:
            payload = str(error) if error is not None else "request failed"
        else:
            payload = None
        _invoke(f"{self.id} on_complete", self._sinks.on_complete, status, payload)

        result = self.result()
        with self._lock:
            self._completed = True
            waiters, self._waiters = self._waiters, []
        for loop, future in waiters:
            self._resolve_waiter(loop, future, result)
        emit(
            "request.completed",
            {
                "request_id": self.id,
                "status": status.value,
                "provider": self.provider_name,
                "error": error.code if error is not None else None,
            },
        )

    @staticmethod
    def _resolve_waiter(
        loop: asyncio.AbstractEventLoop,
        future: asyncio.Future[RequestResult],
        result: RequestResult,
    ) -> None:
        if loop.is_closed():
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            _resolve_future(future, result)
        else:
            loop.call_soon_threadsafe(_resolve_future, future, result)

    # ------------------------------------------------------------------
    # Prompt and output
    # ------------------------------------------------------------------

    def _allocate_tmp_file(self) -> Path:
        directory = Path(self.context.tmp_dir or tempfile.gettempdir())
        directory.mkdir(parents=True, exist_ok=True)
        return directory / f"99-{self.uid}"

    def _build_prompt(self) -> str:
        assert self.tmp_file is not None
        parts = [prompts.role(), *self._fragments, *self.context.prompt_fragments()]
        parts.append(prompts.tmp_file_location(str(self.tmp_file)))
        return "\n".join(parts)

    def _read_output(self) -> str:
        if self.tmp_file is not None:
            try:
                text = self.tmp_file.read_text(encoding="utf-8")
            except FileNotFoundError:
                text = ""
            except OSError as exc:
                LOGGER.warning("Request %s could not read %s: %s", self.id, self.tmp_file, exc)
                text = ""
            if text.strip():
                return text
        return self.raw_output

    def _remove_tmp_file(self) -> None:
        if self.tmp_file is None:
            return
        try:
            self.tmp_file.unlink(missing_ok=True)
        except OSError as exc:
            LOGGER.debug("Request %s could not remove %s: %s", self.id, self.tmp_file, exc)
