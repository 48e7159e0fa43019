"""Provider contract and the shared asyncio subprocess plumbing."""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Mapping

from ..errors import ProcessSpawnError, ProviderNotFound

__all__ = [
    "BaseProvider",
    "ProcessSinks",
    "ProviderContext",
    "SubprocessHandle",
]

LOGGER = logging.getLogger(__name__)

_READ_CHUNK = 64 * 1024


@dataclass(slots=True, frozen=True)
class ProviderContext:
    """Per-request inputs a provider needs to build and run its command."""

    model: str
    cwd: Path | str | None = None
    api_key: str | None = None


@dataclass(slots=True)
class ProcessSinks:
    """Callbacks fed by a running provider process.

    Lines arrive without their trailing newline. ``on_exit`` fires once, after
    both output streams have reached EOF.
    """

    on_stdout_line: Callable[[str], Any]
    on_stderr_line: Callable[[str], Any]
    on_exit: Callable[[int], Any]


def _invoke(label: str, callback: Callable[..., Any], *args: Any) -> None:
    try:
        callback(*args)
    except Exception:  # pragma: no cover
        LOGGER.exception("%s callback failed", label)


class SubprocessHandle:
    """Owns a spawned provider process and the task pumping its output."""

    def __init__(self, process: asyncio.subprocess.Process, sinks: ProcessSinks, *, label: str) -> None:
        self._process = process
        self._sinks = sinks
        self._label = label
        self._task: asyncio.Task[None] | None = None

    @property
    def pid(self) -> int | None:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    @property
    def task(self) -> asyncio.Task[None] | None:
        return self._task

    def start(self) -> None:
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._pump(), name=f"{self._label}-pump-{self._process.pid}")

    def kill(self) -> None:
        """Kill the process; a process that already exited is left alone."""

        if self._process.returncode is not None:
            return
        try:
            self._process.kill()
        except ProcessLookupError:
            LOGGER.debug("%s process %s already gone", self._label, self._process.pid)

    async def _pump(self) -> None:
        await asyncio.gather(
            self._read(self._process.stdout, self._sinks.on_stdout_line, "stdout"),
            self._read(self._process.stderr, self._sinks.on_stderr_line, "stderr"),
        )
        code = await self._process.wait()
        LOGGER.debug("%s process %s exited with %s", self._label, self._process.pid, code)
        _invoke(f"{self._label} on_exit", self._sinks.on_exit, code)

    async def _read(
        self,
        stream: asyncio.StreamReader | None,
        callback: Callable[[str], Any],
        channel: str,
    ) -> None:
        """Split ``stream`` into lines of any length and feed them to ``callback``."""

        if stream is None:
            return
        pending = bytearray()
        while True:
            chunk = await stream.read(_READ_CHUNK)
            if not chunk:
                break
            pending += chunk
            *complete, tail = pending.split(b"\n")
            for raw in complete:
                self._emit(raw, callback, channel)
            pending = bytearray(tail)
        if pending:
            self._emit(pending, callback, channel)

    def _emit(self, raw: bytes | bytearray, callback: Callable[[str], Any], channel: str) -> None:
        line = raw.decode("utf-8", errors="replace").rstrip("\r")
        _invoke(f"{self._label} {channel}", callback, line)


class BaseProvider(ABC):
    """Stateless adapter that turns a prompt into a spawned CLI process."""

    name: str = "provider"
    executable: str = ""
    api_key_env: str | None = None

    @abstractmethod
    def build_command(self, prompt: str, context: ProviderContext) -> list[str]:
        """Return the argv for ``prompt``; must not touch the environment."""

    @abstractmethod
    def default_model(self) -> str:
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"

    def resolve_executable(self) -> str:
        path = shutil.which(self.executable)
        if path is None:
            raise ProviderNotFound(self.name, self.executable)
        return path

    def is_available(self) -> bool:
        return shutil.which(self.executable) is not None

    def build_env(self, context: ProviderContext) -> Mapping[str, str] | None:
        """Return the child environment, or ``None`` to inherit ours unchanged."""

        if not context.api_key or not self.api_key_env:
            return None
        env = dict(os.environ)
        env[self.api_key_env] = context.api_key
        return env

    async def make_request(
        self,
        prompt: str,
        context: ProviderContext,
        sinks: ProcessSinks,
    ) -> SubprocessHandle:
        """Spawn the provider and start streaming its output into ``sinks``."""

        executable = self.resolve_executable()
        argv = self.build_command(prompt, context)
        argv[0] = executable
        LOGGER.debug("Spawning %s with model %s", self.name, context.model)
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(context.cwd) if context.cwd is not None else None,
                env=self.build_env(context),
            )
        except OSError as exc:
            raise ProcessSpawnError(self.name, executable, exc) from exc
        handle = SubprocessHandle(process, sinks, label=self.name)
        handle.start()
        return handle
