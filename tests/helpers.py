"""Shared test helpers and stub providers.

Import from here instead of duplicating fakes in individual test files.
"""

from __future__ import annotations

import asyncio
import sys
from typing import Any

from ninetynine.providers.base import BaseProvider, ProcessSinks, ProviderContext


class FakeProcessHandle:
    """Stand-in for a spawned provider process that tests drive by hand.

    Example:
        provider = ManualProvider()
        ...
        await settle()
        provider.last.stdout("def foo():", "    return 1")
        provider.last.exit(0)
    """

    def __init__(self, sinks: ProcessSinks, pid: int = 4242) -> None:
        self.sinks = sinks
        self.pid = pid
        self.returncode: int | None = None
        self.killed = False

    def kill(self) -> None:
        self.killed = True

    def stdout(self, *lines: str) -> None:
        for line in lines:
            self.sinks.on_stdout_line(line)

    def stderr(self, *lines: str) -> None:
        for line in lines:
            self.sinks.on_stderr_line(line)

    def exit(self, code: int = 0) -> None:
        self.returncode = code
        self.sinks.on_exit(code)


class ManualProvider(BaseProvider):
    """Provider whose "process" is a :class:`FakeProcessHandle`."""

    name = "manual"
    executable = "manual-ai"
    api_key_env = "MANUAL_API_KEY"

    def __init__(self, model: str = "manual-model") -> None:
        self._model = model
        self.handles: list[FakeProcessHandle] = []
        self.prompts: list[str] = []
        self.contexts: list[ProviderContext] = []

    def build_command(self, prompt: str, context: ProviderContext) -> list[str]:
        return [self.executable, "--model", context.model, prompt]

    def default_model(self) -> str:
        return self._model

    def resolve_executable(self) -> str:
        return f"/usr/local/bin/{self.executable}"

    def is_available(self) -> bool:
        return True

    async def make_request(self, prompt: str, context: ProviderContext, sinks: ProcessSinks) -> Any:
        self.prompts.append(prompt)
        self.contexts.append(context)
        handle = FakeProcessHandle(sinks, pid=4242 + len(self.handles))
        self.handles.append(handle)
        return handle

    @property
    def last(self) -> FakeProcessHandle:
        return self.handles[-1]


class MissingProvider(ManualProvider):
    """Provider whose executable is never on PATH."""

    name = "missing"
    executable = "ninetynine-test-missing-executable"

    def resolve_executable(self) -> str:
        return BaseProvider.resolve_executable(self)

    def is_available(self) -> bool:
        return BaseProvider.is_available(self)


class ExplodingProvider(ManualProvider):
    """Provider that raises a non-request error while spawning."""

    name = "exploding"

    async def make_request(self, prompt: str, context: ProviderContext, sinks: ProcessSinks) -> Any:
        raise RuntimeError("boom")


class ScriptProvider(BaseProvider):
    """Real subprocess provider running a Python snippet with ``sys.executable``.

    The prompt is passed as ``sys.argv[1]`` so scripts can pull the temp file
    path out of it.
    """

    name = "script"
    executable = sys.executable

    def __init__(self, script: str) -> None:
        self.script = script

    def build_command(self, prompt: str, context: ProviderContext) -> list[str]:
        return [self.executable, "-c", self.script, prompt]

    def default_model(self) -> str:
        return "script-model"


def write_temp_file_script(output: str, *, chatter: str = "working...") -> str:
    """Return a script that prints ``chatter`` and writes ``output`` to TEMP_FILE."""

    return (
        "import re, sys\n"
        "path = re.search(r'<TEMP_FILE>(.+?)</TEMP_FILE>', sys.argv[1]).group(1)\n"
        f"print({chatter!r})\n"
        "with open(path, 'w', encoding='utf-8') as handle:\n"
        f"    handle.write({output!r})\n"
    )


async def settle(turns: int = 5) -> None:
    """Let scheduled callbacks and freshly created tasks run."""

    for _ in range(turns):
        await asyncio.sleep(0)
