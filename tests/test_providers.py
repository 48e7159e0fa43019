"""Tests for provider argv construction, selection, and subprocess plumbing."""

from __future__ import annotations

import asyncio
import os
import sys

import pytest

from ninetynine.errors import ProviderNotFound
from ninetynine.providers import registry as provider_registry
from ninetynine.providers.base import ProcessSinks, ProviderContext
from ninetynine.providers.cli import (
    ClaudeCodeProvider,
    CodexProvider,
    CopilotCLIProvider,
    GeminiProvider,
    OpenCodeProvider,
)
from ninetynine.providers.registry import ProviderKind, get_provider, resolve_provider

from tests.helpers import MissingProvider, ScriptProvider

CONTEXT = ProviderContext(model="m-1")


@pytest.mark.parametrize(
    ("provider", "expected"),
    [
        (OpenCodeProvider(), ["opencode", "run", "--agent", "neovim", "-m", "m-1", "PROMPT"]),
        (
            ClaudeCodeProvider(),
            ["claude", "--dangerously-skip-permissions", "--model", "m-1", "--print", "PROMPT"],
        ),
        (CopilotCLIProvider(), ["copilot", "-p", "PROMPT", "--model", "m-1", "--silent", "--yolo"]),
        (
            CodexProvider(),
            ["codex", "exec", "--dangerously-bypass-approvals-and-sandbox", "-m", "m-1", "PROMPT"],
        ),
        (GeminiProvider(), ["gemini", "--yolo", "-m", "m-1", "-p", "PROMPT"]),
    ],
)
def test_build_command_is_pure(provider, expected) -> None:
    first = provider.build_command("PROMPT", CONTEXT)
    second = provider.build_command("PROMPT", CONTEXT)

    assert first == expected
    assert first == second
    assert first is not second


def test_default_models() -> None:
    assert OpenCodeProvider().default_model() == "anthropic/claude-opus-4-6"
    assert ClaudeCodeProvider().default_model() == "claude-opus-4-6"
    assert CopilotCLIProvider().default_model() == "claude-opus-4.6"
    assert CodexProvider().default_model() == "gpt-codex-5.3"
    assert GeminiProvider().default_model() == "gemini-2.5-pro"


def test_provider_kind_accepts_aliases() -> None:
    assert ProviderKind.from_value("Claude_Code") is ProviderKind.CLAUDE
    assert ProviderKind.from_value("copilot-cli") is ProviderKind.COPILOT
    assert get_provider("gemini").name == "gemini"
    with pytest.raises(ValueError, match="Unknown provider"):
        ProviderKind.from_value("cursor")


def test_resolve_provider_precedence(monkeypatch: pytest.MonkeyPatch) -> None:
    custom = ScriptProvider("print('hi')")

    assert resolve_provider(custom, "claude") is custom
    assert resolve_provider("codex", "claude").name == "codex"
    assert resolve_provider(None, "claude").name == "claude"

    monkeypatch.setattr(provider_registry, "detect_provider", lambda order=provider_registry.DETECT_ORDER: None)
    assert resolve_provider().name == "opencode"


def test_detect_provider_follows_detect_order(monkeypatch: pytest.MonkeyPatch) -> None:
    installed = {"gemini", "copilot"}
    monkeypatch.setattr("shutil.which", lambda name: f"/bin/{name}" if name in installed else None)

    detected = provider_registry.detect_provider()
    listing = {kind.value: available for kind, _provider, available in provider_registry.available_providers()}

    assert detected is not None and detected.name == "gemini"
    assert listing == {"opencode": False, "claude": False, "copilot": True, "gemini": True, "codex": False}


def test_missing_executable_raises_before_spawning() -> None:
    provider = MissingProvider()

    with pytest.raises(ProviderNotFound):
        provider.resolve_executable()
    assert provider.is_available() is False


def test_build_env_injects_api_key_only_when_configured() -> None:
    provider = ClaudeCodeProvider()

    assert provider.build_env(ProviderContext(model="m")) is None
    env = provider.build_env(ProviderContext(model="m", api_key="sk-test"))
    assert env is not None
    assert env["ANTHROPIC_API_KEY"] == "sk-test"
    assert env.get("PATH") == os.environ.get("PATH")


def test_make_request_streams_lines_then_exit(tmp_path) -> None:
    script = "import sys\nprint('one')\nprint('two')\nprint('oops', file=sys.stderr)\nsys.exit(3)\n"
    provider = ScriptProvider(script)
    events: list[tuple[str, object]] = []

    async def run() -> None:
        done = asyncio.Event()

        def on_exit(code: int) -> None:
            events.append(("exit", code))
            done.set()

        sinks = ProcessSinks(
            on_stdout_line=lambda line: events.append(("stdout", line)),
            on_stderr_line=lambda line: events.append(("stderr", line)),
            on_exit=on_exit,
        )
        handle = await provider.make_request("prompt", ProviderContext(model="m", cwd=tmp_path), sinks)
        assert handle.pid is not None
        await asyncio.wait_for(done.wait(), timeout=30)
        assert handle.returncode == 3

    asyncio.run(run())

    stdout = [value for kind, value in events if kind == "stdout"]
    assert stdout == ["one", "two"]
    assert ("stderr", "oops") in events
    assert events[-1] == ("exit", 3)


def test_make_request_keeps_very_long_lines_whole(tmp_path) -> None:
    script = (
        "import sys\n"
        "sys.stdout.buffer.write(b'a' * 3_000_000 + b'\\nshort\\r\\n' + '\\u00e9'.encode('utf-8') * 50_000)\n"
    )
    provider = ScriptProvider(script)
    lines: list[str] = []

    async def run() -> None:
        done = asyncio.Event()
        sinks = ProcessSinks(on_stdout_line=lines.append, on_stderr_line=lambda line: None, on_exit=lambda code: done.set())
        await provider.make_request("prompt", ProviderContext(model="m", cwd=tmp_path), sinks)
        await asyncio.wait_for(done.wait(), timeout=30)

    asyncio.run(run())

    assert [len(line) for line in lines] == [3_000_000, 5, 50_000]
    assert lines[1] == "short"
    assert lines[2] == "\u00e9" * 50_000


def test_script_provider_uses_current_interpreter() -> None:
    provider = ScriptProvider("pass")

    assert provider.is_available()
    assert provider.build_command("p", CONTEXT)[0] == sys.executable
