"""Tests for the process-wide NinetyNine state object."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from ninetynine.core.geo import Point, Range
from ninetynine.editor.document_model import Document
from ninetynine.orchestration.registry import Direction
from ninetynine.orchestration.request import RequestStatus
from ninetynine.services.settings import Settings
from ninetynine.state import NinetyNine

from tests.helpers import ManualProvider, settle


def _source(tmp_path: Path) -> Document:
    return Document.from_lines(
        ["def one():", "    pass", "", "def two():", "    pass"],
        path=tmp_path / "funcs.py",
    )


def test_model_precedence() -> None:
    provider = ManualProvider(model="provider-default")

    assert NinetyNine(provider=provider).model == "provider-default"
    assert NinetyNine(Settings(model="from-settings"), provider=provider).model == "from-settings"
    assert NinetyNine(Settings(model="from-settings"), provider=provider, model="explicit").model == "explicit"


def test_provider_names_resolve_to_shared_instances() -> None:
    app = NinetyNine(Settings(provider="gemini"))

    assert app.provider.name == "gemini"
    assert app.provider_override is None
    assert NinetyNine(provider="claude").provider_override is not None

    with pytest.raises(ValueError):
        NinetyNine(provider="nope")


def test_new_context_carries_settings(tmp_path: Path) -> None:
    rule = tmp_path / "style.md"
    rule.write_text("Prefer pathlib.", encoding="utf-8")
    settings = Settings(
        ai_stdout_rows=5,
        request_timeout=12.5,
        tmp_dir=str(tmp_path / "scratch"),
        provider_api_keys={"manual": "k"},
        agent_rules=[str(rule)],
    )
    app = NinetyNine(settings, provider=ManualProvider())
    document = _source(tmp_path)

    context = app.new_context(document, Point(1, 0))

    assert context.stdout_rows == 5
    assert context.timeout == 12.5
    assert context.tmp_dir == tmp_path / "scratch"
    assert context.cwd == tmp_path
    assert context.api_key_for("manual") == "k"
    assert context.registry is app.registry
    assert [rule.name for rule in context.agent_rules] == ["style"]
    context.range = Range.from_rows(0, 1)
    assert '<Rule name="style">\nPrefer pathlib.\n</Rule>' in context.prompt_fragments()


def test_history_limit_caps_the_registry() -> None:
    assert NinetyNine(Settings(request_history_limit=3), provider=ManualProvider()).registry.max_history == 3
    assert NinetyNine(Settings(request_history_limit=0), provider=ManualProvider()).registry.max_history is None


def test_stop_all_requests_cancels_and_cleans_up(tmp_path: Path) -> None:
    provider = ManualProvider()
    app = NinetyNine(Settings(tmp_dir=str(tmp_path)), provider=provider)
    document = _source(tmp_path)

    async def run():
        document.bind_loop(asyncio.get_running_loop())
        first = app.fill_in_function(document, Point(1, 0))
        second = app.fill_in_function(document, Point(4, 0))
        await settle()
        stopped = app.stop_all_requests()
        return stopped, await first.wait(), await second.wait()

    stopped, first, second = asyncio.run(run())

    assert stopped == 2
    assert first.status is RequestStatus.CANCELLED
    assert second.status is RequestStatus.CANCELLED
    assert document.anchors() == ()
    assert app.registry.active() == []
    assert app.stop_all_requests() == 0


def test_history_navigation_and_clear(tmp_path: Path) -> None:
    provider = ManualProvider()
    app = NinetyNine(Settings(tmp_dir=str(tmp_path)), provider=provider)
    document = _source(tmp_path)

    async def run():
        document.bind_loop(asyncio.get_running_loop())
        first = app.fill_in_function(document, Point(1, 0))
        await settle()
        provider.last.stdout("def one():", "    return 1")
        provider.last.exit(0)
        await first.wait()
        second = app.visual(document, Range.from_rows(3, 4, end_col=8))
        await settle()
        return first, second

    first, second = asyncio.run(run())

    assert app.latest_request() is second.request
    assert app.navigate_requests(second.request, Direction.PREVIOUS) is first.request
    assert app.navigate_requests(0, Direction.NEXT) is second.request
    assert app.navigate_requests(second.request, Direction.NEXT) is None
    assert app.clear_history() == 1
    assert app.registry.all() == [second.request]
    assert app.shutdown() == 1
    assert second.request.status is RequestStatus.CANCELLED
