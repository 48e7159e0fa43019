"""End-to-end tests for the editor operations against a manual provider."""

from __future__ import annotations

import asyncio

import pytest

from ninetynine.core.geo import Point, Range
from ninetynine.editor.anchors import create_anchor
from ninetynine.editor.document_model import Document
from ninetynine.errors import NonZeroExit, StaleAnchor, StructureNotFound
from ninetynine.ops import OpOptions, fill_in_function, implement_fn, over_range
from ninetynine.ops.cleanup import make_clean_up
from ninetynine.orchestration.reconcile import IMPORTS_MARKER
from ninetynine.orchestration.request import Request, RequestStatus

from tests.helpers import settle


class RecordingObserver:
    def __init__(self) -> None:
        self.stdout: list[str] = []
        self.completed: list[RequestStatus] = []
        self.errors: list[str] = []

    def on_stdout(self, request: Request, line: str) -> None:
        self.stdout.append(line)

    def on_stderr(self, request: Request, line: str) -> None:
        pass

    def on_complete(self, request: Request, status: RequestStatus, output: str | None) -> None:
        self.completed.append(status)

    def display_error(self, request: Request, message: str) -> None:
        self.errors.append(message)


def test_fill_in_function_rewrites_the_function(python_document, make_context, manual_provider, telemetry_sink) -> None:
    observer = RecordingObserver()

    async def run():
        python_document.bind_loop(asyncio.get_running_loop())
        context = make_context(python_document, cursor=Point(3, 4))
        operation = fill_in_function(context, observer=observer)
        await settle()
        manual_provider.last.stdout("def foo(x):", "    return x * 2")
        manual_provider.last.exit(0)
        outcome = await operation.wait()
        return context, outcome

    context, outcome = asyncio.run(run())

    assert outcome.ok
    assert outcome.applied is not None and outcome.applied.body_range == Range(Point(2, 0), Point(3, 16))
    assert python_document.get_lines() == [
        "import os",
        "",
        "def foo(x):",
        "    return x * 2",
        "",
        "def bar():",
        "    return foo(1)",
    ]
    assert context.anchors == {}
    assert python_document.anchors() == ()
    assert observer.stdout == ["def foo(x):", "    return x * 2"]
    assert observer.completed == [RequestStatus.SUCCESS]
    prompt = manual_provider.prompts[0]
    assert "<FunctionText>\ndef foo(x):\n    pass\n</FunctionText>" in prompt
    assert f"<File>{python_document.path}</File><Lines>3-4</Lines>" in prompt
    assert "operation.applied" in telemetry_sink.names()


def test_fill_in_function_merges_imports(python_document, make_context, manual_provider) -> None:
    async def run():
        python_document.bind_loop(asyncio.get_running_loop())
        operation = fill_in_function(make_context(python_document, cursor=Point(2, 0)))
        await settle()
        manual_provider.last.stdout("import re", IMPORTS_MARKER, "def foo(x):", "    return re.escape(x)")
        manual_provider.last.exit(0)
        return await operation.wait()

    outcome = asyncio.run(run())

    assert outcome.ok
    assert outcome.applied is not None and outcome.applied.inserted_preamble == ("import re",)
    assert python_document.get_lines()[:5] == ["import os", "import re", "", "def foo(x):", "    return re.escape(x)"]


def test_fill_in_function_wraps_additional_directions(python_document, make_context, manual_provider) -> None:
    async def run():
        operation = fill_in_function(
            make_context(python_document, cursor=Point(3, 0)),
            OpOptions(additional_prompt="use recursion"),
        )
        await settle()
        operation.cancel()
        return await operation.wait()

    outcome = asyncio.run(run())

    assert outcome.status is RequestStatus.CANCELLED
    assert "<DIRECTIONS>\nuse recursion\n</DIRECTIONS>" in manual_provider.prompts[0]
    assert python_document.get_lines()[3] == "    pass"


def test_fill_in_function_without_structure_raises(python_document, make_context, registry) -> None:
    with pytest.raises(StructureNotFound):
        fill_in_function(make_context(python_document, cursor=Point(1, 0)))

    assert registry.all() == []
    assert python_document.anchors() == ()


def test_failed_request_reports_and_leaves_document(python_document, make_context, manual_provider) -> None:
    observer = RecordingObserver()
    before = python_document.get_lines()

    async def run():
        python_document.bind_loop(asyncio.get_running_loop())
        context = make_context(python_document, cursor=Point(3, 0))
        operation = fill_in_function(context, observer=observer, display_errors=True)
        await settle()
        manual_provider.last.stdout("def foo(x):", "    return 0")
        manual_provider.last.stderr("quota exceeded")
        manual_provider.last.exit(1)
        return context, await operation.wait()

    context, outcome = asyncio.run(run())

    assert outcome.status is RequestStatus.FAILED
    assert isinstance(outcome.error, NonZeroExit)
    assert outcome.applied is None
    assert python_document.get_lines() == before
    assert context.anchors == {}
    assert len(observer.errors) == 1
    assert "quota exceeded" in observer.errors[0]


def test_apply_failure_on_stale_anchor(python_document, make_context, manual_provider, telemetry_sink) -> None:
    observer = RecordingObserver()

    async def run():
        python_document.bind_loop(asyncio.get_running_loop())
        operation = fill_in_function(
            make_context(python_document, cursor=Point(3, 0)),
            observer=observer,
            display_errors=True,
        )
        await settle()
        python_document.set_lines(2, 4, [])
        manual_provider.last.stdout("def foo(x):", "    return 0")
        manual_provider.last.exit(0)
        return await operation.wait()

    outcome = asyncio.run(run())

    assert outcome.status is RequestStatus.SUCCESS
    assert not outcome.ok
    assert isinstance(outcome.error, StaleAnchor)
    assert python_document.get_lines() == ["import os", "", "", "def bar():", "    return foo(1)"]
    assert "operation.apply_failed" in telemetry_sink.names()
    assert observer.errors and observer.errors[0].startswith("Failed to apply changes")


def test_new_operation_supersedes_overlapping_request(python_document, make_context, manual_provider) -> None:
    async def run():
        python_document.bind_loop(asyncio.get_running_loop())
        first = fill_in_function(make_context(python_document, cursor=Point(3, 0)))
        await settle()
        second = fill_in_function(make_context(python_document, cursor=Point(2, 0)))
        await settle()
        manual_provider.handles[1].stdout("def foo(x):", "    return 2")
        manual_provider.handles[1].exit(0)
        return await first.wait(), await second.wait()

    first, second = asyncio.run(run())

    assert first.status is RequestStatus.CANCELLED
    assert manual_provider.handles[0].killed
    assert second.ok
    assert python_document.get_lines()[3] == "    return 2"


def test_concurrent_fills_land_on_their_own_functions(make_context, manual_provider) -> None:
    document = Document.from_lines(
        ["import os", "", "def a():", "    pass", "", "def b():", "    pass"], file_type="python"
    )

    async def run():
        document.bind_loop(asyncio.get_running_loop())
        first = fill_in_function(make_context(document, cursor=Point(3, 4)))
        second = fill_in_function(make_context(document, cursor=Point(6, 4)))
        await settle()
        assert not manual_provider.handles[0].killed
        manual_provider.handles[1].stdout("import sys", "import re", IMPORTS_MARKER, "def b():", "    return 2")
        manual_provider.handles[1].exit(0)
        second_outcome = await second.wait()
        manual_provider.handles[0].stdout("def a():", "    return 1")
        manual_provider.handles[0].exit(0)
        return await first.wait(), second_outcome

    first, second = asyncio.run(run())

    assert second.ok and first.ok
    assert first.applied is not None and first.applied.body_range.rows == (4, 5)
    assert document.get_lines() == [
        "import os",
        "import sys",
        "import re",
        "",
        "def a():",
        "    return 1",
        "",
        "def b():",
        "    return 2",
    ]


def test_implement_fn_inserts_above_the_caller(make_context, manual_provider) -> None:
    document = Document.from_lines(["def bar():", "    return helper(1)"], file_type="python")

    async def run():
        document.bind_loop(asyncio.get_running_loop())
        context = make_context(document, cursor=Point(1, 12))
        operation = implement_fn(context)
        await settle()
        assert context.anchors["call_end"].position() == Point(1, 20)
        manual_provider.last.stdout("def helper(x):", "    return x")
        manual_provider.last.exit(0)
        return await operation.wait()

    outcome = asyncio.run(run())

    assert outcome.ok
    assert document.get_lines() == ["def helper(x):", "    return x", "", "def bar():", "    return helper(1)"]
    assert "<FunctionText>\nhelper(1)\n</FunctionText>" in manual_provider.prompts[0]


def test_implement_fn_supersedes_requests_on_the_same_caller(make_context, manual_provider) -> None:
    document = Document.from_lines(["def bar():", "    return helper(1) + other(2)"], file_type="python")

    async def run():
        document.bind_loop(asyncio.get_running_loop())
        first = implement_fn(make_context(document, cursor=Point(1, 12)))
        await settle()
        second = implement_fn(make_context(document, cursor=Point(1, 24)))
        await settle()
        manual_provider.handles[1].stdout("def other(y):", "    return y")
        manual_provider.handles[1].exit(0)
        return await first.wait(), await second.wait()

    first, second = asyncio.run(run())

    assert first.status is RequestStatus.CANCELLED
    assert manual_provider.handles[0].killed
    assert second.ok
    assert document.get_lines()[:3] == ["def other(y):", "    return y", ""]
    assert "<FunctionText>\nother(2)\n</FunctionText>" in manual_provider.prompts[1]


def test_implement_fn_at_module_level_inserts_above_the_call_line(make_context, manual_provider) -> None:
    document = Document.from_lines(["x = 1", "print(compute(x))"], file_type="python")

    async def run():
        document.bind_loop(asyncio.get_running_loop())
        operation = implement_fn(make_context(document, cursor=Point(1, 8)))
        await settle()
        manual_provider.last.stdout("def compute(v):", "    return v")
        manual_provider.last.exit(0)
        return await operation.wait()

    outcome = asyncio.run(run())

    assert outcome.ok
    assert document.get_lines() == ["x = 1", "def compute(v):", "    return v", "", "print(compute(x))"]


def test_implement_fn_requires_a_call(make_context) -> None:
    document = Document.from_lines(["x = 1"], file_type="python")

    with pytest.raises(StructureNotFound):
        implement_fn(make_context(document, cursor=Point(0, 0)))


def test_over_range_replaces_the_selection(make_context, manual_provider) -> None:
    document = Document.from_lines(["a = 1", "# TODO: add b and c", "# here", "print(a)"], file_type="python")
    selection = Range.from_rows(1, 2, end_col=6)

    async def run():
        document.bind_loop(asyncio.get_running_loop())
        operation = over_range(make_context(document), selection)
        await settle()
        manual_provider.last.stdout("b = 2", "c = 3")
        manual_provider.last.exit(0)
        return await operation.wait()

    outcome = asyncio.run(run())

    assert outcome.ok
    assert document.get_lines() == ["a = 1", "b = 2", "c = 3", "print(a)"]
    prompt = manual_provider.prompts[0]
    assert "<SELECTION_CONTENT>\n# TODO: add b and c\n# here\n</SELECTION_CONTENT>" in prompt
    assert "<SELECTION_LOCATION>\nLines 2:0 to 3:6\n</SELECTION_LOCATION>" in prompt


def test_clean_up_runs_once(python_document, make_context) -> None:
    extra_calls: list[int] = []

    async def run():
        context = make_context(python_document)
        context.anchors["target"] = create_anchor(python_document, Range.from_rows(2, 3, end_col=8))
        request = Request(context)
        clean_up = make_clean_up(context, request, "test", extra=lambda: extra_calls.append(1))
        clean_up()
        clean_up()
        return context, request

    context, request = asyncio.run(run())

    assert request.status is RequestStatus.CANCELLED
    assert context.anchors == {}
    assert extra_calls == [1]
