"""Shared pytest fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from ninetynine.editor.document_model import Document
from ninetynine.orchestration.context import RequestContext
from ninetynine.orchestration.registry import RequestRegistry
from ninetynine.services.telemetry import InMemoryTelemetrySink

from tests.helpers import ManualProvider

PYTHON_SOURCE = "\n".join(
    [
        "import os",
        "",
        "def foo(x):",
        "    pass",
        "",
        "def bar():",
        "    return foo(1)",
    ]
)


@pytest.fixture
def python_document(tmp_path: Path) -> Document:
    return Document(PYTHON_SOURCE, path=tmp_path / "module.py")


@pytest.fixture
def manual_provider() -> ManualProvider:
    return ManualProvider()


@pytest.fixture
def registry() -> RequestRegistry:
    return RequestRegistry()


@pytest.fixture
def make_context(tmp_path: Path, manual_provider: ManualProvider, registry: RequestRegistry):
    """Factory building a request context wired to the manual provider."""

    def factory(document: Document | None = None, **overrides) -> RequestContext:
        values = {
            "provider": manual_provider,
            "tmp_dir": tmp_path / "tmp",
            "registry": registry,
        }
        values.update(overrides)
        return RequestContext(document=document or Document("x = 1"), **values)

    return factory


@pytest.fixture
def telemetry_sink():
    sink = InMemoryTelemetrySink().attach()
    yield sink
    sink.detach()
