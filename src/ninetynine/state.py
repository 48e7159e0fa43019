"""Process-wide entry point tying settings, providers, and the registry together."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any

from .core.geo import Point, Range
from .editor.document_model import Document
from .editor.structure import HeuristicLocator, StructuralLocator
from .ops import OpOptions, Operation, OperationObserver, fill_in_function, implement_fn, over_range
from .orchestration.context import AgentRule, RequestContext
from .orchestration.registry import Direction, RequestRegistry
from .orchestration.request import Request, RequestStatus
from .providers.base import BaseProvider
from .providers.registry import ProviderKind, get_provider, resolve_provider
from .services.settings import Settings

__all__ = ["NinetyNine"]

LOGGER = logging.getLogger(__name__)


class NinetyNine:
    """Owns the request registry and builds contexts for operations."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        provider: BaseProvider | ProviderKind | str | None = None,
        model: str | None = None,
        locator: StructuralLocator | None = None,
        observer: OperationObserver | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self.provider_override: BaseProvider | None = (
            provider if isinstance(provider, BaseProvider) else get_provider(provider) if provider else None
        )
        self.provider = resolve_provider(self.provider_override, self.settings.provider)
        self.model = model or self.settings.model or self.provider.default_model()
        self.locator = locator or HeuristicLocator()
        self.observer = observer
        limit = self.settings.request_history_limit
        self.registry = RequestRegistry(max_history=limit if limit and limit > 0 else None)
        self.agent_rules = [AgentRule.from_path(path) for path in self.settings.agent_rules]
        self._operations: list[Operation] = []
        self._lock = threading.Lock()
        LOGGER.debug("NinetyNine ready: provider=%s model=%s", self.provider.name, self.model)

    # ------------------------------------------------------------------
    # Contexts
    # ------------------------------------------------------------------

    def new_context(self, document: Document, cursor: Point | None = None) -> RequestContext:
        settings = self.settings
        context = RequestContext(
            document=document,
            cursor=cursor,
            model=self.model,
            provider_override=self.provider_override,
            provider=self.provider,
            stdout_rows=settings.ai_stdout_rows,
            tmp_dir=Path(settings.tmp_dir).expanduser() if settings.tmp_dir else None,
            timeout=settings.request_timeout,
            cwd=document.path.parent if document.path is not None else None,
            api_keys=dict(settings.provider_api_keys),
            registry=self.registry,
        )
        context.add_agent_rules(self.agent_rules)
        return context

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def fill_in_function(self, document: Document, cursor: Point, opts: OpOptions | None = None) -> Operation:
        context = self.new_context(document, cursor)
        operation = fill_in_function(context, opts, locator=self.locator, **self._op_kwargs())
        return self._track(operation)

    def implement_fn(self, document: Document, cursor: Point, opts: OpOptions | None = None) -> Operation:
        context = self.new_context(document, cursor)
        operation = implement_fn(context, opts, locator=self.locator, **self._op_kwargs())
        return self._track(operation)

    def visual(self, document: Document, selection: Range, opts: OpOptions | None = None) -> Operation:
        context = self.new_context(document, selection.start)
        operation = over_range(context, selection, opts, **self._op_kwargs())
        return self._track(operation)

    def _op_kwargs(self) -> dict[str, Any]:
        return {"observer": self.observer, "display_errors": self.settings.display_errors}

    def _track(self, operation: Operation) -> Operation:
        with self._lock:
            self._operations = [op for op in self._operations if not op.done]
            self._operations.append(operation)
        return operation

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def stop_all_requests(self) -> int:
        """Cancel every in-flight request and run each operation's cleanup."""

        active = self.registry.active()
        with self._lock:
            operations, self._operations = self._operations, []
        for operation in operations:
            operation.cancel()
        self.registry.cancel_all()
        return sum(1 for request in active if request.status is RequestStatus.CANCELLED)

    def clear_history(self) -> int:
        return self.registry.clear_history()

    def latest_request(self) -> Request | None:
        return self.registry.latest()

    def navigate_requests(self, current: Request | int, direction: Direction) -> Request | None:
        index = current if isinstance(current, int) else self.registry.index_of(current)
        if index is None:
            return None
        return self.registry.navigate(index, direction)

    def shutdown(self) -> int:
        cancelled = self.stop_all_requests()
        self.registry.shutdown()
        return cancelled
