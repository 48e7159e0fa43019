"""Start/finish plumbing shared by fill-in-function, implement-fn and over-range."""

from __future__ import annotations

import logging
from typing import Callable

from .. import prompts
from ..core.geo import Range
from ..errors import ApplyError
from ..orchestration.context import RequestContext
from ..orchestration.reconcile import Applied
from ..orchestration.request import Request, RequestSinks, RequestStatus
from ..services.telemetry import emit
from .cleanup import make_clean_up
from .context import LoggingObserver, OperationObserver, OperationOutcome, OpOptions, Operation

__all__ = ["build_request", "start_operation", "supersede"]

LOGGER = logging.getLogger(__name__)


def supersede(context: RequestContext, span: Range) -> int:
    """Cancel active requests on the same document whose target overlaps ``span``."""

    registry = context.registry
    if registry is None:
        return 0
    cancelled = 0
    for request in registry.overlapping(context.document, span):
        if request.cancel():
            LOGGER.info("Request %s superseded by a new request over %s", request.id, span.human())
            cancelled += 1
    return cancelled


def build_request(context: RequestContext, template: str, opts: OpOptions) -> Request:
    """Create a request carrying the operation template and caller options."""

    if opts.additional_rules:
        context.add_agent_rules(opts.additional_rules)
    if opts.additional_prompt:
        template = prompts.directions(opts.additional_prompt, template)
    request = Request(context)
    request.add_prompt_content(template)
    return request


def start_operation(
    name: str,
    context: RequestContext,
    request: Request,
    apply_result: Callable[[str], Applied],
    *,
    opts: OpOptions,
    observer: OperationObserver | None = None,
    display_errors: bool = False,
) -> Operation:
    """Start ``request`` and wire completion into apply, cleanup and the handle."""

    observer = observer or LoggingObserver()
    clean_up = make_clean_up(context, request, name)
    operation = Operation(name=name, request=request, clean_up=clean_up)

    def report(message: str) -> None:
        if display_errors:
            _notify(observer.display_error, request, message)

    def finalize(status: RequestStatus, output: str | None) -> None:
        outcome = OperationOutcome(status=status, error=request.error, output=output)
        try:
            if status is RequestStatus.SUCCESS and output is not None:
                try:
                    applied = apply_result(output)
                except ApplyError as exc:
                    LOGGER.error("%s: failed to apply changes from request %s: %s", name, request.id, exc)
                    emit("operation.apply_failed", {"operation": name, "request_id": request.id, "error": exc.code})
                    report(f"Failed to apply changes: {exc}")
                    outcome = OperationOutcome(status=status, error=exc, output=output)
                except Exception as exc:
                    LOGGER.exception("%s: unexpected error applying request %s", name, request.id)
                    emit("operation.apply_failed", {"operation": name, "request_id": request.id, "error": "unexpected"})
                    report(f"Failed to apply changes: {exc}")
                    outcome = OperationOutcome(
                        status=status,
                        error=ApplyError(str(exc)),
                        output=output,
                    )
                else:
                    emit(
                        "operation.applied",
                        {
                            "operation": name,
                            "request_id": request.id,
                            "preamble_lines": len(applied.inserted_preamble),
                        },
                    )
                    outcome = OperationOutcome(status=status, applied=applied, output=output)
            elif status is RequestStatus.FAILED:
                LOGGER.error("%s: request %s failed: %s", name, request.id, output)
                report(f"Error encountered while processing {name}\n{output or 'No error text provided. Check logs'}")
            else:
                LOGGER.debug("%s: request %s was cancelled", name, request.id)
        finally:
            clean_up()
            operation.resolve(outcome)

    def on_complete(status: RequestStatus, output: str | None) -> None:
        _notify(observer.on_complete, request, status, output)
        context.document.schedule(finalize, status, output)

    sinks = RequestSinks(
        on_stdout=lambda line: observer.on_stdout(request, line),
        on_stderr=lambda line: observer.on_stderr(request, line),
        on_complete=on_complete,
    )
    request.start(sinks, provider=opts.provider)
    return operation


def _notify(callback: Callable[..., None], *args: object) -> None:
    try:
        callback(*args)
    except Exception:
        LOGGER.exception("Operation observer %s failed", getattr(callback, "__qualname__", callback))
