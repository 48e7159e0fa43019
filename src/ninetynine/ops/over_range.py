"""Replace a visual selection with provider output."""

from __future__ import annotations

from .. import prompts
from ..core.geo import Range
from ..editor.anchors import AnchorPlacement, create_anchor
from ..orchestration import reconcile
from ..orchestration.context import RequestContext
from .base import build_request, start_operation, supersede
from .context import OperationObserver, OpOptions, Operation

__all__ = ["over_range"]


def over_range(
    context: RequestContext,
    selection: Range,
    opts: OpOptions | None = None,
    *,
    observer: OperationObserver | None = None,
    display_errors: bool = False,
) -> Operation:
    opts = opts or OpOptions()
    document = context.document
    context.range = selection
    supersede(context, selection)
    context.anchors["target"] = create_anchor(document, selection, AnchorPlacement.AT_START)

    template = prompts.visual_selection(
        selection,
        context.file_type,
        document.text_in(selection),
        document.text(),
    )
    request = build_request(context, template, opts)

    return start_operation(
        "over_range",
        context,
        request,
        lambda output: reconcile.apply(request, output),
        opts=opts,
        observer=observer,
        display_errors=display_errors,
    )
