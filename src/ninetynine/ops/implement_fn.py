"""Implement a function that is called at the cursor but does not exist yet."""

from __future__ import annotations

import logging

from .. import prompts
from ..core.geo import Point, Range
from ..editor.anchors import AnchorPlacement, create_anchor
from ..editor.structure import HeuristicLocator, StructuralLocator
from ..errors import StructureNotFound
from ..orchestration import reconcile
from ..orchestration.context import RequestContext
from .base import build_request, start_operation, supersede
from .context import OperationObserver, OpOptions, Operation

__all__ = ["implement_fn"]

LOGGER = logging.getLogger(__name__)


def implement_fn(
    context: RequestContext,
    opts: OpOptions | None = None,
    *,
    locator: StructuralLocator | None = None,
    observer: OperationObserver | None = None,
    display_errors: bool = False,
) -> Operation:
    """Generate the function called at the cursor and insert it above its caller."""

    opts = opts or OpOptions()
    locator = locator or HeuristicLocator()
    document = context.document
    cursor = context.cursor or Point(0, 0)
    call = locator.call_expression_at(document, cursor)
    if call is None:
        raise StructureNotFound(f"Cursor at {cursor.human()} is not on a function call")

    caller = locator.containing_structure(document, call.range.start)
    if caller is not None:
        placement = caller.range
    else:
        row = call.range.start.row
        placement = Range.from_rows(row, row, end_col=len(document.line(row)))
    LOGGER.debug("implement_fn: %s called at %s, inserting above %s", call.name, call.range.human(), placement.human())

    context.range = placement
    supersede(context, placement)
    context.anchors["call_end"] = create_anchor(document, call.range.end)
    context.anchors["target"] = create_anchor(document, placement, AnchorPlacement.ABOVE_NODE)

    request = build_request(context, prompts.implement_function(context.file_type), opts)
    request.add_prompt_content(prompts.range_text(document.text_in(call.range)))

    return start_operation(
        "implement_fn",
        context,
        request,
        lambda output: reconcile.apply(request, output, pad_insert=True),
        opts=opts,
        observer=observer,
        display_errors=display_errors,
    )
