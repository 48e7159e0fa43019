"""Rewrite the function surrounding the cursor."""

from __future__ import annotations

import logging

from .. import prompts
from ..core.geo import Point
from ..editor.anchors import Anchor, AnchorPlacement, create_anchor
from ..editor.structure import HeuristicLocator, StructuralLocator
from ..errors import StructureNotFound
from ..orchestration import reconcile
from ..orchestration.context import RequestContext
from .base import build_request, start_operation, supersede
from .context import OperationObserver, OpOptions, Operation

__all__ = ["fill_in_function"]

LOGGER = logging.getLogger(__name__)


def fill_in_function(
    context: RequestContext,
    opts: OpOptions | None = None,
    *,
    locator: StructuralLocator | None = None,
    observer: OperationObserver | None = None,
    display_errors: bool = False,
) -> Operation:
    """Ask the provider to complete the function containing ``context.cursor``.

    The function's range is anchored so the response lands on it even if the
    user keeps editing elsewhere. Before writing, the function is located
    again at the anchor; a mismatch raises :class:`StaleAnchor` and the
    document is left untouched.
    """

    opts = opts or OpOptions()
    locator = locator or HeuristicLocator()
    document = context.document
    cursor = context.cursor or Point(0, 0)
    found = locator.containing_structure(document, cursor)
    if found is None:
        raise StructureNotFound(
            f"No function found at {cursor.human()} (file type: {context.file_type or 'unknown'})"
        )
    LOGGER.debug("fill_in_function: %s %s at %s", found.kind, found.name, found.range.human())

    context.range = found.range
    supersede(context, found.range)
    context.anchors["target"] = create_anchor(document, found.range, AnchorPlacement.AT_START)

    request = build_request(context, prompts.fill_in_function(context.file_type), opts)
    request.add_prompt_content(prompts.range_text(document.text_in(found.range)))

    def verify(anchor: Anchor) -> bool:
        start = anchor.position()
        if start is None:
            return False
        located = locator.containing_structure(document, start)
        return located is not None and located.range.start.row == start.row

    return start_operation(
        "fill_in_function",
        context,
        request,
        lambda output: reconcile.apply(request, output, verify=verify),
        opts=opts,
        observer=observer,
        display_errors=display_errors,
    )
