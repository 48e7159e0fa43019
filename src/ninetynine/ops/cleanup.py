"""Idempotent teardown shared by every operation."""

from __future__ import annotations

import logging
import threading
from typing import Callable

from ..orchestration.context import RequestContext
from ..orchestration.request import Request

__all__ = ["make_clean_up"]

LOGGER = logging.getLogger(__name__)


def make_clean_up(
    context: RequestContext,
    request: Request,
    name: str,
    extra: Callable[[], None] | None = None,
) -> Callable[[], None]:
    """Return a callable that releases anchors and cancels ``request`` once.

    Later calls are no-ops, so both the completion path and a user-initiated
    stop can call it without coordinating.
    """

    lock = threading.Lock()
    state = {"called": False}

    def clean_up() -> None:
        with lock:
            if state["called"]:
                return
            state["called"] = True
        LOGGER.debug("Cleaning up %s (request %s)", name, request.id)
        request.cancel()
        context.document.schedule(context.clear_marks)
        if extra is not None:
            extra()

    return clean_up
