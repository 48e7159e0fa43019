"""Request orchestration: lifecycle, registry, and response reconciliation."""

from .reconcile import IMPORTS_MARKER, Applied, ParsedResponse, apply, parse_response
from .context import AgentRule, RequestContext
from .registry import Direction, RequestRegistry
from .request import Request, RequestResult, RequestSinks, RequestStatus

__all__ = [
    "IMPORTS_MARKER",
    "AgentRule",
    "Applied",
    "Direction",
    "ParsedResponse",
    "Request",
    "RequestContext",
    "RequestRegistry",
    "RequestResult",
    "RequestSinks",
    "RequestStatus",
    "apply",
    "parse_response",
]
