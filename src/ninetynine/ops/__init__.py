"""Editor operations built on top of the request engine."""

from .context import LoggingObserver, OpOptions, Operation, OperationObserver, OperationOutcome
from .fill_in_function import fill_in_function
from .implement_fn import implement_fn
from .over_range import over_range

__all__ = [
    "LoggingObserver",
    "OpOptions",
    "Operation",
    "OperationObserver",
    "OperationOutcome",
    "fill_in_function",
    "implement_fn",
    "over_range",
]
