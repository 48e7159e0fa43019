"""Error taxonomy for requests, providers, and reconciliation.

Every failure inside the orchestration core is representable as a terminal
request status plus one of these exceptions as the diagnostic. Spawn-time
errors are raised by providers and converted into ``failed`` completions by
:class:`~ninetynine.orchestration.request.Request`; apply-time errors are
raised by :func:`~ninetynine.orchestration.reconcile.apply` and never change
the status of the request that produced the output.
"""

from __future__ import annotations

from typing import Sequence

__all__ = [
    "NinetyNineError",
    "RequestError",
    "ProviderNotFound",
    "ProcessSpawnError",
    "NonZeroExit",
    "EmptyOutput",
    "RequestTimeout",
    "ApplyError",
    "StaleAnchor",
    "StructureNotFound",
]


class NinetyNineError(Exception):
    """Base class for all package errors."""

    code: str = "error"

    def to_dict(self) -> dict[str, str]:
        return {"error": self.code, "message": str(self)}


class RequestError(NinetyNineError):
    """A request reached ``failed``; carries the diagnostic."""

    code = "request_failed"


class ProviderNotFound(RequestError):
    """The provider's executable is not on ``PATH``; nothing was spawned."""

    code = "provider_not_found"

    def __init__(self, provider: str, executable: str) -> None:
        super().__init__(f"{provider}: executable '{executable}' was not found on PATH")
        self.provider = provider
        self.executable = executable


class ProcessSpawnError(RequestError):
    """The operating system refused to start the provider process."""

    code = "spawn_failed"

    def __init__(self, provider: str, executable: str, cause: BaseException) -> None:
        super().__init__(f"{provider}: failed to spawn '{executable}': {cause}")
        self.provider = provider
        self.executable = executable
        self.cause = cause


class NonZeroExit(RequestError):
    """The provider ran and reported failure through its exit code."""

    code = "non_zero_exit"

    def __init__(self, exit_code: int, stderr: Sequence[str] = ()) -> None:
        self.exit_code = exit_code
        self.stderr = tuple(stderr)
        detail = "\n".join(self.stderr).strip()
        message = f"provider exited with code {exit_code}"
        if detail:
            message = f"{message}\n{detail}"
        super().__init__(message)


class EmptyOutput(RequestError):
    """The provider exited cleanly but produced nothing usable."""

    code = "empty_output"

    def __init__(self) -> None:
        super().__init__("provider exited successfully but produced no output")


class RequestTimeout(RequestError):
    code = "timeout"

    def __init__(self, seconds: float) -> None:
        super().__init__(f"provider did not finish within {seconds:g}s")
        self.seconds = seconds


class ApplyError(NinetyNineError):
    """Reconciliation could not write the response into the document."""

    code = "apply_failed"


class StaleAnchor(ApplyError):
    """The anchor's structure changed before the response could be applied."""

    code = "stale_anchor"


class StructureNotFound(NinetyNineError):
    """The structural locator found nothing to operate on at the cursor."""

    code = "structure_not_found"
