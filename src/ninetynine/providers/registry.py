"""Provider selection: the closed set of variants and how one gets picked."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Iterable

from .base import BaseProvider
from .cli import ClaudeCodeProvider, CodexProvider, CopilotCLIProvider, GeminiProvider, OpenCodeProvider

__all__ = [
    "DETECT_ORDER",
    "ProviderKind",
    "available_providers",
    "detect_provider",
    "get_provider",
    "resolve_provider",
]

LOGGER = logging.getLogger(__name__)


class ProviderKind(str, Enum):
    OPENCODE = "opencode"
    CLAUDE = "claude"
    COPILOT = "copilot"
    GEMINI = "gemini"
    CODEX = "codex"

    @classmethod
    def from_value(cls, value: ProviderKind | str) -> ProviderKind:
        """Normalize a configured provider name, accepting a few common aliases."""

        if isinstance(value, ProviderKind):
            return value
        key = str(value).strip().lower().replace("_", "-")
        alias = _ALIASES.get(key, key)
        try:
            return cls(alias)
        except ValueError as exc:
            choices = ", ".join(kind.value for kind in cls)
            raise ValueError(f"Unknown provider '{value}'. Expected one of: {choices}") from exc


_ALIASES = {
    "claude-code": "claude",
    "claudecode": "claude",
    "claudecodeprovider": "claude",
    "anthropic": "claude",
    "open-code": "opencode",
    "opencodeprovider": "opencode",
    "copilot-cli": "copilot",
    "copilotcli": "copilot",
    "copilotcliprovider": "copilot",
    "github-copilot": "copilot",
    "openai-codex": "codex",
    "codexprovider": "codex",
    "gemini-cli": "gemini",
    "geminiprovider": "gemini",
}

_PROVIDERS: dict[ProviderKind, BaseProvider] = {
    ProviderKind.OPENCODE: OpenCodeProvider(),
    ProviderKind.CLAUDE: ClaudeCodeProvider(),
    ProviderKind.COPILOT: CopilotCLIProvider(),
    ProviderKind.GEMINI: GeminiProvider(),
    ProviderKind.CODEX: CodexProvider(),
}

DETECT_ORDER: tuple[ProviderKind, ...] = (
    ProviderKind.OPENCODE,
    ProviderKind.CLAUDE,
    ProviderKind.CODEX,
    ProviderKind.GEMINI,
    ProviderKind.COPILOT,
)


def get_provider(kind: ProviderKind | str) -> BaseProvider:
    """Return the shared provider instance for ``kind``."""

    return _PROVIDERS[ProviderKind.from_value(kind)]


def available_providers() -> list[tuple[ProviderKind, BaseProvider, bool]]:
    """Return every provider with whether its executable is on ``PATH``."""

    return [(kind, _PROVIDERS[kind], _PROVIDERS[kind].is_available()) for kind in ProviderKind]


def detect_provider(order: Iterable[ProviderKind] = DETECT_ORDER) -> BaseProvider | None:
    for kind in order:
        provider = _PROVIDERS[kind]
        if provider.is_available():
            LOGGER.debug("Auto-detected provider %s", provider.name)
            return provider
    return None


def resolve_provider(
    explicit: BaseProvider | ProviderKind | str | None = None,
    configured: ProviderKind | str | None = None,
) -> BaseProvider:
    """Pick a provider: explicit, then configured, then auto-detected, then opencode."""

    if isinstance(explicit, BaseProvider):
        return explicit
    if explicit:
        return get_provider(explicit)
    if configured:
        return get_provider(configured)
    detected = detect_provider()
    if detected is not None:
        return detected
    LOGGER.debug("No provider executable found; falling back to opencode")
    return _PROVIDERS[ProviderKind.OPENCODE]
