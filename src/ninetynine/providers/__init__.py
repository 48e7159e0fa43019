"""Providers turn a prompt into a running AI command-line process."""

from .base import BaseProvider, ProcessSinks, ProviderContext, SubprocessHandle
from .cli import ClaudeCodeProvider, CodexProvider, CopilotCLIProvider, GeminiProvider, OpenCodeProvider
from .registry import ProviderKind, available_providers, detect_provider, get_provider, resolve_provider

__all__ = [
    "BaseProvider",
    "ClaudeCodeProvider",
    "CodexProvider",
    "CopilotCLIProvider",
    "GeminiProvider",
    "OpenCodeProvider",
    "ProcessSinks",
    "ProviderContext",
    "ProviderKind",
    "SubprocessHandle",
    "available_providers",
    "detect_provider",
    "get_provider",
    "resolve_provider",
]
