"""Concrete providers for the supported AI coding command-line tools."""

from __future__ import annotations

from .base import BaseProvider, ProviderContext

__all__ = [
    "ClaudeCodeProvider",
    "CodexProvider",
    "CopilotCLIProvider",
    "GeminiProvider",
    "OpenCodeProvider",
]


class OpenCodeProvider(BaseProvider):
    name = "opencode"
    executable = "opencode"

    def build_command(self, prompt: str, context: ProviderContext) -> list[str]:
        return [self.executable, "run", "--agent", "neovim", "-m", context.model, prompt]

    def default_model(self) -> str:
        return "anthropic/claude-opus-4-6"


class ClaudeCodeProvider(BaseProvider):
    name = "claude"
    executable = "claude"
    api_key_env = "ANTHROPIC_API_KEY"

    def build_command(self, prompt: str, context: ProviderContext) -> list[str]:
        return [
            self.executable,
            "--dangerously-skip-permissions",
            "--model",
            context.model,
            "--print",
            prompt,
        ]

    def default_model(self) -> str:
        return "claude-opus-4-6"


class CopilotCLIProvider(BaseProvider):
    name = "copilot"
    executable = "copilot"
    api_key_env = "GITHUB_TOKEN"

    def build_command(self, prompt: str, context: ProviderContext) -> list[str]:
        return [self.executable, "-p", prompt, "--model", context.model, "--silent", "--yolo"]

    def default_model(self) -> str:
        return "claude-opus-4.6"


class CodexProvider(BaseProvider):
    name = "codex"
    executable = "codex"
    api_key_env = "OPENAI_API_KEY"

    def build_command(self, prompt: str, context: ProviderContext) -> list[str]:
        return [
            self.executable,
            "exec",
            "--dangerously-bypass-approvals-and-sandbox",
            "-m",
            context.model,
            prompt,
        ]

    def default_model(self) -> str:
        return "gpt-codex-5.3"


class GeminiProvider(BaseProvider):
    name = "gemini"
    executable = "gemini"
    api_key_env = "GEMINI_API_KEY"

    def build_command(self, prompt: str, context: ProviderContext) -> list[str]:
        return [self.executable, "--yolo", "-m", context.model, "-p", prompt]

    def default_model(self) -> str:
        return "gemini-2.5-pro"
