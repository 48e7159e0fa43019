"""Per-request context: the document, its anchors, and provider selection."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, Mapping

from .. import prompts
from ..core.geo import Point, Range
from ..editor.anchors import Anchor
from ..editor.document_model import Document
from ..providers.base import BaseProvider

if TYPE_CHECKING:
    from .registry import RequestRegistry

__all__ = ["AgentRule", "RequestContext"]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class AgentRule:
    """A named rule file whose contents are appended to the prompt."""

    name: str
    path: Path

    @classmethod
    def from_path(cls, path: Path | str) -> AgentRule:
        resolved = Path(path).expanduser()
        return cls(name=resolved.stem, path=resolved)

    def read(self) -> str | None:
        try:
            return self.path.read_text(encoding="utf-8")
        except OSError as exc:
            LOGGER.warning("Skipping agent rule %s (%s): %s", self.name, self.path, exc)
            return None


@dataclass(slots=True)
class RequestContext:
    """Everything a request needs to know about where it is operating."""

    document: Document
    cursor: Point | None = None
    range: Range | None = None
    file_type: str = ""
    full_path: str = ""
    anchors: dict[str, Anchor] = field(default_factory=dict)
    model: str | None = None
    provider_override: BaseProvider | None = None
    provider: BaseProvider | None = None
    agent_rules: list[AgentRule] = field(default_factory=list)
    stdout_rows: int = 3
    tmp_dir: Path | None = None
    timeout: float = 0.0
    cwd: Path | None = None
    api_keys: Mapping[str, str] = field(default_factory=dict)
    registry: RequestRegistry | None = None

    def __post_init__(self) -> None:
        if not self.file_type:
            self.file_type = self.document.file_type
        if not self.full_path and self.document.path is not None:
            self.full_path = str(self.document.path)

    @property
    def target_anchor(self) -> Anchor | None:
        return self.anchors.get("target")

    def api_key_for(self, provider_name: str) -> str | None:
        return self.api_keys.get(provider_name) or None

    def add_agent_rules(self, rules: Iterable[AgentRule | Path | str]) -> None:
        known = {rule.path for rule in self.agent_rules}
        for rule in rules:
            if not isinstance(rule, AgentRule):
                rule = AgentRule.from_path(rule)
            if rule.path in known:
                continue
            known.add(rule.path)
            self.agent_rules.append(rule)

    def clear_marks(self) -> None:
        """Release every anchor held by this context."""

        for anchor in self.anchors.values():
            anchor.release()
        self.anchors.clear()

    def prompt_fragments(self) -> list[str]:
        """Return context fragments: file location, then agent rules."""

        fragments: list[str] = []
        if self.range is not None and self.full_path:
            fragments.append(prompts.file_location(self.full_path, self.range))
        for rule in self.agent_rules:
            content = rule.read()
            if content is None:
                continue
            fragments.append(prompts.agent_rule(rule.name, content))
        return fragments
