"""Editor-side collaborators: documents, anchors, and structural locators."""

from .anchors import Anchor, AnchorPlacement, create_anchor, is_valid, release, replace_text, resolve
from .document_model import Document, LineEdit
from .structure import HeuristicLocator, StructuralLocator, StructuralRange

__all__ = [
    "Anchor",
    "AnchorPlacement",
    "Document",
    "HeuristicLocator",
    "LineEdit",
    "StructuralLocator",
    "StructuralRange",
    "create_anchor",
    "is_valid",
    "release",
    "replace_text",
    "resolve",
]
