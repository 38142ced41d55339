"""Plain-text extraction and word counting over document nodes."""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import Final

from review_pipeline.documents.model import DocumentNode

_WORD_PATTERN: Final[re.Pattern[str]] = re.compile(r"[^\W_]+(?:['’\-][^\W_]+)*")

_BLOCK_TYPES: Final[frozenset[str]] = frozenset(
    {"paragraph", "heading", "listItem", "tableCell", "code"}
)
_DROPPED_TYPES: Final[frozenset[str]] = frozenset({"captionNumber", "mermaid", "comment", "cite"})


def count_words(text: str) -> int:
    return len(_WORD_PATTERN.findall(text))


def word_count_text(
    content: DocumentNode | Iterable[DocumentNode],
    *,
    figures: bool = False,
    footnotes: bool = False,
) -> str:
    """Render nodes as countable text.

    Math counts as a single word. Figure containers and footnote definitions are
    skipped unless requested.
    """

    nodes = (content,) if isinstance(content, DocumentNode) else tuple(content)
    dropped = set(_DROPPED_TYPES)
    if not figures:
        dropped.add("container")
    if not footnotes:
        dropped.add("footnoteDefinition")

    def render(node: DocumentNode) -> str:
        if node.type in dropped:
            return ""
        if node.type == "math":
            return "MATH\n\n"
        if node.type == "inlineMath":
            return "MATH"
        if node.type == "break":
            return "\n\n"
        if node.children:
            inner = "".join(render(child) for child in node.children)
        else:
            inner = node.value or ""
        return f"{inner}\n\n" if node.type in _BLOCK_TYPES else inner

    return "".join(render(node) for node in nodes)


__all__ = ["count_words", "word_count_text"]
