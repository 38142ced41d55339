"""
review-pipeline — resolved document model.

File: src/review_pipeline/documents/model.py

Purpose
- Provide the read-only document view that check implementations inspect.

What should be included in this file
- Node tree with types, text values, children, positions, and free-form attributes.
- Named part lookup (abstract, data availability, ...) across explicit parts, tagged
  content blocks, and frontmatter text.
- Loaders from YAML/JSON payloads produced by the upstream parsing stage.

Functional requirements
- Documents are deeply immutable after construction so concurrent checks cannot
  observe each other's mutations.
- ``frozen_view`` returns an independent deep copy for each check invocation.
"""

from __future__ import annotations

import json
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Final

import yaml

KNOWN_PARTS: Final[tuple[str, ...]] = (
    "abstract",
    "summary",
    "keypoints",
    "dedication",
    "epigraph",
    "data_availability",
    "acknowledgments",
)

PART_ALIASES: Final[Mapping[str, tuple[str, ...]]] = MappingProxyType(
    {
        "data_availability": ("data_availability", "availability", "data-availability"),
        "acknowledgments": ("acknowledgments", "acknowledgements"),
    }
)

_NODE_RESERVED_KEYS: Final[frozenset[str]] = frozenset(
    {"type", "value", "children", "position", "attrs"}
)


def _freeze(value: object) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({str(key): _freeze(item) for key, item in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(item) for item in value)
    if isinstance(value, (set, frozenset)):
        return frozenset(_freeze(item) for item in value)
    return value


def thaw(value: object) -> Any:
    """Convert frozen containers back into plain ``dict``/``list`` values."""

    if isinstance(value, Mapping):
        return {key: thaw(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [thaw(item) for item in value]
    if isinstance(value, frozenset):
        return sorted(thaw(item) for item in value)
    return value


@dataclass(frozen=True, slots=True)
class Position:
    """Source location attached to nodes and forwarded to check results."""

    start_line: int
    start_column: int | None = None
    end_line: int | None = None
    end_column: int | None = None

    def __post_init__(self) -> None:
        if isinstance(self.start_line, bool) or not isinstance(self.start_line, int):
            raise ValueError("Position.start_line must be an integer")
        if self.start_line < 1:
            raise ValueError("Position.start_line must be >= 1")

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> Position:
        # Accepts both the flat form and the nested {start: {line, column}} form.
        start = payload.get("start")
        end = payload.get("end")
        if isinstance(start, Mapping):
            end_map = end if isinstance(end, Mapping) else {}
            return cls(
                start_line=int(start["line"]),
                start_column=_optional_int(start.get("column")),
                end_line=_optional_int(end_map.get("line")),
                end_column=_optional_int(end_map.get("column")),
            )
        return cls(
            start_line=int(payload["start_line"]),
            start_column=_optional_int(payload.get("start_column")),
            end_line=_optional_int(payload.get("end_line")),
            end_column=_optional_int(payload.get("end_column")),
        )

    def to_dict(self) -> dict[str, int | None]:
        return {
            "start_line": self.start_line,
            "start_column": self.start_column,
            "end_line": self.end_line,
            "end_column": self.end_column,
        }


@dataclass(frozen=True, slots=True)
class DocumentNode:
    """One node of the resolved content tree."""

    type: str
    value: str | None = None
    children: tuple[DocumentNode, ...] = ()
    position: Position | None = None
    attrs: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.type, str) or not self.type.strip():
            raise ValueError("DocumentNode.type must be a non-empty string")
        if self.value is not None and not isinstance(self.value, str):
            object.__setattr__(self, "value", str(self.value))
        object.__setattr__(self, "children", tuple(self.children))
        object.__setattr__(self, "attrs", _freeze(self.attrs))

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> DocumentNode:
        node_type = payload.get("type")
        if not isinstance(node_type, str):
            raise ValueError("document node requires a string 'type'")
        raw_children = payload.get("children") or ()
        if not isinstance(raw_children, Sequence) or isinstance(raw_children, str):
            raise ValueError(f"{node_type}.children must be a list")
        raw_position = payload.get("position")
        attrs: dict[str, Any] = {
            key: value for key, value in payload.items() if key not in _NODE_RESERVED_KEYS
        }
        explicit_attrs = payload.get("attrs")
        if isinstance(explicit_attrs, Mapping):
            attrs.update(explicit_attrs)
        value = payload.get("value")
        return cls(
            type=node_type,
            value=None if value is None else str(value),
            children=tuple(cls.from_mapping(child) for child in raw_children),
            position=Position.from_mapping(raw_position)
            if isinstance(raw_position, Mapping)
            else None,
            attrs=attrs,
        )

    def iter(self) -> Iterator[DocumentNode]:
        """Depth-first, pre-order walk including ``self``."""

        stack: list[DocumentNode] = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def text(self) -> str:
        if self.children:
            return " ".join(child.text() for child in self.children)
        return self.value or ""

    @property
    def part_name(self) -> str | None:
        part = self.attrs.get("part")
        if part is None:
            data = self.attrs.get("data")
            if isinstance(data, Mapping):
                part = data.get("part")
        return part if isinstance(part, str) else None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.type}
        if self.value is not None:
            payload["value"] = self.value
        if self.children:
            payload["children"] = [child.to_dict() for child in self.children]
        if self.position is not None:
            payload["position"] = self.position.to_dict()
        if self.attrs:
            payload["attrs"] = thaw(self.attrs)
        return payload


@dataclass(frozen=True, slots=True)
class ResolvedDocument:
    """Fully resolved manuscript as handed over by the parsing stage."""

    frontmatter: Mapping[str, Any] = field(default_factory=dict)
    content: DocumentNode = field(default_factory=lambda: DocumentNode(type="root"))
    parts: Mapping[str, DocumentNode] = field(default_factory=dict)
    citations: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)
    file: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "frontmatter", _freeze(self.frontmatter))
        object.__setattr__(self, "parts", MappingProxyType(dict(self.parts)))
        object.__setattr__(self, "citations", _freeze(self.citations))

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> ResolvedDocument:
        frontmatter = payload.get("frontmatter") or {}
        if not isinstance(frontmatter, Mapping):
            raise ValueError("document.frontmatter must be an object")
        raw_content = payload.get("content") or payload.get("mdast") or {"type": "root"}
        if not isinstance(raw_content, Mapping):
            raise ValueError("document.content must be an object")
        raw_parts = payload.get("parts") or {}
        if not isinstance(raw_parts, Mapping):
            raise ValueError("document.parts must be an object")
        parts: dict[str, DocumentNode] = {}
        for name, raw_part in raw_parts.items():
            parts[str(name)] = _part_node(raw_part, f"document.parts.{name}")
        raw_citations = payload.get("citations") or {}
        if not isinstance(raw_citations, Mapping):
            raise ValueError("document.citations must be an object keyed by citation label")
        file_value = payload.get("file")
        return cls(
            frontmatter=frontmatter,
            content=DocumentNode.from_mapping(raw_content),
            parts=parts,
            citations={
                str(key): value if isinstance(value, Mapping) else {}
                for key, value in raw_citations.items()
            },
            file=None if file_value is None else str(file_value),
        )

    @property
    def authors(self) -> tuple[Mapping[str, Any], ...]:
        raw = self.frontmatter.get("authors") or ()
        return tuple(item for item in raw if isinstance(item, Mapping))

    @property
    def keywords(self) -> tuple[str, ...]:
        raw = self.frontmatter.get("keywords") or ()
        if isinstance(raw, str):
            return (raw,)
        return tuple(str(item) for item in raw)

    def part(self, name: str) -> DocumentNode | None:
        """Locate a named part by explicit parts, tagged content blocks, then frontmatter."""

        candidates = PART_ALIASES.get(name, (name,))
        for candidate in candidates:
            explicit = self.parts.get(candidate)
            if explicit is not None:
                return explicit
        for node in self.content.iter():
            if node.part_name in candidates:
                return node
        for candidate in candidates:
            text = self.frontmatter.get(candidate)
            if isinstance(text, str) and text.strip():
                return DocumentNode(
                    type="block",
                    children=(DocumentNode(type="text", value=text),),
                    attrs={"part": name},
                )
        return None

    def body(self) -> DocumentNode:
        """Main content with every known part block removed."""

        return _without_parts(self.content, frozenset(KNOWN_PARTS))

    def iter_nodes(self, *types: str) -> Iterator[DocumentNode]:
        wanted = frozenset(types)
        for node in self.content.iter():
            if not wanted or node.type in wanted:
                yield node

    def frozen_view(self) -> ResolvedDocument:
        """Return an independent deep copy for handing to a single check."""

        return ResolvedDocument.from_mapping(self.to_dict())

    def to_dict(self) -> dict[str, Any]:
        return {
            "file": self.file,
            "frontmatter": thaw(self.frontmatter),
            "content": self.content.to_dict(),
            "parts": {name: node.to_dict() for name, node in self.parts.items()},
            "citations": thaw(self.citations),
        }


def load_document(path: str | Path) -> ResolvedDocument:
    """Load a resolved document from a ``.json``, ``.yaml`` or ``.yml`` file."""

    resolved = Path(path)
    try:
        raw_text = resolved.read_text(encoding="utf-8")
    except OSError as exc:
        raise ValueError(f"unable to read document {resolved}: {exc}") from exc

    try:
        if resolved.suffix.lower() == ".json":
            payload = json.loads(raw_text)
        else:
            payload = yaml.safe_load(raw_text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ValueError(f"unable to parse document {resolved}: {exc}") from exc

    if not isinstance(payload, Mapping):
        raise ValueError(f"{resolved}: document root must be a mapping")
    document = ResolvedDocument.from_mapping(payload)
    if document.file is None:
        return ResolvedDocument(
            frontmatter=document.frontmatter,
            content=document.content,
            parts=document.parts,
            citations=document.citations,
            file=resolved.as_posix(),
        )
    return document


def _part_node(raw: object, location: str) -> DocumentNode:
    if isinstance(raw, str):
        return DocumentNode(type="block", children=(DocumentNode(type="text", value=raw),))
    if isinstance(raw, Mapping):
        return DocumentNode.from_mapping(raw)
    raise ValueError(f"{location} must be text or a node object")


def _without_parts(node: DocumentNode, parts: frozenset[str]) -> DocumentNode:
    kept = tuple(
        _without_parts(child, parts) for child in node.children if child.part_name not in parts
    )
    if kept == node.children:
        return node
    return DocumentNode(
        type=node.type,
        value=node.value,
        children=kept,
        position=node.position,
        attrs=node.attrs,
    )


def _optional_int(value: object) -> int | None:
    if value is None:
        return None
    return int(value)  # type: ignore[call-overload]


__all__ = [
    "KNOWN_PARTS",
    "DocumentNode",
    "Position",
    "ResolvedDocument",
    "load_document",
    "thaw",
]
