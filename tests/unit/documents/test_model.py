"""Unit tests for the resolved document model and its loaders."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from review_pipeline.documents import (
    DocumentNode,
    Position,
    ResolvedDocument,
    load_document,
    thaw,
)


def _payload() -> dict[str, object]:
    return {
        "frontmatter": {
            "title": "On Review",
            "abstract": "Frontmatter abstract.",
            "keywords": "workflows",
        },
        "content": {
            "type": "root",
            "children": [
                {
                    "type": "block",
                    "data": {"part": "abstract"},
                    "position": {"start": {"line": 4, "column": 1}, "end": {"line": 6}},
                    "children": [{"type": "text", "value": "Tagged abstract."}],
                },
                {"type": "paragraph", "children": [{"type": "text", "value": "Body text."}]},
            ],
        },
        "citations": {"lovelace1843": {"doi": "10.1234/abc"}},
    }


def test_load_document_from_yaml_and_json(tmp_path: Path) -> None:
    yaml_path = tmp_path / "paper.yaml"
    yaml_path.write_text(
        "frontmatter:\n  title: On Review\ncontent:\n  type: root\n", encoding="utf-8"
    )
    json_path = tmp_path / "paper.json"
    json_path.write_text(json.dumps(_payload()), encoding="utf-8")

    from_yaml = load_document(yaml_path)
    from_json = load_document(json_path)

    assert from_yaml.frontmatter["title"] == "On Review"
    assert from_yaml.file == yaml_path.as_posix()
    assert from_json.citations["lovelace1843"]["doi"] == "10.1234/abc"


def test_load_document_rejects_non_mapping_roots(tmp_path: Path) -> None:
    path = tmp_path / "list.yaml"
    path.write_text("- not\n- a mapping\n", encoding="utf-8")

    with pytest.raises(ValueError, match="document root must be a mapping"):
        load_document(path)
    with pytest.raises(ValueError, match="unable to read document"):
        load_document(tmp_path / "missing.yaml")


def test_part_lookup_prefers_explicit_parts_then_tagged_blocks_then_frontmatter() -> None:
    document = ResolvedDocument.from_mapping(_payload())

    tagged = document.part("abstract")
    assert tagged is not None
    assert tagged.text() == "Tagged abstract."
    assert tagged.position == Position(start_line=4, start_column=1, end_line=6)

    explicit = ResolvedDocument.from_mapping({**_payload(), "parts": {"abstract": "Explicit."}})
    explicit_part = explicit.part("abstract")
    assert explicit_part is not None and explicit_part.text() == "Explicit."

    only_frontmatter = ResolvedDocument(frontmatter={"abstract": "Frontmatter abstract."})
    fallback = only_frontmatter.part("abstract")
    assert fallback is not None and fallback.text() == "Frontmatter abstract."

    assert document.part("dedication") is None


def test_body_drops_part_blocks() -> None:
    document = ResolvedDocument.from_mapping(_payload())

    body = document.body()

    assert [node.type for node in body.children] == ["paragraph"]
    assert len(document.content.children) == 2


def test_keywords_accept_a_single_string() -> None:
    document = ResolvedDocument.from_mapping(_payload())
    assert document.keywords == ("workflows",)
    assert document.authors == ()


def test_frozen_view_is_an_independent_read_only_copy() -> None:
    document = ResolvedDocument.from_mapping(_payload())

    view = document.frozen_view()

    assert view is not document
    assert view.to_dict() == document.to_dict()
    with pytest.raises(TypeError):
        view.frontmatter["title"] = "changed"  # type: ignore[index]
    assert isinstance(thaw(view.frontmatter), dict)


def test_node_walk_is_depth_first_preorder() -> None:
    tree = DocumentNode.from_mapping(
        {
            "type": "root",
            "children": [
                {"type": "heading", "children": [{"type": "text", "value": "Intro"}]},
                {"type": "paragraph", "children": [{"type": "link", "url": "https://a.org"}]},
            ],
        }
    )

    assert [node.type for node in tree.iter()] == [
        "root",
        "heading",
        "text",
        "paragraph",
        "link",
    ]
    link = next(node for node in tree.iter() if node.type == "link")
    assert link.attrs["url"] == "https://a.org"


def test_position_validation() -> None:
    with pytest.raises(ValueError, match=">= 1"):
        Position(start_line=0)
    assert Position.from_mapping({"start_line": 2, "end_line": 3}).to_dict() == {
        "start_line": 2,
        "start_column": None,
        "end_line": 3,
        "end_column": None,
    }
