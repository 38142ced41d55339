"""Shared fixtures for CLI and end-to-end tests."""

from __future__ import annotations

import os
from collections.abc import Iterator
from pathlib import Path

import pytest
import structlog

_DOCUMENT = """\
frontmatter:
  title: On Review
  abstract: A short abstract about review.
  keywords: [review, workflow]
content:
  type: root
  children:
    - type: paragraph
      children:
        - {type: text, value: one two three four}
"""

_EDITORIAL = """\
name: EDITORIAL
label: Editorial board
initial_state: draft
states:
  draft: {label: Draft}
  submitted: {label: Submitted}
  published: {label: Published, visible: true, published: true}
transitions:
  - name: submit
    from: draft
    to: submitted
  - name: publish
    from: submitted
    to: published
    required_check_categories: [abstract]
    options:
      sets_published_date: true
"""


@pytest.fixture()
def workdir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Path]:
    """Empty working directory with no ``review.toml`` and no ``REVIEW_*`` variables."""

    for name in list(os.environ):
        if name.startswith("REVIEW_"):
            monkeypatch.delenv(name)
    monkeypatch.delenv("NO_COLOR", raising=False)
    monkeypatch.chdir(tmp_path)
    yield tmp_path
    structlog.reset_defaults()


@pytest.fixture()
def document_path(workdir: Path) -> Path:
    path = workdir / "paper.yaml"
    path.write_text(_DOCUMENT, encoding="utf-8")
    return path


@pytest.fixture()
def editorial_config(workdir: Path) -> Path:
    flows = workdir / "flows"
    flows.mkdir()
    (flows / "editorial.yaml").write_text(_EDITORIAL, encoding="utf-8")
    config = workdir / "review.toml"
    config.write_text(
        '[workflow]\ndefault_workflow = "EDITORIAL"\ndefinition_dirs = ["flows"]\n',
        encoding="utf-8",
    )
    return config
