"""Unit tests for the workflow registry."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from review_pipeline.errors import InvalidWorkflow, WorkflowNotFound
from review_pipeline.workflow import (
    BUILTIN_WORKFLOW_NAMES,
    WorkflowDefinition,
    WorkflowRegistry,
    load,
    load_definition_dir,
)


class _RecordingLogger:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def debug(self, event: str, **fields: Any) -> None:
        self.events.append((event, fields))

    def warning(self, event: str, **fields: Any) -> None:
        self.events.append((event, fields))


def _tiny(name: str = "TINY", version: int = 1) -> WorkflowDefinition:
    return load(
        {
            "name": name,
            "version": version,
            "initial_state": "open",
            "states": ["open", "closed"],
            "transitions": [{"name": "close", "from": "open", "to": "closed"}],
        }
    )


def test_builtins_are_registered_in_canonical_order() -> None:
    registry = WorkflowRegistry.with_builtins()

    assert registry.names() == BUILTIN_WORKFLOW_NAMES
    assert registry.default().name == "SIMPLE"
    assert "PRIVATE" in registry
    assert len(registry) == 4


def test_unknown_name_raises_workflow_not_found() -> None:
    registry = WorkflowRegistry([_tiny()])

    with pytest.raises(WorkflowNotFound) as excinfo:
        registry.get("MISSING")

    assert excinfo.value.code == "workflow_not_found"
    with pytest.raises(WorkflowNotFound):
        registry.default()


def test_re_registering_a_name_overrides_and_warns() -> None:
    logger = _RecordingLogger()
    registry = WorkflowRegistry([_tiny()], default_name="TINY", logger=logger)

    registry.register(_tiny(version=2))

    assert registry.default().version == 2
    warnings = [fields for event, fields in logger.events if event == "workflow_registry_override"]
    assert warnings == [{"workflow": "TINY", "previous_version": 1, "version": 2}]


def test_register_under_an_alias() -> None:
    registry = WorkflowRegistry()

    key = registry.register(_tiny(), name="JOURNAL_DEFAULT")

    assert key == "JOURNAL_DEFAULT"
    assert registry.get("JOURNAL_DEFAULT").name == "TINY"


def test_extra_directories_are_loaded_after_builtins(tmp_path: Path) -> None:
    (tmp_path / "b_tiny.yaml").write_text(
        "name: TINY\n"
        "initial_state: open\n"
        "states: [open, closed]\n"
        "transitions:\n"
        "  - {name: close, from: open, to: closed}\n",
        encoding="utf-8",
    )
    (tmp_path / "a_simple.yml").write_text(
        "name: SIMPLE\nversion: 7\ninitial_state: PENDING\nstates: [PENDING]\ntransitions: []\n",
        encoding="utf-8",
    )
    (tmp_path / "notes.txt").write_text("ignored", encoding="utf-8")

    registry = WorkflowRegistry.with_builtins(extra_dirs=[tmp_path], default_name="TINY")

    assert registry.names() == (*BUILTIN_WORKFLOW_NAMES, "TINY")
    assert registry.get("SIMPLE").version == 7
    assert registry.default().terminal_states() == ("closed",)


def test_definition_directory_errors(tmp_path: Path) -> None:
    with pytest.raises(NotADirectoryError):
        load_definition_dir(tmp_path / "missing")

    (tmp_path / "broken.yaml").write_text("name: BROKEN\nstates: []\n", encoding="utf-8")
    with pytest.raises(InvalidWorkflow):
        load_definition_dir(tmp_path)
