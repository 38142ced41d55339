"""
review-pipeline — workflow registry.

File: src/review_pipeline/workflow/registry.py

Purpose
- Map workflow names to validated ``WorkflowDefinition`` objects.

Functional requirements
- The four built-in workflows (SIMPLE, PRIVATE, OPEN_REVIEW, CLOSED_REVIEW) ship as
  YAML data and are loaded through the same ``load`` used for user definitions.
- Registering a name twice overrides the earlier definition and logs a warning.
- Unknown names raise ``WorkflowNotFound``.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Iterator
from importlib import resources
from pathlib import Path
from typing import Any, Final

import structlog

from review_pipeline.errors import WorkflowNotFound
from review_pipeline.workflow.definition import WorkflowDefinition, load_file

BUILTIN_WORKFLOW_NAMES: Final[tuple[str, ...]] = (
    "SIMPLE",
    "PRIVATE",
    "OPEN_REVIEW",
    "CLOSED_REVIEW",
)
DEFAULT_WORKFLOW: Final[str] = "SIMPLE"

_DEFINITIONS_PACKAGE: Final[str] = "review_pipeline.workflow.definitions"


def builtin_workflows() -> tuple[WorkflowDefinition, ...]:
    """Load the packaged workflow definitions in their canonical order."""

    root = resources.files(_DEFINITIONS_PACKAGE)
    loaded: list[WorkflowDefinition] = []
    for name in BUILTIN_WORKFLOW_NAMES:
        with resources.as_file(root.joinpath(f"{name.lower()}.yaml")) as path:
            loaded.append(load_file(path))
    return tuple(loaded)


def load_definition_dir(path: str | Path) -> tuple[WorkflowDefinition, ...]:
    """Load every ``*.yaml``/``*.yml`` file in ``path`` sorted by file name."""

    directory = Path(path)
    if not directory.is_dir():
        raise NotADirectoryError(f"workflow definition directory not found: {directory}")
    files = sorted(
        item for item in directory.iterdir() if item.suffix in {".yaml", ".yml"} and item.is_file()
    )
    return tuple(load_file(item) for item in files)


class WorkflowRegistry:
    """Named workflow definitions; read-mostly after startup."""

    def __init__(
        self,
        definitions: Iterable[WorkflowDefinition] = (),
        *,
        default_name: str = DEFAULT_WORKFLOW,
        logger: Any | None = None,
    ) -> None:
        self._definitions: dict[str, WorkflowDefinition] = {}
        self._lock = threading.Lock()
        self._default_name = default_name
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        for definition in definitions:
            self.register(definition)

    @classmethod
    def with_builtins(
        cls,
        *,
        extra_dirs: Iterable[str | Path] = (),
        default_name: str = DEFAULT_WORKFLOW,
        logger: Any | None = None,
    ) -> WorkflowRegistry:
        registry = cls(builtin_workflows(), default_name=default_name, logger=logger)
        for directory in extra_dirs:
            for definition in load_definition_dir(directory):
                registry.register(definition)
        return registry

    def register(self, definition: WorkflowDefinition, *, name: str | None = None) -> str:
        key = name or definition.name
        with self._lock:
            if key in self._definitions:
                self._logger.warning(
                    "workflow_registry_override",
                    workflow=key,
                    previous_version=self._definitions[key].version,
                    version=definition.version,
                )
            updated = dict(self._definitions)
            updated[key] = definition
            self._definitions = updated
        self._logger.debug("workflow_registry_registered", workflow=key)
        return key

    def get(self, name: str) -> WorkflowDefinition:
        definition = self._definitions.get(name)
        if definition is None:
            raise WorkflowNotFound(name)
        return definition

    def default(self) -> WorkflowDefinition:
        return self.get(self._default_name)

    @property
    def default_name(self) -> str:
        return self._default_name

    def names(self) -> tuple[str, ...]:
        return tuple(self._definitions)

    def __contains__(self, name: object) -> bool:
        return name in self._definitions

    def __iter__(self) -> Iterator[WorkflowDefinition]:
        return iter(tuple(self._definitions.values()))

    def __len__(self) -> int:
        return len(self._definitions)


__all__ = [
    "BUILTIN_WORKFLOW_NAMES",
    "DEFAULT_WORKFLOW",
    "WorkflowRegistry",
    "builtin_workflows",
    "load_definition_dir",
]
