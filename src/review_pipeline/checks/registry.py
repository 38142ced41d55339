"""
review-pipeline — check registry.

File: src/review_pipeline/checks/registry.py

Purpose
- Hold the closed catalog of known check definitions and their bound implementations.

What should be included in this file
- Append-only ``register`` made during initialization (no dynamic discovery).
- Lookup by id and filtered listing by tag/category in registration order.
- Declarative YAML catalogs for definitions; implementations are bound in code.

Functional requirements
- ``register`` is all-or-nothing: a batch with any colliding id raises
  ``DuplicateCheckId`` and leaves the registry unchanged.
- Reads are safe without synchronization once registration has completed; writes
  publish a fresh snapshot instead of mutating the one readers may hold.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, cast

import structlog
import yaml

from review_pipeline.checks.models import CheckDefinition, CheckImplementation
from review_pipeline.errors import CheckNotFound, DuplicateCheckId


@dataclass(frozen=True, slots=True)
class CheckRegistration:
    """Registry entry: a definition and its (optional) implementation."""

    definition: CheckDefinition
    implementation: CheckImplementation | None = None


class CheckRegistry:
    """Deterministic registry of check definitions keyed by id."""

    def __init__(
        self,
        definitions: Iterable[CheckDefinition] = (),
        *,
        implementations: Mapping[str, CheckImplementation] | None = None,
        logger: Any | None = None,
    ) -> None:
        self._entries: dict[str, CheckRegistration] = {}
        self._write_lock = threading.Lock()
        self._frozen = False
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        batch = tuple(definitions)
        if batch or implementations:
            self.register(batch, implementations=implementations)

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        """Seal the registry; later writes raise ``RuntimeError``."""

        self._frozen = True

    def register(
        self,
        definitions: Iterable[CheckDefinition],
        *,
        implementations: Mapping[str, CheckImplementation] | None = None,
    ) -> tuple[str, ...]:
        """Add ``definitions`` (and optionally bind implementations) atomically.

        Implementation keys may name checks from this batch or checks registered
        earlier that are still unbound.
        """

        batch = tuple(definitions)
        for index, definition in enumerate(batch):
            if not isinstance(definition, CheckDefinition):
                kind = type(definition).__name__
                raise TypeError(f"definitions[{index}]: expected CheckDefinition, got {kind}")
        bindings = dict(implementations or {})

        with self._write_lock:
            self._ensure_writable()
            current = self._entries

            seen: set[str] = set()
            collisions: list[str] = []
            for definition in batch:
                if definition.id in current or definition.id in seen:
                    collisions.append(definition.id)
                seen.add(definition.id)
            if collisions:
                self._logger.warning(
                    "check_registry_duplicate_rejected", ids=sorted(set(collisions))
                )
                raise DuplicateCheckId(collisions)

            for check_id, implementation in bindings.items():
                if check_id not in seen and check_id not in current:
                    raise CheckNotFound(check_id)
                if not callable(implementation):
                    raise TypeError(f"implementation for {check_id!r} must be callable")
                existing = current.get(check_id)
                if existing is not None and existing.implementation is not None:
                    raise ValueError(f"check {check_id!r} already has an implementation bound")

            updated = dict(current)
            for definition in batch:
                updated[definition.id] = CheckRegistration(
                    definition=definition,
                    implementation=bindings.get(definition.id),
                )
            for check_id, implementation in bindings.items():
                if check_id not in seen:
                    updated[check_id] = CheckRegistration(
                        definition=updated[check_id].definition,
                        implementation=implementation,
                    )
            self._entries = updated

        registered = tuple(definition.id for definition in batch)
        self._logger.debug(
            "check_registry_registered",
            ids=list(registered),
            bound=sorted(bindings),
            total=len(updated),
        )
        return registered

    def bind(self, check_id: str, implementation: CheckImplementation) -> None:
        """Attach an implementation to an already-registered definition."""

        self.register((), implementations={check_id: implementation})

    def load_catalog(self, path: str | Path) -> tuple[str, ...]:
        return self.register(load_check_catalog(path))

    def get(self, check_id: str) -> CheckDefinition:
        return self.registration(check_id).definition

    def registration(self, check_id: str) -> CheckRegistration:
        entry = self._entries.get(check_id)
        if entry is None:
            raise CheckNotFound(check_id)
        return entry

    def implementation(self, check_id: str) -> CheckImplementation | None:
        return self.registration(check_id).implementation

    def list(
        self,
        *,
        tags: Iterable[str] | None = None,
        category: str | None = None,
    ) -> tuple[CheckDefinition, ...]:
        """Return definitions in registration order.

        A definition matches ``tags`` when it carries any of them, and both filters
        must match when both are given. No filter returns every definition.
        """

        wanted_tags = frozenset(tags or ()) or None
        matches: list[CheckDefinition] = []
        for entry in self._entries.values():
            definition = entry.definition
            if wanted_tags is not None and not (definition.tags & wanted_tags):
                continue
            if category is not None and definition.category != category:
                continue
            matches.append(definition)
        return tuple(matches)

    def ids(self) -> tuple[str, ...]:
        return tuple(self._entries)

    def categories(self) -> tuple[str, ...]:
        ordered: dict[str, None] = {}
        for entry in self._entries.values():
            ordered.setdefault(entry.definition.category, None)
        return tuple(ordered)

    def __contains__(self, check_id: object) -> bool:
        return check_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[CheckDefinition]:
        return iter(tuple(entry.definition for entry in self._entries.values()))

    def _ensure_writable(self) -> None:
        if self._frozen:
            raise RuntimeError("check registry is frozen; register checks during initialization")


def load_check_catalog(path: str | Path) -> tuple[CheckDefinition, ...]:
    """Load check definitions from a YAML catalog.

    The document root is either a list of check mappings or a mapping with a
    ``checks`` list.
    """

    resolved = Path(path)
    try:
        with resolved.open("r", encoding="utf-8") as handle:
            loaded = cast("object", yaml.safe_load(handle))
    except yaml.YAMLError as exc:
        raise ValueError(f"{resolved}: invalid YAML ({exc})") from exc

    records: object = loaded
    if isinstance(loaded, Mapping):
        records = loaded.get("checks")
    if not isinstance(records, list):
        raise ValueError(f"{resolved}: expected a list of checks, got {type(records).__name__}")

    definitions: list[CheckDefinition] = []
    for index, record in enumerate(records):
        location = f"{resolved}:checks[{index}]"
        if not isinstance(record, Mapping):
            raise ValueError(f"{location}: expected object, got {type(record).__name__}")
        try:
            definitions.append(CheckDefinition.from_mapping(record, location="check"))
        except ValueError as exc:
            raise ValueError(f"{location}: {exc}") from exc
    return tuple(definitions)


__all__ = ["CheckRegistration", "CheckRegistry", "load_check_catalog"]
