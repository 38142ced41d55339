"""
review-pipeline — workflow definition model.

File: src/review_pipeline/workflow/definition.py

Purpose
- Validate and hold a review workflow's static shape: states, guarded transitions,
  and the initial state.

What should be included in this file
- Plain data types for states and transitions; one generic interpreter lives in the
  engine, so workflows are configuration, never subclasses.
- ``load`` for declarative mappings and ``load_file`` for YAML.

Functional requirements
- Reject, with every problem listed: transitions referencing undeclared states, an
  undeclared initial state, and a trigger name repeated for the same source state.
- Cycles are legal; states without outgoing transitions are terminal.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Final, cast

import yaml

from review_pipeline.errors import InvalidWorkflow

_STATE_KEYS: Final[frozenset[str]] = frozenset(
    {"name", "label", "visible", "published", "author_only", "inbox", "tags"}
)
_TRANSITION_KEYS: Final[frozenset[str]] = frozenset(
    {
        "name",
        "from",
        "to",
        "source",
        "target",
        "label",
        "help",
        "required_scopes",
        "required_check_categories",
        "required_check_ids",
        "user_triggered",
        "requires_job",
        "options",
    }
)
_OPTION_KEYS: Final[frozenset[str]] = frozenset(
    {"job_type", "sets_published_date", "updates_slug"}
)
_WORKFLOW_KEYS: Final[frozenset[str]] = frozenset(
    {"name", "version", "label", "initial_state", "states", "transitions"}
)


@dataclass(frozen=True, slots=True)
class WorkflowState:
    """One state label plus the presentation flags the hosting platform reads."""

    name: str
    label: str = ""
    visible: bool = False
    published: bool = False
    author_only: bool = False
    inbox: bool = False
    tags: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise ValueError("WorkflowState.name must be a non-empty string")
        object.__setattr__(self, "name", self.name.strip())
        object.__setattr__(self, "label", self.label or self.name)
        object.__setattr__(self, "tags", tuple(self.tags))

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "label": self.label,
            "visible": self.visible,
            "published": self.published,
            "author_only": self.author_only,
            "inbox": self.inbox,
            "tags": list(self.tags),
        }


@dataclass(frozen=True, slots=True)
class TransitionOptions:
    """Side effects the caller performs once a transition commits."""

    job_type: str | None = None
    sets_published_date: bool = False
    updates_slug: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_type": self.job_type,
            "sets_published_date": self.sets_published_date,
            "updates_slug": self.updates_slug,
        }


@dataclass(frozen=True, slots=True)
class WorkflowTransition:
    """Named, guarded edge between two states."""

    name: str
    source: str
    target: str
    label: str = ""
    help: str = ""
    required_scopes: tuple[str, ...] = ()
    required_check_categories: tuple[str, ...] = ()
    required_check_ids: tuple[str, ...] = ()
    user_triggered: bool = True
    requires_job: bool = False
    options: TransitionOptions = field(default_factory=TransitionOptions)

    def __post_init__(self) -> None:
        for attr in ("name", "source", "target"):
            value = getattr(self, attr)
            if not isinstance(value, str) or not value.strip():
                raise ValueError(f"WorkflowTransition.{attr} must be a non-empty string")
            object.__setattr__(self, attr, value.strip())
        object.__setattr__(self, "label", self.label or self.name)
        for attr in ("required_scopes", "required_check_categories", "required_check_ids"):
            object.__setattr__(self, attr, _unique(getattr(self, attr)))

    @property
    def requires_checks(self) -> bool:
        return bool(self.required_check_categories or self.required_check_ids)

    @property
    def job_type(self) -> str | None:
        return self.options.job_type if self.requires_job else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "from": self.source,
            "to": self.target,
            "label": self.label,
            "help": self.help,
            "required_scopes": list(self.required_scopes),
            "required_check_categories": list(self.required_check_categories),
            "required_check_ids": list(self.required_check_ids),
            "user_triggered": self.user_triggered,
            "requires_job": self.requires_job,
            "options": self.options.to_dict(),
        }


@dataclass(frozen=True, slots=True)
class WorkflowDefinition:
    """Named, versioned finite state machine for submissions."""

    name: str
    initial_state: str
    states: Mapping[str, WorkflowState]
    transitions: tuple[WorkflowTransition, ...]
    version: int = 1
    label: str = ""
    _outgoing: Mapping[str, tuple[WorkflowTransition, ...]] = field(
        init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        states = (
            dict(self.states)
            if isinstance(self.states, Mapping)
            else {state.name: state for state in self.states}
        )
        transitions = tuple(self.transitions)
        problems = structural_problems(self.initial_state, states, transitions)
        if isinstance(self.version, bool) or not isinstance(self.version, int) or self.version < 1:
            problems.insert(0, "version must be a positive integer")
        if problems:
            raise InvalidWorkflow(self.name, problems)

        object.__setattr__(self, "states", MappingProxyType(states))
        object.__setattr__(self, "transitions", transitions)
        object.__setattr__(self, "label", self.label or self.name)

        outgoing: dict[str, list[WorkflowTransition]] = {name: [] for name in states}
        for transition in transitions:
            outgoing[transition.source].append(transition)
        object.__setattr__(
            self,
            "_outgoing",
            MappingProxyType({name: tuple(items) for name, items in outgoing.items()}),
        )

    def state(self, name: str) -> WorkflowState | None:
        return self.states.get(name)

    def has_state(self, name: str) -> bool:
        return name in self.states

    def transitions_from(self, state: str) -> tuple[WorkflowTransition, ...]:
        return self._outgoing.get(state, ())

    def transitions_to(self, state: str) -> tuple[WorkflowTransition, ...]:
        return tuple(item for item in self.transitions if item.target == state)

    def transition(self, source: str, name: str) -> WorkflowTransition | None:
        for item in self.transitions_from(source):
            if item.name == name:
                return item
        return None

    def transition_between(self, source: str, target: str) -> WorkflowTransition | None:
        for item in self.transitions_from(source):
            if item.target == target:
                return item
        return None

    def can_transition_to(self, source: str, target: str) -> bool:
        return self.transition_between(source, target) is not None

    def is_terminal(self, state: str) -> bool:
        return state in self.states and not self._outgoing.get(state)

    def terminal_states(self) -> tuple[str, ...]:
        return tuple(name for name in self.states if not self._outgoing.get(name))

    def is_published(self, state: str) -> bool:
        found = self.states.get(state)
        return found is not None and found.published

    def is_visible(self, state: str) -> bool:
        found = self.states.get(state)
        return found is not None and found.visible

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "label": self.label,
            "initial_state": self.initial_state,
            "states": {name: state.to_dict() for name, state in self.states.items()},
            "transitions": [item.to_dict() for item in self.transitions],
        }


def structural_problems(
    initial_state: str,
    states: Mapping[str, WorkflowState],
    transitions: Sequence[WorkflowTransition],
) -> list[str]:
    """Return every graph-level problem; empty when the shape is valid."""

    problems: list[str] = []
    if not states:
        problems.append("workflow declares no states")
    for key, state in states.items():
        if key != state.name:
            problems.append(f"state key {key!r} does not match state name {state.name!r}")
    if initial_state not in states:
        problems.append(f"initial_state {initial_state!r} is not a declared state")

    seen: set[tuple[str, str]] = set()
    for index, transition in enumerate(transitions):
        where = f"transitions[{index}] ({transition.name!r})"
        if transition.source not in states:
            problems.append(f"{where}: from-state {transition.source!r} is not declared")
        if transition.target not in states:
            problems.append(f"{where}: to-state {transition.target!r} is not declared")
        key = (transition.source, transition.name)
        if key in seen:
            problems.append(
                f"{where}: trigger {transition.name!r} is duplicated for from-state "
                f"{transition.source!r}"
            )
        seen.add(key)
    return problems


def load(spec: Mapping[str, Any]) -> WorkflowDefinition:
    """Parse a declarative mapping into a ``WorkflowDefinition``.

    Every field-level and graph-level problem is collected before raising
    ``InvalidWorkflow``; nothing is returned for an invalid spec.
    """

    if not isinstance(spec, Mapping):
        raise InvalidWorkflow("<unnamed>", [f"expected mapping, got {type(spec).__name__}"])

    raw_name = spec.get("name")
    name = raw_name.strip() if isinstance(raw_name, str) and raw_name.strip() else "<unnamed>"
    problems: list[str] = []
    if name == "<unnamed>":
        problems.append("name must be a non-empty string")
    _unknown_keys(spec, _WORKFLOW_KEYS, "workflow", problems)

    raw_initial = spec.get("initial_state")
    initial_state = raw_initial.strip() if isinstance(raw_initial, str) else ""
    if not initial_state:
        problems.append("initial_state must be a non-empty string")

    version = spec.get("version", 1)
    if isinstance(version, bool) or not isinstance(version, int) or version < 1:
        problems.append("version must be a positive integer")
        version = 1

    label = spec.get("label") or ""
    if not isinstance(label, str):
        problems.append("label must be a string")
        label = ""

    states = _parse_states(spec.get("states"), problems)
    transitions = _parse_transitions(spec.get("transitions"), problems)

    graph_problems = structural_problems(initial_state, states, transitions)
    if not initial_state:
        graph_problems = [item for item in graph_problems if not item.startswith("initial_state")]
    problems.extend(graph_problems)
    if problems:
        raise InvalidWorkflow(name, problems)

    return WorkflowDefinition(
        name=name,
        version=version,
        label=label,
        initial_state=initial_state,
        states=states,
        transitions=tuple(transitions),
    )


def load_file(path: str | Path) -> WorkflowDefinition:
    """Load one workflow definition from a YAML file."""

    resolved = Path(path)
    try:
        with resolved.open("r", encoding="utf-8") as handle:
            loaded = cast("object", yaml.safe_load(handle))
    except yaml.YAMLError as exc:
        raise InvalidWorkflow(resolved.stem, [f"{resolved}: invalid YAML ({exc})"]) from exc
    if not isinstance(loaded, Mapping):
        raise InvalidWorkflow(
            resolved.stem,
            [f"{resolved}: expected top-level mapping, got {type(loaded).__name__}"],
        )
    return load(loaded)


def _parse_states(raw: object, problems: list[str]) -> dict[str, WorkflowState]:
    states: dict[str, WorkflowState] = {}
    entries: list[tuple[str, object]] = []
    if isinstance(raw, Mapping):
        entries = [
            (f"states.{key}", {"name": key, **_as_mapping(value)}) for key, value in raw.items()
        ]
    elif isinstance(raw, list):
        entries = [(f"states[{index}]", value) for index, value in enumerate(raw)]
    else:
        problems.append("states must be a mapping or a list")
        return states

    for where, value in entries:
        payload: Mapping[str, Any] = (
            {"name": value} if isinstance(value, str) else _as_mapping(value)
        )
        if not payload:
            problems.append(f"{where}: expected a state name or mapping")
            continue
        _unknown_keys(payload, _STATE_KEYS, where, problems)
        try:
            state = WorkflowState(
                name=payload.get("name"),  # type: ignore[arg-type]
                label=str(payload.get("label") or ""),
                visible=_as_bool(payload.get("visible", False), f"{where}.visible", problems),
                published=_as_bool(
                    payload.get("published", False), f"{where}.published", problems
                ),
                author_only=_as_bool(
                    payload.get("author_only", False), f"{where}.author_only", problems
                ),
                inbox=_as_bool(payload.get("inbox", False), f"{where}.inbox", problems),
                tags=_as_str_list(payload.get("tags"), f"{where}.tags", problems),
            )
        except ValueError as exc:
            problems.append(f"{where}: {exc}")
            continue
        if state.name in states:
            problems.append(f"{where}: state {state.name!r} is declared twice")
            continue
        states[state.name] = state
    return states


def _parse_transitions(raw: object, problems: list[str]) -> list[WorkflowTransition]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        problems.append("transitions must be a list")
        return []

    transitions: list[WorkflowTransition] = []
    for index, value in enumerate(raw):
        where = f"transitions[{index}]"
        payload = _as_mapping(value)
        if not payload:
            problems.append(f"{where}: expected mapping")
            continue
        _unknown_keys(payload, _TRANSITION_KEYS, where, problems)
        raw_options = _as_mapping(payload.get("options"))
        _unknown_keys(raw_options, _OPTION_KEYS, f"{where}.options", problems)
        job_type = raw_options.get("job_type")
        try:
            transitions.append(
                WorkflowTransition(
                    name=payload.get("name"),  # type: ignore[arg-type]
                    source=payload.get("from", payload.get("source")),  # type: ignore[arg-type]
                    target=payload.get("to", payload.get("target")),  # type: ignore[arg-type]
                    label=str(payload.get("label") or ""),
                    help=str(payload.get("help") or ""),
                    required_scopes=_as_str_list(
                        payload.get("required_scopes"), f"{where}.required_scopes", problems
                    ),
                    required_check_categories=_as_str_list(
                        payload.get("required_check_categories"),
                        f"{where}.required_check_categories",
                        problems,
                    ),
                    required_check_ids=_as_str_list(
                        payload.get("required_check_ids"), f"{where}.required_check_ids", problems
                    ),
                    user_triggered=_as_bool(
                        payload.get("user_triggered", True), f"{where}.user_triggered", problems
                    ),
                    requires_job=_as_bool(
                        payload.get("requires_job", False), f"{where}.requires_job", problems
                    ),
                    options=TransitionOptions(
                        job_type=str(job_type) if job_type else None,
                        sets_published_date=_as_bool(
                            raw_options.get("sets_published_date", False),
                            f"{where}.options.sets_published_date",
                            problems,
                        ),
                        updates_slug=_as_bool(
                            raw_options.get("updates_slug", False),
                            f"{where}.options.updates_slug",
                            problems,
                        ),
                    ),
                )
            )
        except ValueError as exc:
            problems.append(f"{where}: {exc}")
    return transitions


def _as_mapping(value: object) -> dict[str, Any]:
    if not isinstance(value, Mapping):
        return {}
    return {str(key): item for key, item in value.items()}


def _as_bool(value: object, where: str, problems: list[str]) -> bool:
    if isinstance(value, bool):
        return value
    problems.append(f"{where}: expected boolean, got {type(value).__name__}")
    return False


def _as_str_list(value: object, where: str, problems: list[str]) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str) or not isinstance(value, list):
        problems.append(f"{where}: expected list of strings")
        return ()
    parsed: list[str] = []
    for item in value:
        if not isinstance(item, str) or not item.strip():
            problems.append(f"{where}: entries must be non-empty strings")
            continue
        parsed.append(item.strip())
    return tuple(parsed)


def _unknown_keys(
    payload: Mapping[str, Any], allowed: frozenset[str], where: str, problems: list[str]
) -> None:
    for key in sorted(set(payload) - allowed):
        problems.append(f"{where}.{key}: unknown field")


def _unique(values: Iterable[str]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(values))


__all__ = [
    "TransitionOptions",
    "WorkflowDefinition",
    "WorkflowState",
    "WorkflowTransition",
    "load",
    "load_file",
    "structural_problems",
]
