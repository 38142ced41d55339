"""
review-pipeline — check data model.

File: src/review_pipeline/checks/models.py

Purpose
- Define check definitions, option schemas, per-execution results, and the compiled
  category report consumed by workflow gating.

What should be included in this file
- Canonical ``pass``/``fail``/``error`` statuses and the worst-status-wins roll-up.
- Stable-key ``to_dict`` exports for persistence and client surfacing.

Functional requirements
- Roll-up: ``error`` if any member is ``error``, else ``fail`` if any is ``fail``,
  else ``pass``. Categories roll up into the report status the same way.
- Category grouping is deterministic: first appearance in the compiled results.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Final

from review_pipeline.documents.model import Position, ResolvedDocument


class CheckStatus(StrEnum):
    """Canonical check statuses."""

    PASS = "pass"
    FAIL = "fail"
    ERROR = "error"


_STATUS_RANK: Final[Mapping[CheckStatus, int]] = {
    CheckStatus.PASS: 0,
    CheckStatus.FAIL: 1,
    CheckStatus.ERROR: 2,
}


class OptionType(StrEnum):
    NUMBER = "number"
    BOOLEAN = "boolean"
    STRING = "string"


def as_check_status(value: object, path: str = "status") -> CheckStatus:
    if isinstance(value, CheckStatus):
        return value
    if isinstance(value, str):
        try:
            return CheckStatus(value.strip().lower())
        except ValueError:
            pass
    allowed = ", ".join(item.value for item in CheckStatus)
    raise ValueError(f"{path} must be one of: {allowed}; got {value!r}")


def roll_up(statuses: Iterable[CheckStatus | str]) -> CheckStatus:
    """Reduce statuses to one, worst-status-wins. An empty input rolls up to ``pass``."""

    worst = CheckStatus.PASS
    for raw in statuses:
        status = as_check_status(raw)
        if _STATUS_RANK[status] > _STATUS_RANK[worst]:
            worst = status
            if worst is CheckStatus.ERROR:
                break
    return worst


def _require_text(value: object, path: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{path} must be a string")
    parsed = value.strip()
    if not parsed:
        raise ValueError(f"{path} must not be empty")
    return parsed


def _optional_text(value: object, path: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"{path} must be a string")
    return value


@dataclass(frozen=True, slots=True)
class CheckOption:
    """Schema entry for one configurable check parameter."""

    id: str
    type: OptionType
    title: str | None = None
    description: str | None = None
    default: Any = None
    required: bool = False
    integer: bool = False
    min: float | None = None
    max: float | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "id", _require_text(self.id, "CheckOption.id"))
        try:
            object.__setattr__(self, "type", OptionType(self.type))
        except ValueError as exc:
            allowed = ", ".join(item.value for item in OptionType)
            raise ValueError(
                f"CheckOption.type for {self.id!r} must be one of: {allowed}"
            ) from exc
        if self.type is not OptionType.NUMBER and (
            self.integer or self.min is not None or self.max is not None
        ):
            raise ValueError(f"option {self.id!r}: integer/min/max apply to number options only")
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError(f"option {self.id!r}: min must be <= max")

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any], *, location: str = "option") -> CheckOption:
        unknown = sorted(
            set(payload)
            - {"id", "type", "title", "description", "default", "required", "integer", "min", "max"}
        )
        if unknown:
            raise ValueError(f"{location}: unknown field(s): {', '.join(unknown)}")
        return cls(
            id=_require_text(payload.get("id"), f"{location}.id"),
            type=payload.get("type"),  # type: ignore[arg-type]
            title=_optional_text(payload.get("title"), f"{location}.title"),
            description=_optional_text(payload.get("description"), f"{location}.description"),
            default=payload.get("default"),
            required=bool(payload.get("required", False)),
            integer=bool(payload.get("integer", False)),
            min=payload.get("min"),
            max=payload.get("max"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "title": self.title,
            "description": self.description,
            "default": self.default,
            "required": self.required,
            "integer": self.integer,
            "min": self.min,
            "max": self.max,
        }


@dataclass(frozen=True, slots=True)
class CheckDefinition:
    """Immutable catalog entry for one check.

    ``category`` defaults to the first tag when omitted, so ``tags`` should be
    supplied as an ordered sequence in that case.
    """

    id: str
    title: str
    purpose: str
    category: str = ""
    tags: frozenset[str] = field(default_factory=frozenset)
    options: tuple[CheckOption, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "id", _require_text(self.id, "CheckDefinition.id"))
        object.__setattr__(self, "title", _require_text(self.title, f"{self.id}.title"))
        object.__setattr__(self, "purpose", _require_text(self.purpose, f"{self.id}.purpose"))

        if isinstance(self.tags, str):
            raise ValueError(f"{self.id}.tags must be a collection of strings, not a string")
        ordered_tags = [_require_text(tag, f"{self.id}.tags[]") for tag in self.tags]
        object.__setattr__(self, "tags", frozenset(ordered_tags))

        category = self.category.strip() if isinstance(self.category, str) else ""
        if not category:
            if not ordered_tags:
                raise ValueError(f"{self.id}: category is required when no tags are given")
            category = ordered_tags[0]
        object.__setattr__(self, "category", category)

        options = tuple(self.options)
        seen: set[str] = set()
        for option in options:
            if not isinstance(option, CheckOption):
                raise ValueError(f"{self.id}.options entries must be CheckOption instances")
            if option.id in seen:
                raise ValueError(f"{self.id}: duplicate option id {option.id!r}")
            seen.add(option.id)
        object.__setattr__(self, "options", options)

    @classmethod
    def from_mapping(
        cls, payload: Mapping[str, Any], *, location: str = "check"
    ) -> CheckDefinition:
        unknown = sorted(set(payload) - {"id", "title", "purpose", "category", "tags", "options"})
        if unknown:
            raise ValueError(f"{location}: unknown field(s): {', '.join(unknown)}")
        raw_tags = payload.get("tags") or []
        if not isinstance(raw_tags, Sequence) or isinstance(raw_tags, str):
            raise ValueError(f"{location}.tags must be a list of strings")
        raw_options = payload.get("options") or []
        if not isinstance(raw_options, Sequence) or isinstance(raw_options, str):
            raise ValueError(f"{location}.options must be a list")
        options: list[CheckOption] = []
        for index, raw_option in enumerate(raw_options):
            if not isinstance(raw_option, Mapping):
                raise ValueError(f"{location}.options[{index}] must be a mapping")
            options.append(
                CheckOption.from_mapping(raw_option, location=f"{location}.options[{index}]")
            )
        category = payload.get("category")
        return cls(
            id=payload.get("id"),  # type: ignore[arg-type]
            title=payload.get("title"),  # type: ignore[arg-type]
            purpose=payload.get("purpose"),  # type: ignore[arg-type]
            category=category if isinstance(category, str) else "",
            tags=tuple(raw_tags),  # type: ignore[arg-type]
            options=tuple(options),
        )

    def option(self, option_id: str) -> CheckOption | None:
        for option in self.options:
            if option.id == option_id:
                return option
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "purpose": self.purpose,
            "category": self.category,
            "tags": sorted(self.tags),
            "options": [option.to_dict() for option in self.options],
        }


@dataclass(frozen=True, slots=True)
class RawCheckResult:
    """Verdict emitted by a check implementation, before definition data is attached."""

    status: CheckStatus
    message: str
    help: str | None = None
    note: str | None = None
    position: Position | None = None
    file: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "status", as_check_status(self.status, "RawCheckResult.status"))
        if not isinstance(self.message, str):
            object.__setattr__(self, "message", str(self.message))

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> RawCheckResult:
        raw_position = payload.get("position")
        position: Position | None
        if isinstance(raw_position, Position) or raw_position is None:
            position = raw_position
        elif isinstance(raw_position, Mapping):
            position = Position.from_mapping(raw_position)
        else:
            raise ValueError("result.position must be a mapping")
        return cls(
            status=payload.get("status"),  # type: ignore[arg-type]
            message=str(payload.get("message", "")),
            help=_optional_text(payload.get("help"), "result.help"),
            note=_optional_text(payload.get("note"), "result.note"),
            position=position,
            file=_optional_text(payload.get("file"), "result.file"),
        )


def passed(message: str, **details: Any) -> RawCheckResult:
    return RawCheckResult(status=CheckStatus.PASS, message=message, **details)


def failed(message: str, **details: Any) -> RawCheckResult:
    return RawCheckResult(status=CheckStatus.FAIL, message=message, **details)


def errored(message: str, **details: Any) -> RawCheckResult:
    return RawCheckResult(status=CheckStatus.ERROR, message=message, **details)


@dataclass(frozen=True, slots=True)
class CheckResult:
    """One executed result, attributed to its check id and category."""

    id: str
    status: CheckStatus
    message: str
    category: str
    help: str | None = None
    note: str | None = None
    position: Position | None = None
    file: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "status", as_check_status(self.status, "CheckResult.status"))

    @classmethod
    def from_raw(cls, definition: CheckDefinition, raw: RawCheckResult) -> CheckResult:
        return cls(
            id=definition.id,
            status=raw.status,
            message=raw.message,
            category=definition.category,
            help=raw.help,
            note=raw.note,
            position=raw.position,
            file=raw.file,
        )

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> CheckResult:
        raw = RawCheckResult.from_mapping(payload)
        return cls(
            id=_require_text(payload.get("id"), "result.id"),
            status=raw.status,
            message=raw.message,
            category=_require_text(payload.get("category"), "result.category"),
            help=raw.help,
            note=raw.note,
            position=raw.position,
            file=raw.file,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status.value,
            "message": self.message,
            "category": self.category,
            "help": self.help,
            "note": self.note,
            "position": None if self.position is None else self.position.to_dict(),
            "file": self.file,
        }


@dataclass(frozen=True, slots=True)
class CompiledCheckResult:
    """A definition paired with one of its results."""

    definition: CheckDefinition
    result: CheckResult

    def __post_init__(self) -> None:
        if self.definition.id != self.result.id:
            raise ValueError(
                f"result id {self.result.id!r} does not match definition {self.definition.id!r}"
            )

    @property
    def id(self) -> str:
        return self.definition.id

    @property
    def status(self) -> CheckStatus:
        return self.result.status

    @property
    def category(self) -> str:
        return self.result.category

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.definition.id,
            "title": self.definition.title,
            "purpose": self.definition.purpose,
            "tags": sorted(self.definition.tags),
            **{key: value for key, value in self.result.to_dict().items() if key != "id"},
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> CompiledCheckResult:
        result = CheckResult.from_dict(payload)
        definition = CheckDefinition(
            id=result.id,
            title=str(payload.get("title") or result.id),
            purpose=str(payload.get("purpose") or result.id),
            category=result.category,
            tags=frozenset(payload.get("tags") or ()),
        )
        return cls(definition=definition, result=result)


@dataclass(frozen=True, slots=True)
class CategoryReport:
    """Rolled-up status for one category with its compiled results."""

    category: str
    status: CheckStatus
    checks: tuple[CompiledCheckResult, ...]

    @property
    def passed(self) -> int:
        return sum(1 for item in self.checks if item.status is CheckStatus.PASS)

    @property
    def total(self) -> int:
        return len(self.checks)

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category,
            "status": self.status.value,
            "passed": self.passed,
            "total": self.total,
            "checks": [item.to_dict() for item in self.checks],
        }


@dataclass(frozen=True, slots=True)
class CheckReport:
    """Aggregate report: overall status plus per-category groups."""

    status: CheckStatus
    results: tuple[CategoryReport, ...] = ()

    @classmethod
    def compile(cls, compiled: Iterable[CompiledCheckResult]) -> CheckReport:
        grouped: dict[str, list[CompiledCheckResult]] = {}
        for item in compiled:
            grouped.setdefault(item.category, []).append(item)

        categories = tuple(
            CategoryReport(
                category=category,
                status=roll_up(item.status for item in items),
                checks=tuple(items),
            )
            for category, items in grouped.items()
        )
        return cls(status=roll_up(group.status for group in categories), results=categories)

    @property
    def compiled(self) -> tuple[CompiledCheckResult, ...]:
        return tuple(item for group in self.results for item in group.checks)

    @property
    def categories(self) -> tuple[str, ...]:
        return tuple(group.category for group in self.results)

    def category_status(self, category: str) -> CheckStatus | None:
        for group in self.results:
            if group.category == category:
                return group.status
        return None

    def check_status(self, check_id: str) -> CheckStatus | None:
        """Rolled-up status over every result emitted by ``check_id``.

        Returns ``None`` when the check did not run or emitted zero results.
        """

        statuses = [item.status for item in self.compiled if item.id == check_id]
        if not statuses:
            return None
        return roll_up(statuses)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "results": [group.to_dict() for group in self.results],
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> CheckReport:
        """Rebuild a persisted report; statuses are recomputed from the member results."""

        raw_groups = payload.get("results") or []
        if not isinstance(raw_groups, Sequence) or isinstance(raw_groups, str):
            raise ValueError("report.results must be a list")
        compiled: list[CompiledCheckResult] = []
        for group_index, raw_group in enumerate(raw_groups):
            if not isinstance(raw_group, Mapping):
                raise ValueError(f"report.results[{group_index}] must be a mapping")
            category = raw_group.get("category")
            for raw_check in raw_group.get("checks") or []:
                if not isinstance(raw_check, Mapping):
                    raise ValueError(
                        f"report.results[{group_index}].checks entries must be mappings"
                    )
                entry = dict(raw_check)
                entry.setdefault("category", category)
                compiled.append(CompiledCheckResult.from_dict(entry))
        return cls.compile(compiled)


@dataclass(frozen=True, slots=True)
class CheckContext:
    """Per-invocation inputs handed to a check implementation."""

    check_id: str
    options: Mapping[str, Any] = field(default_factory=dict)
    timeout_seconds: float | None = None
    services: Mapping[str, Any] = field(default_factory=dict)

    def option(self, option_id: str, default: Any = None) -> Any:
        value = self.options.get(option_id)
        return default if value is None else value

    def service(self, name: str) -> Any | None:
        return self.services.get(name)


CheckOutput = (
    RawCheckResult | Mapping[str, Any] | Sequence[RawCheckResult | Mapping[str, Any]] | None
)
CheckImplementation = Callable[
    [ResolvedDocument, CheckContext], CheckOutput | Awaitable[CheckOutput]
]

__all__ = [
    "CategoryReport",
    "CheckContext",
    "CheckDefinition",
    "CheckImplementation",
    "CheckOutput",
    "CheckOption",
    "CheckReport",
    "CheckResult",
    "CheckStatus",
    "CompiledCheckResult",
    "OptionType",
    "RawCheckResult",
    "as_check_status",
    "errored",
    "failed",
    "passed",
    "roll_up",
]
