"""
review-pipeline — configuration schema and validation.

File: src/review_pipeline/config/schema.py

Purpose
- Define configuration defaults and strict validation rules.

What should be included in this file
- Typed shapes for the ``executor``, ``workflow``, ``checks`` and ``logging`` sections.
- Validation with structured issues (field path + message); unknown keys rejected.
- Deterministic deep-merge helpers.

Functional requirements
- Validate config payloads and report every issue at once.
"""

from __future__ import annotations

import copy
import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, TypedDict

from review_pipeline.utils.concurrency import default_concurrency

LOG_LEVELS: Final[tuple[str, ...]] = ("CRITICAL", "DEBUG", "ERROR", "INFO", "WARNING")
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("workflow", "definition_dirs"),
    ("checks", "catalog_files"),
)


class ExecutorConfig(TypedDict):
    max_concurrency: int
    check_timeout_seconds: float
    timeouts: dict[str, float]


class WorkflowConfig(TypedDict):
    default_workflow: str
    definition_dirs: list[str]


class ChecksConfig(TypedDict):
    catalog_files: list[str]
    resolve_network: bool
    network_timeout_seconds: float
    max_connections: int


class LoggingSection(TypedDict):
    level: str
    json: bool


class ReviewConfig(TypedDict):
    executor: ExecutorConfig
    workflow: WorkflowConfig
    checks: ChecksConfig
    logging: LoggingSection


DEFAULT_CONFIG: Final[ReviewConfig] = {
    "executor": {
        "max_concurrency": default_concurrency(),
        "check_timeout_seconds": 30.0,
        "timeouts": {},
    },
    "workflow": {
        "default_workflow": "SIMPLE",
        "definition_dirs": [],
    },
    "checks": {
        "catalog_files": [],
        "resolve_network": False,
        "network_timeout_seconds": 10.0,
        "max_connections": 25,
    },
    "logging": {
        "level": "INFO",
        "json": False,
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)


def default_config() -> ReviewConfig:
    """Return a deep copy of the built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deterministically deep-merge ``overlay`` onto ``base``."""

    merged = copy.deepcopy(dict(base))
    _merge_into(merged, overlay)
    return merged


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Validate ``config`` and return a normalized copy or raise ``ConfigValidationError``."""

    issues = _IssueCollector()
    if not isinstance(config, Mapping):
        issues.add("<root>", f"expected object, got {type(config).__name__}")
        raise ConfigValidationError(issues.items())

    _reject_unknown_keys(config, {"executor", "workflow", "checks", "logging"}, "", issues)
    normalized: dict[str, Any] = {}
    normalized["executor"] = _validate_executor(_section(config, "executor", issues), issues)
    normalized["workflow"] = _validate_workflow(_section(config, "workflow", issues), issues)
    normalized["checks"] = _validate_checks(_section(config, "checks", issues), issues)
    normalized["logging"] = _validate_logging(_section(config, "logging", issues), issues)

    if issues.has_issues:
        raise ConfigValidationError(issues.items())
    return normalized


def _section(config: Mapping[str, object], key: str, issues: _IssueCollector) -> dict[str, object]:
    raw = config.get(key, {})
    if not isinstance(raw, Mapping):
        issues.add(key, f"expected object, got {type(raw).__name__}")
        return {}
    return {str(name): value for name, value in raw.items()}


def _validate_executor(section: dict[str, object], issues: _IssueCollector) -> dict[str, Any]:
    path = "executor"
    _reject_unknown_keys(
        section, {"max_concurrency", "check_timeout_seconds", "timeouts"}, path, issues
    )
    defaults = DEFAULT_CONFIG["executor"]
    timeouts: dict[str, float] = {}
    raw_timeouts = section.get("timeouts", {})
    if not isinstance(raw_timeouts, Mapping):
        issues.add(f"{path}.timeouts", f"expected object, got {type(raw_timeouts).__name__}")
    else:
        for check_id in sorted(raw_timeouts):
            value = _as_float(
                raw_timeouts[check_id],
                f"{path}.timeouts.{check_id}",
                issues,
                exclusive_minimum=0.0,
            )
            if value is not None:
                timeouts[str(check_id)] = value
    return {
        "max_concurrency": _as_int(
            section.get("max_concurrency", defaults["max_concurrency"]),
            f"{path}.max_concurrency",
            issues,
            minimum=1,
        ),
        "check_timeout_seconds": _as_float(
            section.get("check_timeout_seconds", defaults["check_timeout_seconds"]),
            f"{path}.check_timeout_seconds",
            issues,
            exclusive_minimum=0.0,
        ),
        "timeouts": timeouts,
    }


def _validate_workflow(section: dict[str, object], issues: _IssueCollector) -> dict[str, Any]:
    path = "workflow"
    _reject_unknown_keys(section, {"default_workflow", "definition_dirs"}, path, issues)
    return {
        "default_workflow": _as_str(
            section.get("default_workflow", DEFAULT_CONFIG["workflow"]["default_workflow"]),
            f"{path}.default_workflow",
            issues,
        ),
        "definition_dirs": _as_str_list(
            section.get("definition_dirs", []), f"{path}.definition_dirs", issues
        ),
    }


def _validate_checks(section: dict[str, object], issues: _IssueCollector) -> dict[str, Any]:
    path = "checks"
    _reject_unknown_keys(
        section,
        {"catalog_files", "resolve_network", "network_timeout_seconds", "max_connections"},
        path,
        issues,
    )
    defaults = DEFAULT_CONFIG["checks"]
    return {
        "catalog_files": _as_str_list(
            section.get("catalog_files", []), f"{path}.catalog_files", issues
        ),
        "resolve_network": _as_bool(
            section.get("resolve_network", defaults["resolve_network"]),
            f"{path}.resolve_network",
            issues,
        ),
        "network_timeout_seconds": _as_float(
            section.get("network_timeout_seconds", defaults["network_timeout_seconds"]),
            f"{path}.network_timeout_seconds",
            issues,
            exclusive_minimum=0.0,
        ),
        "max_connections": _as_int(
            section.get("max_connections", defaults["max_connections"]),
            f"{path}.max_connections",
            issues,
            minimum=1,
        ),
    }


def _validate_logging(section: dict[str, object], issues: _IssueCollector) -> dict[str, Any]:
    path = "logging"
    _reject_unknown_keys(section, {"level", "json"}, path, issues)
    level = _as_str(
        section.get("level", DEFAULT_CONFIG["logging"]["level"]), f"{path}.level", issues
    )
    if level is not None:
        level = level.upper()
        if level not in LOG_LEVELS:
            issues.add(
                f"{path}.level",
                f"invalid value {level!r}; expected one of: {', '.join(LOG_LEVELS)}",
            )
            level = None
    return {
        "level": level,
        "json": _as_bool(
            section.get("json", DEFAULT_CONFIG["logging"]["json"]), f"{path}.json", issues
        ),
    }


def _as_str(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    parsed = value.strip()
    if not parsed:
        issues.add(path, "must not be empty")
        return None
    return parsed


def _as_str_list(value: object, path: str, issues: _IssueCollector) -> list[str]:
    if isinstance(value, str) or not isinstance(value, (list, tuple)):
        issues.add(path, f"expected list of strings, got {type(value).__name__}")
        return []
    parsed: list[str] = []
    for index, item in enumerate(value):
        text = _as_str(item, f"{path}[{index}]", issues)
        if text is not None:
            parsed.append(text)
    return parsed


def _as_bool(value: object, path: str, issues: _IssueCollector) -> bool | None:
    if isinstance(value, bool):
        return value
    issues.add(path, f"expected boolean, got {type(value).__name__}")
    return None


def _as_int(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: int | None = None,
) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(path, f"expected integer, got {type(value).__name__}")
        return None
    if minimum is not None and value < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return value


def _as_float(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    exclusive_minimum: float | None = None,
) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        issues.add(path, f"expected number, got {type(value).__name__}")
        return None
    parsed = float(value)
    if not math.isfinite(parsed):
        issues.add(path, "must be finite")
        return None
    if exclusive_minimum is not None and parsed <= exclusive_minimum:
        issues.add(path, f"must be > {exclusive_minimum:g}")
        return None
    return parsed


def _reject_unknown_keys(
    payload: Mapping[str, object],
    allowed: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(payload):
        if key not in allowed:
            issues.add(f"{path}.{key}" if path else key, "unknown field")


def _merge_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(overlay):
        value = overlay[key]
        existing = target.get(key)
        if isinstance(value, Mapping) and isinstance(existing, dict):
            _merge_into(existing, value)
        elif isinstance(value, Mapping):
            nested: dict[str, Any] = {}
            _merge_into(nested, value)
            target[key] = nested
        else:
            target[key] = copy.deepcopy(value)


__all__ = [
    "DEFAULT_CONFIG",
    "LOG_LEVELS",
    "PATH_FIELDS",
    "ChecksConfig",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ExecutorConfig",
    "LoggingSection",
    "ReviewConfig",
    "WorkflowConfig",
    "assert_valid_config",
    "default_config",
    "merge_config",
]
