"""Validate run-time check options against a definition's option schema."""

from __future__ import annotations

import math
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any

from review_pipeline.checks.models import CheckDefinition, CheckOption, OptionType
from review_pipeline.errors import InvalidCheckOptions


def resolve_options(
    definition: CheckDefinition,
    supplied: Mapping[str, Any] | None = None,
) -> Mapping[str, Any]:
    """Merge ``supplied`` over schema defaults and validate every value.

    All problems are collected before raising so callers see the full picture.
    Options without a default and without a supplied value resolve to ``None``.
    """

    values = dict(supplied or {})
    problems: list[str] = []

    known = {option.id for option in definition.options}
    for key in sorted(values):
        if key not in known:
            problems.append(f"unknown option {key!r}")

    resolved: dict[str, Any] = {}
    for option in definition.options:
        if option.id in values and values[option.id] is not None:
            value = _coerce(option, values[option.id], problems)
        elif option.default is not None:
            value = _coerce(option, option.default, problems)
        else:
            if option.required:
                problems.append(f"option {option.id!r} is required")
            value = None
        resolved[option.id] = value

    if problems:
        raise InvalidCheckOptions(definition.id, problems)
    return MappingProxyType(resolved)


def parse_option_text(option: CheckOption, raw: str) -> Any:
    """Parse a textual value (CLI/env) into the option's declared type."""

    text = raw.strip()
    if option.type is OptionType.BOOLEAN:
        lowered = text.lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
        raise ValueError(f"option {option.id!r} expects a boolean, got {raw!r}")
    if option.type is OptionType.NUMBER:
        try:
            number = float(text)
        except ValueError as exc:
            raise ValueError(f"option {option.id!r} expects a number, got {raw!r}") from exc
        return int(number) if option.integer and number.is_integer() else number
    return text


def _coerce(option: CheckOption, value: object, problems: list[str]) -> Any:
    label = f"option {option.id!r}"
    if option.type is OptionType.BOOLEAN:
        if not isinstance(value, bool):
            problems.append(f"{label} expects a boolean, got {type(value).__name__}")
        return value

    if option.type is OptionType.STRING:
        if not isinstance(value, str):
            problems.append(f"{label} expects a string, got {type(value).__name__}")
        return value

    if isinstance(value, bool) or not isinstance(value, (int, float)):
        problems.append(f"{label} expects a number, got {type(value).__name__}")
        return value
    if not math.isfinite(value):
        problems.append(f"{label} must be finite")
        return value
    if option.integer:
        if isinstance(value, float) and not value.is_integer():
            problems.append(f"{label} must be an integer")
            return value
        value = int(value)
    if option.min is not None and value < option.min:
        problems.append(f"{label} must be >= {option.min}")
    if option.max is not None and value > option.max:
        problems.append(f"{label} must be <= {option.max}")
    return value


__all__ = ["parse_option_text", "resolve_options"]
