"""
review-pipeline — runtime config loader.

File: src/review_pipeline/config/loader.py

Purpose
- Load effective runtime config from defaults, TOML file, env vars, and CLI overrides.

What should be included in this file
- Precedence logic: CLI > env (REVIEW_) > file > defaults.
- TOML loading via ``tomllib``.
- Deterministic environment variable mapping and coercion; ``__`` separates
  nesting levels (``REVIEW_EXECUTOR__MAX_CONCURRENCY``).
- Path normalization relative to the config file location.

Functional requirements
- Reject invalid config via schema validation.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Final, Literal

from review_pipeline.config.schema import (
    PATH_FIELDS,
    assert_valid_config,
    default_config,
    merge_config,
)

DEFAULT_CONFIG_FILE: Final[str] = "review.toml"
ENV_PREFIX: Final[str] = "REVIEW_"
ENV_SEPARATOR: Final[str] = "__"

_BOOLEAN_TRUE: Final[frozenset[str]] = frozenset({"1", "true", "t", "yes", "y", "on"})
_BOOLEAN_FALSE: Final[frozenset[str]] = frozenset({"0", "false", "f", "no", "n", "off"})

ValueKind = Literal["str", "int", "float", "bool", "list"]


# Scalar and list fields settable from the environment. Per-check timeouts are
# matched by prefix instead, since their keys are check ids.
_ENV_FIELDS: Final[tuple[tuple[tuple[str, ...], ValueKind], ...]] = (
    (("executor", "max_concurrency"), "int"),
    (("executor", "check_timeout_seconds"), "float"),
    (("workflow", "default_workflow"), "str"),
    (("workflow", "definition_dirs"), "list"),
    (("checks", "catalog_files"), "list"),
    (("checks", "resolve_network"), "bool"),
    (("checks", "network_timeout_seconds"), "float"),
    (("checks", "max_connections"), "int"),
    (("logging", "level"), "str"),
    (("logging", "json"), "bool"),
)


class ConfigLoadError(ValueError):
    """Raised when config cannot be loaded or overrides cannot be coerced."""


def load_config(
    config_path: str | Path | None = None,
    *,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Load effective config with deterministic precedence: CLI > env > file > defaults."""

    resolved_path = _resolve_config_path(config_path)
    explicit_path = config_path is not None
    env_map = dict(os.environ if environ is None else environ)

    file_payload = _load_toml_file(resolved_path, required=explicit_path)
    merged = merge_config(default_config(), file_payload)
    merged = assert_valid_config(merged)
    merged = normalize_paths(merged, base_dir=resolved_path.parent)

    env_overrides = _collect_env_overrides(env_map)
    cli_payload = _materialize_cli_overrides(cli_overrides or {})

    merged = merge_config(merged, env_overrides)
    merged = merge_config(merged, cli_payload)
    return assert_valid_config(merged)


def normalize_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Resolve configured path lists relative to ``base_dir``."""

    materialized = merge_config({}, config)
    for field_path in PATH_FIELDS:
        value = _get_nested(materialized, field_path)
        if not isinstance(value, list):
            continue
        _set_nested(
            materialized,
            field_path,
            [
                _normalize_one_path(item, base_dir) if isinstance(item, str) else item
                for item in value
            ],
        )
    return materialized


def dump_effective_config(config: Mapping[str, object]) -> str:
    """Return a deterministic JSON dump of the effective config."""

    return json.dumps(config, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def env_name_for_path(path: tuple[str, ...]) -> str:
    return ENV_PREFIX + ENV_SEPARATOR.join(part.upper() for part in path)


def _resolve_config_path(config_path: str | Path | None) -> Path:
    if config_path is None:
        return (Path.cwd() / DEFAULT_CONFIG_FILE).resolve()
    return Path(config_path).expanduser().resolve()


def _load_toml_file(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}

    try:
        with path.open("rb") as handle:
            parsed = tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc

    return parsed


def _collect_env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for path, kind in _ENV_FIELDS:
        env_name = env_name_for_path(path)
        if env_name in environ:
            _set_nested(overrides, path, _coerce_env(environ[env_name], kind, env_name, path))

    for check_id, env_name in _timeout_variables(environ):
        path = ("executor", "timeouts", check_id)
        _set_nested(overrides, path, _coerce_env(environ[env_name], "float", env_name, path))
    return overrides


def _timeout_variables(environ: Mapping[str, str]) -> list[tuple[str, str]]:
    """Map ``REVIEW_EXECUTOR__TIMEOUTS__LINKS_RESOLVE`` to ``("links-resolve", name)``."""

    prefix = env_name_for_path(("executor", "timeouts")) + ENV_SEPARATOR
    found: list[tuple[str, str]] = []
    for env_name in sorted(environ):
        suffix = env_name[len(prefix) :] if env_name.startswith(prefix) else ""
        if suffix:
            found.append((suffix.lower().replace("_", "-"), env_name))
    return found


def _coerce_env(
    raw: str,
    value_type: ValueKind,
    env_name: str,
    path: tuple[str, ...],
) -> object:
    value = raw.strip()
    if value_type == "str":
        return value
    if value_type == "list":
        return [item for item in (part.strip() for part in value.split(os.pathsep)) if item]
    if value_type == "int":
        try:
            return int(value)
        except ValueError as exc:
            raise ConfigLoadError(f"{env_name} -> {'.'.join(path)} must be an integer") from exc
    if value_type == "float":
        try:
            return float(value)
        except ValueError as exc:
            raise ConfigLoadError(f"{env_name} -> {'.'.join(path)} must be a number") from exc

    lowered = value.lower()
    if lowered in _BOOLEAN_TRUE:
        return True
    if lowered in _BOOLEAN_FALSE:
        return False
    raise ConfigLoadError(
        f"{env_name} -> {'.'.join(path)} must be a boolean (true/false/1/0/yes/no/on/off)"
    )


def _materialize_cli_overrides(cli_overrides: Mapping[str, object]) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    for key in sorted(cli_overrides):
        value = cli_overrides[key]
        if value is None:
            continue
        path = tuple(part for part in key.split(".") if part)
        if not path:
            raise ConfigLoadError(f"invalid CLI override key {key!r}")
        _set_nested(payload, path, value)
    return payload


def _set_nested(target: dict[str, Any], path: tuple[str, ...], value: object) -> None:
    cursor = target
    for part in path[:-1]:
        next_node = cursor.get(part)
        if not isinstance(next_node, dict):
            next_node = {}
            cursor[part] = next_node
        cursor = next_node
    cursor[path[-1]] = value


def _get_nested(payload: Mapping[str, object], path: tuple[str, ...]) -> object | None:
    cursor: object = payload
    for part in path:
        if not isinstance(cursor, Mapping) or part not in cursor:
            return None
        cursor = cursor[part]
    return cursor


def _normalize_one_path(raw: str, base_dir: Path) -> str:
    expanded = os.path.expandvars(raw)
    candidate = Path(expanded).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    return Path(os.path.normpath(str(candidate))).as_posix()


__all__ = [
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "ENV_SEPARATOR",
    "dump_effective_config",
    "env_name_for_path",
    "load_config",
    "normalize_paths",
]
