"""Structured logging setup with JSON-lines output and redaction support."""

from __future__ import annotations

import json
import logging
import sys
import threading
from collections.abc import Iterator, Mapping, MutableMapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import IO, Any, Final

import structlog

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

_REDACTED_VALUE: Final[str] = "***REDACTED***"
_DEFAULT_LOGGER_NAME: Final[str] = "review_pipeline"

_CORRELATION_KEYS: Final[tuple[str, ...]] = (
    "run_id",
    "submission_id",
    "workflow",
    "trigger",
    "check_id",
)

_SENSITIVE_KEY_TERMS: Final[tuple[str, ...]] = (
    "secret",
    "token",
    "password",
    "passphrase",
    "api_key",
    "apikey",
    "authorization",
    "credential",
    "cookie",
)

_STANDARD_LOG_RECORD_FIELDS: Final[frozenset[str]] = frozenset(
    {
        "args",
        "asctime",
        "created",
        "exc_info",
        "exc_text",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "message",
        "module",
        "msecs",
        "msg",
        "name",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "thread",
        "threadName",
        "taskName",
    }
)

# Keys structlog adds that the formatter renders itself.
_STRUCTLOG_META_KEYS: Final[frozenset[str]] = frozenset({"level", "logger"})

_CONFIGURE_LOCK = threading.Lock()


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Configuration for process logging."""

    level: int | str = "INFO"
    json: bool = False
    logger_name: str = _DEFAULT_LOGGER_NAME
    stream: IO[str] | None = None

    @classmethod
    def from_mapping(cls, payload: Mapping[str, object]) -> LoggingConfig:
        """Build from the validated ``[logging]`` config section."""

        level = payload.get("level", "INFO")
        return cls(
            level=level if isinstance(level, (int, str)) else "INFO",
            json=bool(payload.get("json", False)),
        )


def configure_logging(config: LoggingConfig | None = None) -> logging.Logger:
    """Install one stream handler on the package logger and route structlog through it.

    Calling again replaces the previously installed handler.
    """

    cfg = config or LoggingConfig()
    level = _parse_log_level(cfg.level)
    formatter: logging.Formatter = _JsonLineFormatter() if cfg.json else _KeyValueFormatter()

    with _CONFIGURE_LOCK:
        logger = logging.getLogger(cfg.logger_name)
        for existing in list(logger.handlers):
            if getattr(existing, "_review_pipeline_handler", False):
                logger.removeHandler(existing)
                existing.close()
        handler: logging.Handler = (
            logging.StreamHandler(cfg.stream) if cfg.stream is not None else _StderrHandler()
        )
        handler.setFormatter(formatter)
        handler._review_pipeline_handler = True  # type: ignore[attr-defined]
        logger.addHandler(handler)
        logger.setLevel(level)
        logger.propagate = False

        structlog.configure(
            processors=[
                structlog.contextvars.merge_contextvars,
                structlog.stdlib.filter_by_level,
                structlog.stdlib.add_log_level,
                structlog.processors.TimeStamper(fmt="iso", utc=True),
                redact_event,
                _avoid_record_collisions,
                structlog.stdlib.render_to_log_kwargs,
            ],
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=False,
        )
    return logger


class _StderrHandler(logging.StreamHandler):  # type: ignore[type-arg]
    """Stream handler bound to whatever ``sys.stderr`` is at emit time."""

    @property  # type: ignore[override]
    def stream(self) -> IO[str]:
        return sys.stderr

    @stream.setter
    def stream(self, _value: object) -> None:
        return None


def get_correlation_context() -> dict[str, Any]:
    """Return the correlation fields bound in the current context."""

    return dict(structlog.contextvars.get_contextvars())


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    """Temporarily bind correlation fields for log records in scope."""

    bound = {key: value for key, value in fields.items() if value is not None}
    tokens = structlog.contextvars.bind_contextvars(**bound)
    try:
        yield
    finally:
        structlog.contextvars.reset_contextvars(**tokens)


def redact_event(
    _logger: object, _method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """structlog processor that masks values stored under sensitive keys."""

    for key in list(event_dict):
        event_dict[key] = _redact_value(event_dict[key], key_context=key)
    return event_dict


def redact(value: object) -> JSONValue:
    return _redact_value(_normalize_json_value(value), key_context=None)


class _JsonLineFormatter(logging.Formatter):
    """Formatter that emits canonical JSON objects per log line."""

    def format(self, record: logging.LogRecord) -> str:
        extras = _extract_extra_fields(record)
        timestamp = extras.pop("timestamp", None)
        event: dict[str, JSONValue] = {
            "timestamp": timestamp if isinstance(timestamp, str) else _iso8601z(record.created),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        correlation = get_correlation_context()
        correlation.update(
            {key: extras.pop(key) for key in _CORRELATION_KEYS if key in extras}
        )
        for key in sorted(correlation):
            if key in _CORRELATION_KEYS:
                event[key] = _normalize_json_value(correlation[key])

        if extras:
            event["fields"] = redact(extras)
        if record.exc_info is not None:
            event["exception"] = self.formatException(record.exc_info)

        return json.dumps(event, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


class _KeyValueFormatter(logging.Formatter):
    """Human-oriented ``LEVEL logger event key=value`` lines."""

    def format(self, record: logging.LogRecord) -> str:
        extras = _extract_extra_fields(record)
        extras.pop("timestamp", None)
        pairs = " ".join(
            f"{key}={json.dumps(value, ensure_ascii=False, default=str)}"
            for key, value in sorted(redact(extras).items())  # type: ignore[union-attr]
        )
        line = f"{record.levelname:<8} {record.name} {record.getMessage()}"
        if pairs:
            line = f"{line} {pairs}"
        if record.exc_info is not None:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def _avoid_record_collisions(
    _logger: object, _method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    for key in list(event_dict):
        if key in _STANDARD_LOG_RECORD_FIELDS:
            event_dict[f"field_{key}"] = event_dict.pop(key)
    return event_dict


def _parse_log_level(value: int | str) -> int:
    if isinstance(value, int):
        return value
    resolved = logging.getLevelName(value.strip().upper())
    if not isinstance(resolved, int):
        raise ValueError(f"unknown log level: {value!r}")
    return resolved


def _iso8601z(epoch_seconds: float) -> str:
    moment = datetime.fromtimestamp(epoch_seconds, tz=timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _extract_extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _STANDARD_LOG_RECORD_FIELDS
        and key not in _STRUCTLOG_META_KEYS
        and not key.startswith("_")
    }


def _normalize_json_value(value: object) -> JSONValue:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Mapping):
        return {str(key): _normalize_json_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        items = sorted(value, key=str) if isinstance(value, (set, frozenset)) else value
        return [_normalize_json_value(item) for item in items]
    return str(value)


def _redact_value(value: Any, *, key_context: str | None) -> Any:
    if key_context is not None and _requires_redaction_for_key(key_context):
        return _REDACTED_VALUE
    if isinstance(value, list):
        return [_redact_value(item, key_context=None) for item in value]
    if isinstance(value, dict):
        return {key: _redact_value(item, key_context=key) for key, item in value.items()}
    return value


def _requires_redaction_for_key(key: str) -> bool:
    key_lower = key.lower()
    return any(term in key_lower for term in _SENSITIVE_KEY_TERMS)


__all__ = [
    "JSONScalar",
    "JSONValue",
    "LoggingConfig",
    "configure_logging",
    "correlation_scope",
    "get_correlation_context",
    "redact",
    "redact_event",
]
