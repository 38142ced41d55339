"""Process logging: structlog wiring, JSON-lines output, correlation fields."""

from review_pipeline.observability.logging import (
    LoggingConfig,
    configure_logging,
    correlation_scope,
    get_correlation_context,
    redact,
    redact_event,
)

__all__ = [
    "LoggingConfig",
    "configure_logging",
    "correlation_scope",
    "get_correlation_context",
    "redact",
    "redact_event",
]
