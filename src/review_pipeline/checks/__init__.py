"""
review-pipeline — check registry and executor public API.

Purpose
- Export the check catalog types, the registry, and the executor that compiles
  category reports for workflow gating.
"""

from review_pipeline.checks.builtin import BUILTIN_IMPLEMENTATIONS, default_registry
from review_pipeline.checks.executor import CheckExecutor, CheckSelection
from review_pipeline.checks.models import (
    CategoryReport,
    CheckContext,
    CheckDefinition,
    CheckOption,
    CheckReport,
    CheckResult,
    CheckStatus,
    CompiledCheckResult,
    OptionType,
    RawCheckResult,
    errored,
    failed,
    passed,
    roll_up,
)
from review_pipeline.checks.options import parse_option_text, resolve_options
from review_pipeline.checks.registry import CheckRegistry, load_check_catalog

__all__ = [
    "BUILTIN_IMPLEMENTATIONS",
    "CategoryReport",
    "CheckContext",
    "CheckDefinition",
    "CheckExecutor",
    "CheckOption",
    "CheckRegistry",
    "CheckReport",
    "CheckResult",
    "CheckSelection",
    "CheckStatus",
    "CompiledCheckResult",
    "OptionType",
    "RawCheckResult",
    "default_registry",
    "errored",
    "failed",
    "load_check_catalog",
    "parse_option_text",
    "passed",
    "resolve_options",
    "roll_up",
]
