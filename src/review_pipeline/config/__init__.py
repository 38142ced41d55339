"""Runtime configuration: defaults, TOML file, environment and CLI overrides."""

from review_pipeline.config.loader import (
    DEFAULT_CONFIG_FILE,
    ENV_PREFIX,
    ConfigLoadError,
    dump_effective_config,
    load_config,
)
from review_pipeline.config.schema import (
    DEFAULT_CONFIG,
    ConfigValidationError,
    ConfigValidationIssue,
    ReviewConfig,
    assert_valid_config,
    default_config,
    merge_config,
)

__all__ = [
    "DEFAULT_CONFIG",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "ConfigLoadError",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ReviewConfig",
    "assert_valid_config",
    "default_config",
    "dump_effective_config",
    "load_config",
    "merge_config",
]
