"""Configuration system for sevenzip-backup.

This module provides TOML-based configuration loading, the layered merge of
defaults and user overrides, job selection, and resolution of the effective
per-job configuration.
"""

from .loader import ConfigError, find_config_file, load_config
from .merge import deep_merge
from .schema import (
    CliOverrides,
    Config,
    EffectiveJobConfig,
    NotificationSettings,
    PostRunActionSettings,
    ResolvedTarget,
    RunMode,
)

__all__ = [
    "CliOverrides",
    "Config",
    "ConfigError",
    "EffectiveJobConfig",
    "NotificationSettings",
    "PostRunActionSettings",
    "ResolvedTarget",
    "RunMode",
    "deep_merge",
    "find_config_file",
    "load_config",
]
