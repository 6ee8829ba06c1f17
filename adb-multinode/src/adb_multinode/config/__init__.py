"""Configuration loading (defaults, YAML/JSON files, environment)."""

from __future__ import annotations

from adb_multinode.config.settings import (
    ConfigValidationError,
    MultiNodeSettings,
    load_settings,
    read_settings_file,
    settings_from_env,
    validate_settings,
)

__all__ = [
    "ConfigValidationError",
    "MultiNodeSettings",
    "load_settings",
    "read_settings_file",
    "settings_from_env",
    "validate_settings",
]
