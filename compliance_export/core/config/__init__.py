# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Configuration package for the compliance export service.

This package provides centralized configuration management:
- Settings: Pydantic-based settings loaded from environment variables
- YAML loader: Loading grading scale files

Example:
    >>> from compliance_export.core.config import get_settings
    >>> settings = get_settings()
    >>> print(settings.environment)
    'development'
"""

from compliance_export.core.config.settings import (
    APISettings,
    ExportSettings,
    HistoryDatabaseSettings,
    RecordStoreSettings,
    Settings,
    clear_settings_cache,
    get_settings,
)
from compliance_export.core.config.yaml_loader import (
    YAMLLoadError,
    deep_merge,
    load_yaml,
)

__all__ = [
    # Settings
    "Settings",
    "get_settings",
    "clear_settings_cache",
    # Subsettings
    "ExportSettings",
    "RecordStoreSettings",
    "HistoryDatabaseSettings",
    "APISettings",
    # YAML utilities
    "load_yaml",
    "deep_merge",
    "YAMLLoadError",
]
