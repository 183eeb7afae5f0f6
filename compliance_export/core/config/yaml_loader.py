# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""YAML configuration file loader utilities.

Grading scales differ between schools, so they are kept in a YAML file
with a `default` section and optional per-school overrides:

    default:
      bands:
        - {min: 80, grade: A}
        - {min: 60, grade: B}
      fallback: F
    schools:
      SCH-001:
        fallback: E

Example:
    >>> from pathlib import Path
    >>> from compliance_export.core.config.yaml_loader import load_yaml
    >>> config = load_yaml(Path("config/grading_scales.yaml"))
"""

from pathlib import Path
from typing import Any

import yaml


class YAMLLoadError(Exception):
    """Raised when YAML file cannot be loaded or parsed."""

    def __init__(self, path: Path, reason: str) -> None:
        """Initialize YAMLLoadError.

        Args:
            path: Path to the YAML file that failed to load.
            reason: Description of why the file failed to load.
        """
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to load YAML file '{path}': {reason}")


def load_yaml(path: Path) -> dict[str, Any]:
    """Load a single YAML file and return its contents as a dictionary.

    Args:
        path: Path to the YAML file to load.

    Returns:
        Parsed mapping, or an empty dict for an empty file.

    Raises:
        YAMLLoadError: If the file is missing, unreadable, not valid YAML,
            or its root is not a mapping.
    """
    if not path.is_file():
        raise YAMLLoadError(path, "File does not exist")

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise YAMLLoadError(path, f"Cannot read file: {e}") from e

    try:
        parsed = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise YAMLLoadError(path, f"Invalid YAML syntax: {e}") from e

    if parsed is None:
        return {}

    if not isinstance(parsed, dict):
        raise YAMLLoadError(
            path, f"YAML root must be a mapping, got {type(parsed).__name__}"
        )

    return parsed


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries, with override taking precedence.

    Used to lay a school's grading overrides on top of the default scale.
    Lists are replaced, not concatenated.

    Args:
        base: The base dictionary to merge into.
        override: The dictionary whose values take precedence.

    Returns:
        A new dictionary; neither input is modified.

    Example:
        >>> deep_merge({"fallback": "F", "bands": [1]}, {"fallback": "E"})
        {'fallback': 'E', 'bands': [1]}
    """
    result: dict[str, Any] = base.copy()

    for key, override_value in override.items():
        if (
            key in result
            and isinstance(result[key], dict)
            and isinstance(override_value, dict)
        ):
            result[key] = deep_merge(result[key], override_value)
        else:
            result[key] = override_value

    return result
