"""Deep merge for configuration cascading."""

from __future__ import annotations

from typing import Any


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries.

    Rules:
    - Nested dicts are recursively merged
    - Lists are replaced entirely (not concatenated)
    - None values in override do NOT override base
    - Other values are replaced

    Returns:
        A new dictionary; neither input is mutated.
    """
    result = base.copy()

    for key, value in override.items():
        if value is None:
            continue
        current = result.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            result[key] = deep_merge(current, value)
        else:
            result[key] = value

    return result


def merge_configs(*configs: dict[str, Any]) -> dict[str, Any]:
    """Merge multiple configs in order (later overrides earlier)."""
    result: dict[str, Any] = {}
    for config in configs:
        if config:
            result = deep_merge(result, config)
    return result
