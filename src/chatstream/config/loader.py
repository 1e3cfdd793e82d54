"""Configuration file loading and caching.

Handles:
- YAML file parsing
- Environment variable overrides
- Config caching with reload support
- Conversion from dict to typed Config dataclass
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from pathlib import Path
from typing import Any

import yaml

from chatstream.config.merge import merge_configs
from chatstream.config.paths import get_config_paths
from chatstream.config.schema import (
    Config,
    LLMConfig,
    LoggingConfig,
    PermissionsConfig,
    ToolRiskRule,
    ToolsConfig,
)

# Module logger (may not be configured yet at import time)
_log = logging.getLogger("chatstream.config")

_cached_config: Config | None = None

_reload_callbacks: list[Callable[[Config], None]] = []

_RISK_VALUES = {"read-only", "dangerous", "forbidden"}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file, returning empty dict if not found or invalid."""
    if not path.exists():
        return {}

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
            return data if isinstance(data, dict) else {}
    except yaml.YAMLError as e:
        _log.warning("Invalid YAML in %s: %s", path, e)
        return {}
    except PermissionError:
        _log.debug("Permission denied reading %s", path)
        return {}
    except OSError as e:
        _log.warning("Error reading %s: %s", path, e)
        return {}


def env_overrides() -> dict[str, Any]:
    """Build config dict from environment variables (highest priority)."""
    overrides: dict[str, Any] = {}

    log_path = os.environ.get("CHATSTREAM_LOG")
    if log_path:
        overrides.setdefault("logging", {})["file"] = log_path

    model = os.environ.get("CHATSTREAM_MODEL")
    if model:
        overrides.setdefault("llm", {})["model"] = model

    return overrides


def _str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, str)]


def dict_to_config(data: dict[str, Any]) -> Config:
    """Convert merged dict to typed Config dataclass."""
    llm_data = data.get("llm", {})
    llm = LLMConfig(
        model=llm_data.get("model"),
        api_base=llm_data.get("api_base"),
        max_tokens=llm_data.get("max_tokens"),
        max_tool_rounds=llm_data.get("max_tool_rounds", 8),
    )

    tools_data = data.get("tools", {})
    rules = []
    for r in tools_data.get("rules", []):
        if not isinstance(r, dict) or not r.get("pattern"):
            continue
        risk = r.get("risk", "dangerous")
        if risk not in _RISK_VALUES:
            _log.warning("Ignoring tool rule %r with unknown risk %r", r["pattern"], risk)
            continue
        rules.append(ToolRiskRule(pattern=r["pattern"], risk=risk))
    default_risk = tools_data.get("default_risk", "dangerous")
    if default_risk not in _RISK_VALUES:
        _log.warning("Unknown default_risk %r, using 'dangerous'", default_risk)
        default_risk = "dangerous"
    tools = ToolsConfig(
        rules=rules,
        default_risk=default_risk,
        command_tools=_str_list(tools_data.get("command_tools", ["bash"])),
    )

    perms_data = data.get("permissions", {})
    permissions = PermissionsConfig(
        data_dir=perms_data.get("data_dir"),
        always_allow=_str_list(perms_data.get("always_allow")),
        always_reject=_str_list(perms_data.get("always_reject")),
    )
    if perms_data.get("default_reject_reason"):
        permissions.default_reject_reason = perms_data["default_reject_reason"]

    log_data = data.get("logging", {})
    logging_config = LoggingConfig(
        level=log_data.get("level"),
        file=log_data.get("file"),
        verbose=log_data.get("verbose"),
        components={
            str(k): str(v) for k, v in (log_data.get("components") or {}).items() if v
        },
    )

    known_keys = {"llm", "tools", "permissions", "logging"}
    extra = {k: v for k, v in data.items() if k not in known_keys}

    return Config(
        llm=llm,
        tools=tools,
        permissions=permissions,
        logging=logging_config,
        extra=extra,
    )


def load_config(project_root: str | None = None, reload: bool = False) -> Config:
    """Load and merge config from all sources.

    Priority order (highest to lowest):
    1. Environment variables
    2. Project config ($project_root/.chatstream/config.yaml)
    3. User config
    4. System config

    Only the global config (no project_root) is cached.
    """
    global _cached_config

    if _cached_config is not None and not reload and project_root is None:
        return _cached_config

    configs: list[dict[str, Any]] = []

    for path in get_config_paths(project_root):
        config_data = load_yaml_file(path)
        if config_data:
            _log.debug("Loaded config from %s", path)
            configs.append(config_data)

    env_config = env_overrides()
    if env_config:
        configs.append(env_config)

    config = dict_to_config(merge_configs(*configs))

    if project_root is None:
        _cached_config = config

    return config


def get_config() -> Config:
    """Get the cached global config, loading it on first use."""
    if _cached_config is None:
        return load_config()
    return _cached_config


def reset_config() -> None:
    """Reset cached config."""
    global _cached_config
    _cached_config = None


def reload_config(project_root: str | None = None) -> Config:
    """Reload config from files and notify callbacks."""
    config = load_config(project_root=project_root, reload=True)

    for callback in _reload_callbacks:
        try:
            callback(config)
        except Exception as e:
            _log.warning("Config reload callback error: %s", e)

    return config


def on_config_reload(callback: Callable[[Config], None]) -> Callable[[], None]:
    """Register a callback for config reloads.

    Returns:
        A function to unregister the callback.
    """
    _reload_callbacks.append(callback)

    def unregister() -> None:
        if callback in _reload_callbacks:
            _reload_callbacks.remove(callback)

    return unregister
