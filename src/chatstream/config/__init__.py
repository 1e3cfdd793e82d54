"""Configuration management for chatstream.

Provides hierarchical YAML-based configuration with:
- System-level config (/etc/chatstream/ or %PROGRAMDATA%)
- User-level config (~/.config/chatstream/, ~/.chatstream/ or %APPDATA%)
- Project-level config ($project_root/.chatstream/)
- Environment variable overrides (highest priority)

Example usage:
    from chatstream.config import load_config

    config = load_config(project_root="/path/to/project")
    print(config.llm.model)
    print(config.tools.default_risk)
"""

from chatstream.config.loader import (
    get_config,
    load_config,
    on_config_reload,
    reload_config,
    reset_config,
)
from chatstream.config.paths import (
    get_config_paths,
    get_data_dir,
    get_project_config_path,
    get_system_config_path,
    get_user_config_path,
)
from chatstream.config.schema import (
    Config,
    LLMConfig,
    LoggingConfig,
    PermissionsConfig,
    ToolRiskRule,
    ToolsConfig,
)

__all__ = [
    # Main API
    "Config",
    "load_config",
    "get_config",
    "reload_config",
    "reset_config",
    "on_config_reload",
    # Schema types
    "LLMConfig",
    "ToolsConfig",
    "ToolRiskRule",
    "PermissionsConfig",
    "LoggingConfig",
    # Path utilities
    "get_config_paths",
    "get_data_dir",
    "get_system_config_path",
    "get_user_config_path",
    "get_project_config_path",
]
