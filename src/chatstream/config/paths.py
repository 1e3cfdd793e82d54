"""Platform-aware configuration and data path resolution.

Handles file locations for:
- Windows: %PROGRAMDATA% (system), %APPDATA% (user)
- Unix: /etc/ (system), ~/.config/chatstream/ or ~/.chatstream/ (user)
- Project: $project_root/.chatstream/
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

CONFIG_FILENAME = "config.yaml"
APP_NAME = "chatstream"
SHORT_NAME = ".chatstream"


def get_system_config_path() -> Path | None:
    """Get system-level config path. The file may not exist."""
    if sys.platform == "win32":
        program_data = os.environ.get("PROGRAMDATA")
        if program_data:
            return Path(program_data) / APP_NAME / CONFIG_FILENAME
        return None
    return Path("/etc") / APP_NAME / CONFIG_FILENAME


def get_user_dir() -> Path | None:
    """Get the per-user directory holding config and persisted data."""
    if sys.platform == "win32":
        app_data = os.environ.get("APPDATA")
        return Path(app_data) / APP_NAME if app_data else None

    xdg_config = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config:
        return Path(xdg_config) / APP_NAME

    home = Path.home()
    if (home / ".config").exists():
        return home / ".config" / APP_NAME
    return home / SHORT_NAME


def get_user_config_path() -> Path | None:
    """Get user-level config path. The file may not exist."""
    user_dir = get_user_dir()
    return user_dir / CONFIG_FILENAME if user_dir else None


def get_project_config_path(project_root: str) -> Path:
    """Get project-level config path (may not exist)."""
    return Path(project_root) / SHORT_NAME / CONFIG_FILENAME


def get_config_paths(project_root: str | None = None) -> list[Path]:
    """Get all config paths in priority order (lowest to highest).

    Later paths override earlier ones when merging.
    """
    paths: list[Path] = []

    system_path = get_system_config_path()
    if system_path:
        paths.append(system_path)

    user_path = get_user_config_path()
    if user_path:
        paths.append(user_path)

    if project_root:
        paths.append(get_project_config_path(project_root))

    return paths


def get_data_dir(override: str | None = None) -> Path:
    """Directory for persisted permission decisions.

    Args:
        override: Configured directory (permissions.data_dir), if any.
    """
    if override:
        return Path(os.path.expanduser(override))
    user_dir = get_user_dir()
    if user_dir is None:
        user_dir = Path.home() / SHORT_NAME
    return user_dir / "permissions"
