"""Configuration schema dataclasses for chatstream.

Defines the structure of configuration at all levels (system, user, project).
All fields have defaults so partial configs merge together.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class LLMConfig:
    """Model backend configuration."""

    model: str | None = None  # litellm model id, e.g. "gpt-4o", "ollama/llama3"
    api_base: str | None = None  # Custom endpoint
    max_tokens: int | None = None  # Default: 4096
    max_tool_rounds: int = 8  # Tool round-trips per generation


@dataclass
class ToolRiskRule:
    """A risk rule for tool names.

    Patterns support glob syntax:
        - "read_*" matches every read tool
        - "delete_file" matches one tool
    """

    pattern: str
    risk: str = "dangerous"  # "read-only", "dangerous", or "forbidden"


@dataclass
class ToolsConfig:
    """Tool risk classification.

    Example config.yaml:
        tools:
          rules:
            - pattern: "read_*"
              risk: read-only
            - pattern: "format_disk"
              risk: forbidden
          command_tools: [bash, shell]
    """

    rules: list[ToolRiskRule] = field(default_factory=list)
    default_risk: str = "dangerous"
    command_tools: list[str] = field(default_factory=lambda: ["bash"])


@dataclass
class PermissionsConfig:
    """Permission decision configuration."""

    data_dir: str | None = None  # Where workspace decisions persist
    default_reject_reason: str = (
        "The user rejected permission to use this tool. "
        "You may try again with different parameters."
    )
    always_allow: list[str] = field(default_factory=list)  # Tool names approved everywhere
    always_reject: list[str] = field(default_factory=list)  # Tool names rejected everywhere


@dataclass
class LoggingConfig:
    """Logging configuration.

    Example config.yaml:
        logging:
          level: info
          components:
            dispatch: trace    # stale-chunk drops
            litellm: warning
    """

    level: str | None = None  # TRACE, DEBUG, VERBOSE, INFO, WARNING, ERROR
    file: str | None = None  # Log file path
    verbose: int | None = None  # 0-4, wins over level
    components: dict[str, str] = field(default_factory=dict)  # Child logger -> level


@dataclass
class Config:
    """Root configuration object."""

    llm: LLMConfig = field(default_factory=LLMConfig)
    tools: ToolsConfig = field(default_factory=ToolsConfig)
    permissions: PermissionsConfig = field(default_factory=PermissionsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    extra: dict[str, Any] = field(default_factory=dict)  # Unknown top-level keys
