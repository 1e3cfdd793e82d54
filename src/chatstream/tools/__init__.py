"""Tool risk policy, runtimes and the call lifecycle."""

from chatstream.tools.lifecycle import InvalidTransition, ToolCallController, can_transition
from chatstream.tools.policy import ToolPolicy, argument_fingerprint, classify_command
from chatstream.tools.runtime import (
    McpToolRuntime,
    ToolDefinition,
    ToolExecutionResult,
    ToolRuntime,
)

__all__ = [
    "InvalidTransition",
    "McpToolRuntime",
    "ToolCallController",
    "ToolDefinition",
    "ToolExecutionResult",
    "ToolPolicy",
    "ToolRuntime",
    "argument_fingerprint",
    "can_transition",
    "classify_command",
]
