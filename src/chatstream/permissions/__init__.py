"""Permission decisions and the gate that waits on them."""

from chatstream.permissions.gate import (
    DEFAULT_REJECT_REASON,
    PermissionGate,
    PermissionInfo,
    PermissionNotFound,
    PermissionRejected,
    parse_response,
)
from chatstream.permissions.store import (
    DecisionScope,
    DecisionStore,
    PermissionDecision,
    workspace_key,
)

__all__ = [
    "DEFAULT_REJECT_REASON",
    "PermissionGate",
    "PermissionInfo",
    "PermissionNotFound",
    "PermissionRejected",
    "parse_response",
    "DecisionScope",
    "DecisionStore",
    "PermissionDecision",
    "workspace_key",
]
