"""Canonical message model, legacy normalization and persistence."""

from chatstream.messages.model import (
    ContentPart,
    ErrorPart,
    Message,
    MessageMetadata,
    ReasoningPart,
    RiskLevel,
    Role,
    TextPart,
    ToolCall,
    ToolCallPart,
    ToolStatus,
    Usage,
    WaitingPart,
    error_message,
    new_id,
    user_message,
)
from chatstream.messages.normalizer import normalize, normalize_all
from chatstream.messages.storage import MessageStore
from chatstream.messages.wire import StoredMessage, message_to_stored

__all__ = [
    "ContentPart",
    "ErrorPart",
    "Message",
    "MessageMetadata",
    "ReasoningPart",
    "RiskLevel",
    "Role",
    "TextPart",
    "ToolCall",
    "ToolCallPart",
    "ToolStatus",
    "Usage",
    "WaitingPart",
    "error_message",
    "new_id",
    "user_message",
    "normalize",
    "normalize_all",
    "MessageStore",
    "StoredMessage",
    "message_to_stored",
]
