"""chatstream: per-session streaming message model for LLM chat.

Folds model generation chunks into ordered message parts, gates tool calls
behind user permission, and classifies failures.

Example usage:
    from chatstream import ChatService, LiteLLMTransport

    service = ChatService(LiteLLMTransport("gpt-4o"))
    message_id = await service.send("session-1", "Hello")
    await service.wait("session-1")
    print(service.view_session("session-1")[-1].text)
"""

from chatstream.errors import ClassifiedError, ErrorCategory, classify
from chatstream.messages import Message, MessageStore, ToolCall, ToolStatus, normalize
from chatstream.permissions import DecisionScope, DecisionStore, PermissionGate
from chatstream.session import ChatService, ChunkDispatcher, SessionRegistry
from chatstream.streaming import (
    ChunkEvent,
    LiteLLMTransport,
    MessagePartAccumulator,
    parse_chunk_event,
)
from chatstream.tools import McpToolRuntime, ToolCallController, ToolPolicy

__version__ = "0.1.0"

__all__ = [
    "ChatService",
    "ChunkDispatcher",
    "ChunkEvent",
    "ClassifiedError",
    "DecisionScope",
    "DecisionStore",
    "ErrorCategory",
    "LiteLLMTransport",
    "McpToolRuntime",
    "Message",
    "MessagePartAccumulator",
    "MessageStore",
    "PermissionGate",
    "SessionRegistry",
    "ToolCall",
    "ToolCallController",
    "ToolPolicy",
    "ToolStatus",
    "classify",
    "normalize",
    "parse_chunk_event",
]
