"""Canonical message model.

A Message is an ordered list of content parts. Parts and tool calls are
frozen values; updating one means replacing it in the owning list.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Union

from chatstream.errors.types import ClassifiedError, ErrorCategory


class Role(Enum):
    """Message role in a conversation."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class ToolStatus(Enum):
    """Lifecycle state of a tool call."""

    PENDING = "pending"
    NEEDS_CONFIRMATION = "needs-confirmation"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL

    @property
    def is_unresolved(self) -> bool:
        return self in _UNRESOLVED


_TERMINAL = frozenset({ToolStatus.COMPLETED, ToolStatus.FAILED, ToolStatus.REJECTED})
_UNRESOLVED = frozenset({ToolStatus.PENDING, ToolStatus.NEEDS_CONFIRMATION, ToolStatus.APPROVED})


class RiskLevel(Enum):
    """How much confirmation a tool invocation needs."""

    READ_ONLY = "read-only"
    DANGEROUS = "dangerous"
    FORBIDDEN = "forbidden"


def new_id(prefix: str = "msg") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True, slots=True)
class ToolCall:
    """One tool invocation requested by the model."""

    id: str
    name: str
    args: dict[str, Any] = field(default_factory=dict)
    status: ToolStatus = ToolStatus.PENDING
    result: Any = None
    error: str | None = None
    requires_confirmation: bool = False
    risk: RiskLevel | None = None
    created_at: float = field(default_factory=time.time)
    started_at: float | None = None
    ended_at: float | None = None

    def evolve(self, **changes: Any) -> ToolCall:
        return replace(self, **changes)


@dataclass(frozen=True, slots=True)
class TextPart:
    content: str
    type: str = field(default="text", init=False)


@dataclass(frozen=True, slots=True)
class ReasoningPart:
    content: str
    type: str = field(default="reasoning", init=False)


@dataclass(frozen=True, slots=True)
class ToolCallPart:
    tool_calls: tuple[ToolCall, ...]
    type: str = field(default="tool-call", init=False)

    def find(self, tool_call_id: str) -> int:
        for i, call in enumerate(self.tool_calls):
            if call.id == tool_call_id:
                return i
        return -1


@dataclass(frozen=True, slots=True)
class WaitingPart:
    """Transient marker: the model is about to continue after tool calls."""

    type: str = field(default="waiting", init=False)


@dataclass(frozen=True, slots=True)
class ErrorPart:
    """Terminal error shown in place of assistant content."""

    text: str
    details: ClassifiedError | None = None
    type: str = field(default="error", init=False)

    @property
    def category(self) -> ErrorCategory | None:
        return self.details.category if self.details else None

    @property
    def retryable(self) -> bool:
        return self.details.retryable if self.details else False


ContentPart = Union[TextPart, ReasoningPart, ToolCallPart, WaitingPart, ErrorPart]


@dataclass(frozen=True, slots=True)
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass(slots=True)
class MessageMetadata:
    created_at: float = field(default_factory=time.time)
    model: str | None = None
    usage: Usage | None = None
    finish_reason: str | None = None
    reasoning_duration: float | None = None  # Seconds spent in reasoning parts
    is_error: bool = False
    error_details: ClassifiedError | None = None


@dataclass(slots=True)
class Message:
    """A conversation message made of ordered content parts."""

    id: str
    role: Role
    parts: list[ContentPart] = field(default_factory=list)
    metadata: MessageMetadata = field(default_factory=MessageMetadata)
    is_streaming: bool = False

    @property
    def text(self) -> str:
        """Concatenated text parts."""
        return "".join(p.content for p in self.parts if isinstance(p, TextPart))

    def tool_calls(self) -> list[ToolCall]:
        calls: list[ToolCall] = []
        for part in self.parts:
            if isinstance(part, ToolCallPart):
                calls.extend(part.tool_calls)
        return calls

    def find_tool_call(self, tool_call_id: str) -> ToolCall | None:
        for part in self.parts:
            if isinstance(part, ToolCallPart):
                index = part.find(tool_call_id)
                if index >= 0:
                    return part.tool_calls[index]
        return None

    def replace_tool_call(self, call: ToolCall) -> bool:
        """Swap in a new value for an existing tool call id."""
        for i, part in enumerate(self.parts):
            if isinstance(part, ToolCallPart):
                index = part.find(call.id)
                if index >= 0:
                    calls = list(part.tool_calls)
                    calls[index] = call
                    self.parts[i] = ToolCallPart(tuple(calls))
                    return True
        return False


def user_message(text: str, message_id: str | None = None) -> Message:
    return Message(id=message_id or new_id(), role=Role.USER, parts=[TextPart(text)])


def error_message(details: ClassifiedError, message_id: str | None = None) -> Message:
    """Build the terminal assistant message that replaces a failed generation."""
    return Message(
        id=message_id or new_id("error"),
        role=Role.ASSISTANT,
        parts=[ErrorPart(details.user_message, details)],
        metadata=MessageMetadata(error_details=details),
    )
