"""Transport protocol: how the service obtains a chunk stream."""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from chatstream.messages.model import Message, ToolCall
from chatstream.streaming.chunks import Chunk
from chatstream.tools.runtime import ToolDefinition


@dataclass(slots=True)
class GenerationRequest:
    """Everything a transport needs for one assistant turn.

    Attributes:
        session_id: Owning session
        message_id: Id of the placeholder assistant message
        history: Conversation so far, oldest first, without the placeholder
        model: Model id override; None uses the transport default
        tools: Tools offered to the model
        resolve_tool: Awaits the terminal state of a tool call by id
    """

    session_id: str
    message_id: str
    history: list[Message]
    model: str | None = None
    tools: list[ToolDefinition] = field(default_factory=list)
    resolve_tool: Callable[[str], Awaitable[ToolCall]] | None = None


@runtime_checkable
class Transport(Protocol):
    """Produces already-parsed chunks for one generation."""

    def stream(self, request: GenerationRequest) -> AsyncIterator[Chunk]:
        """Yield chunks until a finish chunk; errors are raised, not yielded."""
        ...
