"""Generation chunk types.

A chunk is one protocol-level event from the model backend. Chunks arrive
wrapped in a ChunkEvent tagged with the session and message they belong to.
Raw dict events (camelCase wire shape) are parsed with pydantic.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from chatstream.errors.types import ClassifiedError
from chatstream.messages.model import Usage


@dataclass(frozen=True, slots=True)
class TextChunk:
    text: str
    type: str = field(default="text", init=False)


@dataclass(frozen=True, slots=True)
class ReasoningChunk:
    text: str
    type: str = field(default="reasoning", init=False)


@dataclass(frozen=True, slots=True)
class ToolCallChunk:
    """The model requested a tool call (repeated ids update the same call)."""

    id: str
    name: str
    args: dict[str, Any] = field(default_factory=dict)
    type: str = field(default="tool-call", init=False)


@dataclass(frozen=True, slots=True)
class ToolResultChunk:
    """The backend executed a tool itself and reports the outcome."""

    id: str
    name: str = ""
    result: Any = None
    error: str | None = None
    type: str = field(default="tool-result", init=False)


@dataclass(frozen=True, slots=True)
class ContinuationChunk:
    type: str = field(default="continuation", init=False)


@dataclass(frozen=True, slots=True)
class FinishChunk:
    finish_reason: str | None = None
    usage: Usage | None = None
    type: str = field(default="finish", init=False)


@dataclass(frozen=True, slots=True)
class ErrorChunk:
    error: str
    error_details: ClassifiedError | dict[str, Any] | None = None
    type: str = field(default="error", init=False)


Chunk = Union[
    TextChunk,
    ReasoningChunk,
    ToolCallChunk,
    ToolResultChunk,
    ContinuationChunk,
    FinishChunk,
    ErrorChunk,
]


@dataclass(frozen=True, slots=True)
class ChunkEvent:
    session_id: str
    message_id: str
    chunk: Chunk


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class WireToolCall(_WireModel):
    id: str
    name: str = ""
    args: dict[str, Any] = Field(default_factory=dict)
    result: Any = None
    error: str | None = None


class WireUsage(_WireModel):
    prompt_tokens: int = Field(default=0, alias="promptTokens")
    completion_tokens: int = Field(default=0, alias="completionTokens")
    total_tokens: int = Field(default=0, alias="totalTokens")


class WireChunk(_WireModel):
    type: Literal[
        "text", "reasoning", "tool-call", "tool-result", "continuation", "finish", "error"
    ]
    text: str | None = None
    tool_call: WireToolCall | None = Field(default=None, alias="toolCall")
    finish_reason: str | None = Field(default=None, alias="finishReason")
    usage: WireUsage | None = None
    error: str | None = None
    error_details: dict[str, Any] | None = Field(default=None, alias="errorDetails")

    def to_chunk(self) -> Chunk:
        if self.type == "text":
            return TextChunk(self.text or "")
        if self.type == "reasoning":
            return ReasoningChunk(self.text or "")
        if self.type in ("tool-call", "tool-result"):
            if self.tool_call is None:
                raise ValueError(f"{self.type} chunk without toolCall")
            tc = self.tool_call
            if self.type == "tool-call":
                return ToolCallChunk(tc.id, tc.name, dict(tc.args))
            return ToolResultChunk(tc.id, tc.name, tc.result, tc.error)
        if self.type == "continuation":
            return ContinuationChunk()
        if self.type == "finish":
            usage = None
            if self.usage is not None:
                usage = Usage(
                    self.usage.prompt_tokens,
                    self.usage.completion_tokens,
                    self.usage.total_tokens,
                )
            return FinishChunk(self.finish_reason, usage)
        return ErrorChunk(self.error or "Unknown error", self.error_details)


class WireChunkEvent(_WireModel):
    session_id: str = Field(alias="sessionId")
    message_id: str = Field(alias="messageId")
    chunk: WireChunk


def parse_chunk_event(data: dict[str, Any]) -> ChunkEvent:
    """Parse a wire-shaped event dict.

    Raises:
        pydantic.ValidationError: malformed envelope or unknown chunk type
        ValueError: tool chunk without its tool call
    """
    wire = WireChunkEvent.model_validate(data)
    return ChunkEvent(wire.session_id, wire.message_id, wire.chunk.to_chunk())
