"""Persisted message records.

Stored messages use camelCase keys. Records written by older versions may
lack ``contentParts``, use the legacy ``error`` role, or name tool fields
``toolName``/``arguments``/``startTime``; the models below accept both
spellings and always dump the current one.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from chatstream.errors.types import ClassifiedError
from chatstream.logging import get_logger
from chatstream.messages.model import (
    ContentPart,
    ErrorPart,
    Message,
    ReasoningPart,
    RiskLevel,
    TextPart,
    ToolCall,
    ToolCallPart,
    ToolStatus,
    WaitingPart,
)

log = get_logger("wire")

# Statuses written by older versions
_LEGACY_STATUS = {
    "cancelled": ToolStatus.FAILED,
    "canceled": ToolStatus.FAILED,
    "error": ToolStatus.FAILED,
    "success": ToolStatus.COMPLETED,
}


class WireModel(BaseModel):
    """Base model for stored records with populate_by_name enabled."""

    model_config = ConfigDict(populate_by_name=True)


def to_epoch(value: Any) -> float | None:
    """Accept seconds, milliseconds or ISO strings."""
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value / 1000.0 if value > 1e12 else float(value)
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
        except ValueError:
            return None
    return None


class StoredToolCall(WireModel):
    id: str
    name: str = Field(default="", validation_alias=AliasChoices("name", "toolName"))
    args: dict[str, Any] = Field(
        default_factory=dict, validation_alias=AliasChoices("args", "arguments")
    )
    status: str = "pending"
    result: Any = None
    error: str | None = None
    requires_confirmation: bool = Field(
        default=False,
        validation_alias=AliasChoices("requiresConfirmation", "requires_confirmation"),
        serialization_alias="requiresConfirmation",
    )
    risk: str | None = Field(default=None, validation_alias=AliasChoices("risk", "commandType"))
    created_at: Any = Field(
        default=None,
        validation_alias=AliasChoices("createdAt", "timestamp", "created_at"),
        serialization_alias="createdAt",
    )
    started_at: Any = Field(
        default=None,
        validation_alias=AliasChoices("startedAt", "startTime", "started_at"),
        serialization_alias="startedAt",
    )
    ended_at: Any = Field(
        default=None,
        validation_alias=AliasChoices("endedAt", "endTime", "ended_at"),
        serialization_alias="endedAt",
    )

    def to_tool_call(self) -> ToolCall:
        try:
            status = ToolStatus(self.status)
        except ValueError:
            status = _LEGACY_STATUS.get(self.status, ToolStatus.FAILED)
        try:
            risk = RiskLevel(self.risk) if self.risk else None
        except ValueError:
            risk = None
        created = to_epoch(self.created_at)
        return ToolCall(
            id=self.id,
            name=self.name,
            args=dict(self.args),
            status=status,
            result=self.result,
            error=self.error,
            requires_confirmation=self.requires_confirmation,
            risk=risk,
            created_at=created if created is not None else 0.0,
            started_at=to_epoch(self.started_at),
            ended_at=to_epoch(self.ended_at),
        )

    @classmethod
    def from_tool_call(cls, call: ToolCall) -> StoredToolCall:
        return cls(
            id=call.id,
            name=call.name,
            args=dict(call.args),
            status=call.status.value,
            result=call.result,
            error=call.error,
            requires_confirmation=call.requires_confirmation,
            risk=call.risk.value if call.risk else None,
            created_at=call.created_at,
            started_at=call.started_at,
            ended_at=call.ended_at,
        )


class StoredTextPart(WireModel):
    type: Literal["text"] = "text"
    content: str = ""


class StoredReasoningPart(WireModel):
    type: Literal["reasoning"] = "reasoning"
    content: str = ""


class StoredToolCallPart(WireModel):
    type: Literal["tool-call"] = "tool-call"
    tool_calls: list[StoredToolCall] = Field(default_factory=list, alias="toolCalls")


class StoredWaitingPart(WireModel):
    type: Literal["waiting"] = "waiting"


class StoredErrorPart(WireModel):
    type: Literal["error", "data-error"] = "error"
    text: str = ""
    details: dict[str, Any] | None = None


StoredPart = Annotated[
    Union[StoredTextPart, StoredReasoningPart, StoredToolCallPart, StoredWaitingPart, StoredErrorPart],
    Field(discriminator="type"),
]

_part_adapter: TypeAdapter[Any] = TypeAdapter(StoredPart)


class StoredUsage(WireModel):
    prompt_tokens: int = Field(default=0, alias="promptTokens")
    completion_tokens: int = Field(default=0, alias="completionTokens")
    total_tokens: int = Field(default=0, alias="totalTokens")


class StoredMessage(WireModel):
    """A message as persisted, current or legacy shape."""

    id: str
    role: str
    content: str | None = None
    reasoning: str | None = None
    tool_calls: list[StoredToolCall] | None = Field(default=None, alias="toolCalls")
    content_parts: list[dict[str, Any]] | None = Field(default=None, alias="contentParts")
    created_at: Any = Field(
        default=None, validation_alias=AliasChoices("createdAt", "timestamp", "created_at"),
        serialization_alias="createdAt",
    )
    model: str | None = None
    usage: StoredUsage | None = None
    finish_reason: str | None = Field(default=None, alias="finishReason")
    reasoning_duration: float | None = Field(default=None, alias="reasoningDuration")
    is_error: bool | None = Field(default=None, alias="isError")
    error_details: dict[str, Any] | None = Field(default=None, alias="errorDetails")
    is_streaming: bool | None = Field(default=None, alias="isStreaming")


def parse_parts(raw_parts: list[dict[str, Any]]) -> list[ContentPart]:
    """Convert stored part dicts into canonical parts, skipping unknown kinds."""
    parts: list[ContentPart] = []
    for raw in raw_parts:
        try:
            stored = _part_adapter.validate_python(raw)
        except ValidationError as e:
            log.warning("Skipping unreadable content part %r: %s", raw.get("type"), e)
            continue
        if isinstance(stored, StoredTextPart):
            parts.append(TextPart(stored.content))
        elif isinstance(stored, StoredReasoningPart):
            parts.append(ReasoningPart(stored.content))
        elif isinstance(stored, StoredToolCallPart):
            parts.append(ToolCallPart(tuple(tc.to_tool_call() for tc in stored.tool_calls)))
        elif isinstance(stored, StoredWaitingPart):
            parts.append(WaitingPart())
        else:
            details = ClassifiedError.from_dict(stored.details) if stored.details else None
            parts.append(ErrorPart(stored.text, details))
    return parts


def part_to_dict(part: ContentPart) -> dict[str, Any]:
    if isinstance(part, (TextPart, ReasoningPart)):
        return {"type": part.type, "content": part.content}
    if isinstance(part, ToolCallPart):
        return {
            "type": part.type,
            "toolCalls": [
                StoredToolCall.from_tool_call(tc).model_dump(by_alias=True, exclude_none=True)
                for tc in part.tool_calls
            ],
        }
    if isinstance(part, WaitingPart):
        return {"type": part.type}
    data: dict[str, Any] = {"type": part.type, "text": part.text}
    if part.details is not None:
        data["details"] = part.details.to_dict()
    return data


def message_to_stored(message: Message) -> dict[str, Any]:
    """Serialize a canonical message; parts are written verbatim."""
    meta = message.metadata
    stored = StoredMessage(
        id=message.id,
        role=message.role.value,
        content=message.text or None,
        content_parts=[part_to_dict(p) for p in message.parts],
        created_at=meta.created_at,
        model=meta.model,
        usage=StoredUsage(
            prompt_tokens=meta.usage.prompt_tokens,
            completion_tokens=meta.usage.completion_tokens,
            total_tokens=meta.usage.total_tokens,
        )
        if meta.usage
        else None,
        finish_reason=meta.finish_reason,
        reasoning_duration=meta.reasoning_duration,
        is_error=meta.is_error or None,
        error_details=meta.error_details.to_dict() if meta.error_details else None,
    )
    return stored.model_dump(by_alias=True, exclude_none=True)
