"""Convert stored and legacy message records into canonical Messages.

Normalization is idempotent: a canonical message passes through unchanged,
and normalizing a record twice gives the same result as normalizing once.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any

from chatstream.errors.types import ClassifiedError
from chatstream.logging import get_logger
from chatstream.messages.model import (
    ContentPart,
    ErrorPart,
    Message,
    MessageMetadata,
    ReasoningPart,
    Role,
    TextPart,
    ToolCallPart,
    Usage,
)
from chatstream.messages.wire import StoredMessage, parse_parts, to_epoch

log = get_logger("normalizer")

LEGACY_ERROR_ROLE = "error"
UNKNOWN_ERROR_TEXT = "Unknown error"


def _rebuild_parts(stored: StoredMessage, details: ClassifiedError | None) -> list[ContentPart]:
    parts: list[ContentPart] = []
    if stored.reasoning:
        parts.append(ReasoningPart(stored.reasoning))
    if stored.content:
        if details is not None and stored.role == Role.ASSISTANT.value:
            parts.append(ErrorPart(stored.content, details))
        else:
            parts.append(TextPart(stored.content))
    if stored.tool_calls:
        parts.append(ToolCallPart(tuple(tc.to_tool_call() for tc in stored.tool_calls)))
    return parts


def _normalize_stored(stored: StoredMessage) -> Message:
    details = ClassifiedError.from_dict(stored.error_details) if stored.error_details else None

    if stored.role == LEGACY_ERROR_ROLE:
        text = stored.content or UNKNOWN_ERROR_TEXT
        return Message(
            id=stored.id,
            role=Role.ASSISTANT,
            parts=[ErrorPart(text, details)],
            metadata=MessageMetadata(
                created_at=to_epoch(stored.created_at) or 0.0,
                model=stored.model,
                is_error=True,
                error_details=details,
            ),
        )

    try:
        role = Role(stored.role)
    except ValueError:
        log.warning("Unknown role %r on message %s, treating as assistant", stored.role, stored.id)
        role = Role.ASSISTANT

    if stored.content_parts:
        parts = parse_parts(stored.content_parts)
    else:
        parts = _rebuild_parts(stored, details)

    usage = None
    if stored.usage is not None:
        usage = Usage(
            prompt_tokens=stored.usage.prompt_tokens,
            completion_tokens=stored.usage.completion_tokens,
            total_tokens=stored.usage.total_tokens,
        )

    return Message(
        id=stored.id,
        role=role,
        parts=parts,
        metadata=MessageMetadata(
            created_at=to_epoch(stored.created_at) or 0.0,
            model=stored.model,
            usage=usage,
            finish_reason=stored.finish_reason,
            reasoning_duration=stored.reasoning_duration,
            is_error=bool(stored.is_error),
            error_details=details,
        ),
        # Persisted records are never mid-stream
        is_streaming=False,
    )


def normalize(record: StoredMessage | Message | dict[str, Any]) -> Message:
    """Produce a canonical Message from any supported record shape.

    - Existing content parts are kept verbatim.
    - Records without parts get them rebuilt from flat fields, in the order
      reasoning, text, tool calls.
    - The legacy ``error`` role becomes an assistant message flagged
      ``is_error`` holding one error part.
    """
    if isinstance(record, Message):
        return Message(
            id=record.id,
            role=record.role,
            parts=list(record.parts),
            metadata=replace(record.metadata),
            is_streaming=record.is_streaming,
        )
    if isinstance(record, dict):
        record = StoredMessage.model_validate(record)
    return _normalize_stored(record)


def normalize_all(records: list[Any]) -> list[Message]:
    return [normalize(r) for r in records]
