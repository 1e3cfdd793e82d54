"""Fold a chunk stream into a message's content parts.

Ordering rules:
- Consecutive chunks of the same kind extend the trailing part of that kind.
- A change of kind always opens a new part, so text, tool calls, then more
  text yield three parts in emission order.
- A trailing waiting marker is replaced, never extended, by the next real part.
- A tool call id appears at most once across all parts.
"""

from __future__ import annotations

import time

from chatstream.logging import get_logger
from chatstream.messages.model import (
    ContentPart,
    Message,
    ReasoningPart,
    TextPart,
    ToolCall,
    ToolCallPart,
    Usage,
    WaitingPart,
)

log = get_logger("accumulator")


class MessagePartAccumulator:
    """Mutates one in-progress message as chunks arrive."""

    def __init__(self, message: Message) -> None:
        self.message = message
        self._reasoning_started: float | None = None
        self._reasoning_total = 0.0

    @property
    def parts(self) -> list[ContentPart]:
        return self.message.parts

    def _trailing(self) -> ContentPart | None:
        return self.parts[-1] if self.parts else None

    def _drop_waiting(self) -> None:
        if isinstance(self._trailing(), WaitingPart):
            self.parts.pop()

    def _close_reasoning(self) -> None:
        if self._reasoning_started is not None:
            self._reasoning_total += time.monotonic() - self._reasoning_started
            self._reasoning_started = None
            self.message.metadata.reasoning_duration = self._reasoning_total

    def _open(self, part: ContentPart) -> None:
        self._drop_waiting()
        self.parts.append(part)

    def append_text(self, text: str) -> None:
        if not text:
            return
        self._close_reasoning()
        trailing = self._trailing()
        if isinstance(trailing, TextPart):
            self.parts[-1] = TextPart(trailing.content + text)
        else:
            self._open(TextPart(text))

    def append_reasoning(self, text: str) -> None:
        if not text:
            return
        trailing = self._trailing()
        if isinstance(trailing, ReasoningPart):
            self.parts[-1] = ReasoningPart(trailing.content + text)
        else:
            self._open(ReasoningPart(text))
        if self._reasoning_started is None:
            self._reasoning_started = time.monotonic()

    def upsert_tool(self, call: ToolCall) -> None:
        """Insert a tool call, or update it in place if its id is known."""
        if self.message.replace_tool_call(call):
            return
        self._close_reasoning()
        trailing = self._trailing()
        if isinstance(trailing, ToolCallPart):
            self.parts[-1] = ToolCallPart(trailing.tool_calls + (call,))
        else:
            self._open(ToolCallPart((call,)))

    def update_tool(self, call: ToolCall) -> bool:
        """Update an existing tool call; unknown ids are ignored."""
        updated = self.message.replace_tool_call(call)
        if not updated:
            log.debug("Tool call %s not in message %s", call.id, self.message.id)
        return updated

    def mark_continuation(self) -> None:
        if not isinstance(self._trailing(), WaitingPart):
            self.parts.append(WaitingPart())

    def finish(self, finish_reason: str | None = None, usage: Usage | None = None) -> None:
        self._close_reasoning()
        self._drop_waiting()
        meta = self.message.metadata
        if finish_reason is not None:
            meta.finish_reason = finish_reason
        if usage is not None:
            meta.usage = usage
        self.message.is_streaming = False

    def stop(self) -> None:
        """End accumulation without finish metadata (cancellation)."""
        self._close_reasoning()
        self._drop_waiting()
        self.message.is_streaming = False
