"""Chunk dispatcher.

Routes each chunk event to the accumulator of the stream it belongs to.
Chunks whose message id is not the session's active stream are stale
(cancelled or superseded generations, or another session's traffic) and are
dropped without touching any state.
"""

from __future__ import annotations

from typing import Any

from chatstream.errors.classifier import classify
from chatstream.errors.types import ClassifiedError
from chatstream.logging import TRACE, get_logger
from chatstream.messages.model import ToolCall, error_message
from chatstream.session.registry import SessionRegistry
from chatstream.streaming.chunks import (
    ChunkEvent,
    ContinuationChunk,
    ErrorChunk,
    FinishChunk,
    ReasoningChunk,
    TextChunk,
    ToolCallChunk,
    ToolResultChunk,
    parse_chunk_event,
)
from chatstream.tools.lifecycle import ToolCallController

log = get_logger("dispatch")

UNRESOLVED_AT_FINISH = "Generation finished before this tool call was resolved"
STREAM_FAILED = "Generation failed"


def _error_source(chunk: ErrorChunk) -> Any:
    details = chunk.error_details
    if details is None:
        return chunk.error
    if isinstance(details, ClassifiedError):
        return details
    if "category" in details:
        # Already classified upstream
        return ClassifiedError.from_dict(details)
    return {**details, "message": chunk.error, "data": details}


class ChunkDispatcher:
    """Applies chunk events to session state."""

    def __init__(self, registry: SessionRegistry, controller: ToolCallController) -> None:
        self._registry = registry
        self._controller = controller

    def dispatch(self, event: ChunkEvent | dict[str, Any]) -> bool:
        """Apply one chunk event.

        Returns:
            True if the chunk was applied, False if it was stale.

        Raises:
            ValueError: a raw dict event could not be parsed.
        """
        if isinstance(event, dict):
            event = parse_chunk_event(event)

        session_id = event.session_id
        stream = self._registry.active_stream(session_id)
        if stream is None or stream.message_id != event.message_id:
            log.log(
                TRACE,
                "Dropping stale %s chunk for %s/%s",
                event.chunk.type,
                session_id,
                event.message_id,
            )
            return False

        acc = stream.accumulator
        chunk = event.chunk

        if isinstance(chunk, TextChunk):
            acc.append_text(chunk.text)
        elif isinstance(chunk, ReasoningChunk):
            acc.append_reasoning(chunk.text)
        elif isinstance(chunk, ToolCallChunk):
            acc.upsert_tool(self._controller.register(session_id, event.message_id, chunk))
        elif isinstance(chunk, ToolResultChunk):
            acc.upsert_tool(self._controller.apply_result(session_id, event.message_id, chunk))
        elif isinstance(chunk, ContinuationChunk):
            acc.mark_continuation()
        elif isinstance(chunk, FinishChunk):
            self._finish(session_id, event.message_id, chunk)
        elif isinstance(chunk, ErrorChunk):
            self.fail(session_id, event.message_id, _error_source(chunk))
        return True

    def _finish(self, session_id: str, message_id: str, chunk: FinishChunk) -> None:
        stream = self._registry.active_stream(session_id)
        if stream is None:
            return
        for call in self._controller.settle_message(session_id, message_id, UNRESOLVED_AT_FINISH):
            stream.accumulator.update_tool(call)
        stream.accumulator.finish(chunk.finish_reason, chunk.usage)
        self._registry.finish_stream(session_id, message_id)
        self._controller.release_message(session_id, message_id)
        log.debug("Finished message %s in session %s", message_id, session_id)

    def fail(self, session_id: str, message_id: str, raw: Any) -> ClassifiedError | None:
        """Replace the in-progress message with a terminal error message.

        Does nothing if ``message_id`` is no longer the active stream.
        """
        if self._registry.active_message_id(session_id) != message_id:
            return None
        session = self._registry.require(session_id)

        details = classify(raw)
        log.warning(
            "Generation %s in session %s failed (%s): %s",
            message_id,
            session_id,
            details.category.value,
            details.technical_detail,
        )

        self._controller.settle_message(
            session_id, message_id, STREAM_FAILED, include_executing=True
        )
        self._controller.release_message(session_id, message_id)
        self._registry.finish_stream(session_id, message_id)
        session.remove_message(message_id)
        session.messages.append(error_message(details))
        session.last_error = details
        return details

    def apply_tool_update(self, session_id: str, message_id: str, call: ToolCall) -> None:
        """Write a tool call's new state into its message, wherever it is."""
        session = self._registry.get(session_id)
        if session is None:
            return
        message = session.find_message(message_id)
        if message is None:
            log.debug("Tool update for vanished message %s", message_id)
            return
        message.replace_tool_call(call)
