"""Tests for routing chunk events into session state.

Tests coverage for:
- src/chatstream/session/dispatcher.py
"""

from __future__ import annotations

import pytest

from chatstream.errors import ErrorCategory
from chatstream.messages import ErrorPart, TextPart, ToolStatus, Usage
from chatstream.session import ChunkDispatcher
from chatstream.session.dispatcher import UNRESOLVED_AT_FINISH
from chatstream.streaming import (
    ChunkEvent,
    ContinuationChunk,
    ErrorChunk,
    FinishChunk,
    ReasoningChunk,
    TextChunk,
    ToolCallChunk,
    ToolResultChunk,
)
from chatstream.tools import ToolCallController
from tests.utils import wait_until


@pytest.fixture
async def controller(policy, decision_store, gate):
    controller = ToolCallController(policy, decision_store, gate)
    yield controller
    await controller.aclose()


@pytest.fixture
def dispatcher(registry, controller):
    dispatcher = ChunkDispatcher(registry, controller)
    controller.set_update_callback(dispatcher.apply_tool_update)
    return dispatcher


@pytest.fixture
def streaming(registry):
    """Session s1 with an open stream; returns the message id."""
    registry.ensure("s1", "/work")
    return registry.start_stream("s1")


def _message(registry, session_id, message_id):
    return registry.require(session_id).find_message(message_id)


# =============================================================================
# Routing Tests
# =============================================================================


class TestRouting:
    """Tests for applying chunks to the active stream."""

    def test_text_accumulates(self, dispatcher, registry, streaming):
        """Test text chunks build one text part."""
        dispatcher.dispatch(ChunkEvent("s1", streaming, TextChunk("Hel")))
        dispatcher.dispatch(ChunkEvent("s1", streaming, TextChunk("lo")))

        assert _message(registry, "s1", streaming).parts == [TextPart("Hello")]

    @pytest.mark.asyncio
    async def test_text_tool_text(self, dispatcher, registry, streaming):
        """Test interleaved text and tool calls keep emission order."""
        dispatcher.dispatch(ChunkEvent("s1", streaming, ReasoningChunk("plan")))
        dispatcher.dispatch(ChunkEvent("s1", streaming, TextChunk("Reading")))
        dispatcher.dispatch(ChunkEvent("s1", streaming, ToolCallChunk("t1", "read_file", {"path": "a"})))
        dispatcher.dispatch(ChunkEvent("s1", streaming, ContinuationChunk()))
        dispatcher.dispatch(ChunkEvent("s1", streaming, TextChunk("Done")))

        message = _message(registry, "s1", streaming)
        assert [p.type for p in message.parts] == ["reasoning", "text", "tool-call", "text"]

    def test_raw_dict_event(self, dispatcher, registry, streaming):
        """Test wire-shaped dict events are parsed and applied."""
        applied = dispatcher.dispatch(
            {"sessionId": "s1", "messageId": streaming, "chunk": {"type": "text", "text": "Hi"}}
        )

        assert applied is True
        assert _message(registry, "s1", streaming).text == "Hi"

    def test_finish(self, dispatcher, registry, streaming):
        """Test finish ends the stream with metadata."""
        dispatcher.dispatch(ChunkEvent("s1", streaming, TextChunk("Hi")))
        dispatcher.dispatch(ChunkEvent("s1", streaming, FinishChunk("stop", Usage(1, 2, 3))))

        message = _message(registry, "s1", streaming)
        assert message.is_streaming is False
        assert message.metadata.finish_reason == "stop"
        assert message.metadata.usage == Usage(1, 2, 3)
        assert registry.active_message_id("s1") is None


# =============================================================================
# Stale Chunk Tests
# =============================================================================


class TestStaleChunks:
    """Tests for chunks that do not belong to the active stream."""

    def test_wrong_message_id_dropped(self, dispatcher, registry, streaming):
        """Test chunks for another message id change nothing."""
        applied = dispatcher.dispatch(ChunkEvent("s1", "msg-old", TextChunk("ghost")))

        assert applied is False
        assert _message(registry, "s1", streaming).parts == []

    def test_after_finish_dropped(self, dispatcher, registry, streaming):
        """Test chunks arriving after finish are stale."""
        dispatcher.dispatch(ChunkEvent("s1", streaming, FinishChunk()))

        assert dispatcher.dispatch(ChunkEvent("s1", streaming, TextChunk("late"))) is False
        assert _message(registry, "s1", streaming).parts == []

    def test_unknown_session_dropped(self, dispatcher):
        """Test chunks for unknown sessions are dropped."""
        assert dispatcher.dispatch(ChunkEvent("nope", "m1", TextChunk("x"))) is False

    def test_sessions_isolated(self, dispatcher, registry, streaming):
        """Test interleaved chunks from two sessions land in their own messages."""
        registry.ensure("s2")
        other = registry.start_stream("s2")

        dispatcher.dispatch(ChunkEvent("s1", streaming, TextChunk("one ")))
        dispatcher.dispatch(ChunkEvent("s2", other, TextChunk("two ")))
        dispatcher.dispatch(ChunkEvent("s1", streaming, TextChunk("three")))
        dispatcher.dispatch(ChunkEvent("s2", streaming, TextChunk("crossed")))

        assert _message(registry, "s1", streaming).text == "one three"
        assert _message(registry, "s2", other).text == "two "


# =============================================================================
# Tool Chunk Tests
# =============================================================================


class TestToolChunks:
    """Tests for tool call and result chunks."""

    @pytest.mark.asyncio
    async def test_forbidden_call_shown_failed(self, dispatcher, registry, streaming):
        """Test a forbidden call appears already failed."""
        dispatcher.dispatch(ChunkEvent("s1", streaming, ToolCallChunk("t1", "format_disk", {})))

        call = _message(registry, "s1", streaming).find_tool_call("t1")
        assert call.status is ToolStatus.FAILED

    @pytest.mark.asyncio
    async def test_status_updates_reach_message(self, dispatcher, registry, gate, streaming):
        """Test lifecycle changes are written into the message."""
        dispatcher.dispatch(ChunkEvent("s1", streaming, ToolCallChunk("t1", "delete_file", {"path": "a"})))

        await wait_until(lambda: gate.get_pending("s1"))
        call = _message(registry, "s1", streaming).find_tool_call("t1")
        assert call.status is ToolStatus.NEEDS_CONFIRMATION

    @pytest.mark.asyncio
    async def test_tool_result(self, dispatcher, registry, streaming):
        """Test a tool-result chunk completes the call in place."""
        dispatcher.dispatch(ChunkEvent("s1", streaming, ToolCallChunk("t1", "read_file", {})))
        dispatcher.dispatch(ChunkEvent("s1", streaming, ToolResultChunk("t1", "read_file", "data")))

        message = _message(registry, "s1", streaming)
        assert len(message.tool_calls()) == 1
        assert message.find_tool_call("t1").status is ToolStatus.COMPLETED
        assert message.find_tool_call("t1").result == "data"

    @pytest.mark.asyncio
    async def test_finish_settles_unresolved(self, dispatcher, registry, gate, streaming):
        """Test finishing fails calls still waiting on the user."""
        dispatcher.dispatch(ChunkEvent("s1", streaming, ToolCallChunk("t1", "delete_file", {"path": "a"})))
        await wait_until(lambda: gate.get_pending("s1"))

        dispatcher.dispatch(ChunkEvent("s1", streaming, FinishChunk("stop")))

        call = _message(registry, "s1", streaming).find_tool_call("t1")
        assert call.status is ToolStatus.FAILED
        assert call.error == UNRESOLVED_AT_FINISH
        await wait_until(lambda: not gate.get_pending("s1"))


# =============================================================================
# Error Chunk Tests
# =============================================================================


class TestErrorChunks:
    """Tests for generation failures."""

    def test_error_replaces_message(self, dispatcher, registry, streaming):
        """Test an error chunk swaps the partial message for an error message."""
        session = registry.require("s1")
        dispatcher.dispatch(ChunkEvent("s1", streaming, TextChunk("partial")))

        dispatcher.dispatch(
            ChunkEvent("s1", streaming, ErrorChunk("connect ECONNREFUSED 127.0.0.1:11434"))
        )

        assert session.find_message(streaming) is None
        error = session.messages[-1]
        assert isinstance(error.parts[0], ErrorPart)
        assert error.parts[0].category is ErrorCategory.NETWORK
        assert error.parts[0].retryable is True
        assert error.is_streaming is False
        assert session.last_error.category is ErrorCategory.NETWORK
        assert registry.active_message_id("s1") is None

    def test_error_with_classified_details(self, dispatcher, registry, streaming):
        """Test already classified details are kept."""
        details = {
            "category": "quota",
            "userMessage": "Slow down",
            "technicalDetail": "429",
            "retryable": True,
        }

        dispatcher.dispatch(ChunkEvent("s1", streaming, ErrorChunk("rate limited", details)))

        error = registry.require("s1").messages[-1]
        assert error.parts[0].text == "Slow down"
        assert error.parts[0].category is ErrorCategory.QUOTA

    def test_error_with_raw_details(self, dispatcher, registry, streaming):
        """Test raw details join the classification search."""
        dispatcher.dispatch(
            ChunkEvent("s1", streaming, ErrorChunk("request failed", {"code": "insufficient_quota"}))
        )

        details = registry.require("s1").last_error
        assert details.category is ErrorCategory.QUOTA
        assert details.retryable is False

    def test_fail_stale_is_noop(self, dispatcher, registry, streaming):
        """Test failing a message that is not active does nothing."""
        assert dispatcher.fail("s1", "msg-old", "boom") is None
        assert registry.active_message_id("s1") == streaming
