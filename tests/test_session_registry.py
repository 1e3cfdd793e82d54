"""Tests for the session stream registry.

Tests coverage for:
- src/chatstream/session/registry.py
- src/chatstream/session/session.py
"""

from __future__ import annotations

from unittest.mock import Mock

import pytest

from chatstream.errors import AlreadyStreaming, UnknownSession
from chatstream.messages import Role, TextPart, message_to_stored, user_message


class TestSessions:
    """Tests for session creation and lookup."""

    def test_ensure_creates_once(self, registry):
        """Test ensure returns the same session on repeat calls."""
        first = registry.ensure("s1", "/work")
        second = registry.ensure("s1")

        assert first is second
        assert first.working_directory == "/work"

    def test_ensure_fills_missing_directory(self, registry):
        """Test a later working directory fills in an unset one."""
        registry.ensure("s1")
        session = registry.ensure("s1", "/work")

        assert session.working_directory == "/work"

    def test_require_unknown(self, registry):
        """Test require raises for unknown sessions."""
        with pytest.raises(UnknownSession):
            registry.require("nope")

    def test_close_cancels_stream(self, registry):
        """Test closing a session cancels its stream."""
        registry.ensure("s1")
        cancel = Mock()
        registry.start_stream("s1", cancel=cancel)

        closed = registry.close("s1")

        cancel.assert_called_once()
        assert closed is not None
        assert registry.get("s1") is None


class TestStreamSlot:
    """Tests for the single active stream per session."""

    def test_start_stream_adds_placeholder(self, registry):
        """Test starting a stream appends a streaming assistant message."""
        session = registry.ensure("s1")

        message_id = registry.start_stream("s1", model="gpt-4o")

        message = session.find_message(message_id)
        assert message.role is Role.ASSISTANT
        assert message.is_streaming is True
        assert message.metadata.model == "gpt-4o"
        assert registry.active_message_id("s1") == message_id

    def test_second_stream_rejected(self, registry):
        """Test a session cannot stream twice at once."""
        registry.ensure("s1")
        first = registry.start_stream("s1")

        with pytest.raises(AlreadyStreaming) as exc_info:
            registry.start_stream("s1")
        assert exc_info.value.message_id == first

    def test_sessions_stream_independently(self, registry):
        """Test two sessions can stream at the same time."""
        registry.ensure("s1")
        registry.ensure("s2")

        a = registry.start_stream("s1")
        b = registry.start_stream("s2")

        assert registry.active_message_id("s1") == a
        assert registry.active_message_id("s2") == b

    def test_finish_requires_matching_message(self, registry):
        """Test finishing with a stale message id leaves the slot alone."""
        registry.ensure("s1")
        message_id = registry.start_stream("s1")

        assert registry.finish_stream("s1", "msg-stale") is False
        assert registry.active_message_id("s1") == message_id
        assert registry.finish_stream("s1", message_id) is True
        assert registry.active_message_id("s1") is None

    def test_cancel_is_idempotent(self, registry):
        """Test cancelling twice cancels once and keeps partial content."""
        session = registry.ensure("s1")
        cancel = Mock()
        message_id = registry.start_stream("s1", cancel=cancel)
        registry.active_stream("s1").accumulator.append_text("partial")

        assert registry.cancel_stream("s1") == message_id
        assert registry.cancel_stream("s1") is None

        cancel.assert_called_once()
        message = session.find_message(message_id)
        assert message.is_streaming is False
        assert message.parts == [TextPart("partial")]

    def test_set_cancel(self, registry):
        """Test the cancel hook can be attached after starting."""
        registry.ensure("s1")
        registry.start_stream("s1")
        cancel = Mock()

        registry.set_cancel("s1", cancel)
        registry.cancel_stream("s1")

        cancel.assert_called_once()


class TestMergeSnapshot:
    """Tests for folding backend snapshots into memory."""

    def test_streaming_message_wins(self, registry):
        """Test the in-flight message is kept over its snapshot copy."""
        session = registry.ensure("s1")
        session.messages.append(user_message("hi", "u1"))
        message_id = registry.start_stream("s1")
        registry.active_stream("s1").accumulator.append_text("live text")

        snapshot = [
            {"id": "u1", "role": "user", "content": "hi"},
            {"id": message_id, "role": "assistant", "content": "stale"},
        ]
        merged = registry.merge_snapshot("s1", snapshot)

        assert [m.id for m in merged] == ["u1", message_id]
        assert merged[1] is registry.active_stream("s1").accumulator.message
        assert merged[1].text == "live text"

    def test_local_only_messages_kept(self, registry):
        """Test messages the snapshot does not know are appended."""
        session = registry.ensure("s1")
        session.messages.append(user_message("local", "u9"))

        merged = registry.merge_snapshot("s1", [{"id": "u1", "role": "user", "content": "remote"}])

        assert [m.id for m in merged] == ["u1", "u9"]

    def test_merge_is_idempotent(self, registry):
        """Test merging the same snapshot twice changes nothing."""
        registry.ensure("s1")
        snapshot = [
            {"id": "u1", "role": "user", "content": "hi"},
            {"id": "a1", "role": "error", "content": "Failed"},
        ]

        once = [message_to_stored(m) for m in registry.merge_snapshot("s1", snapshot)]
        twice = [message_to_stored(m) for m in registry.merge_snapshot("s1", snapshot)]

        assert once == twice

    def test_duplicate_ids_collapsed(self, registry):
        """Test repeated snapshot ids appear once."""
        registry.ensure("s1")

        merged = registry.merge_snapshot(
            "s1",
            [{"id": "u1", "role": "user", "content": "a"}, {"id": "u1", "role": "user", "content": "b"}],
        )

        assert len(merged) == 1
