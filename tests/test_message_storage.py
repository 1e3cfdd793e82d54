"""Tests for YAML message persistence.

Tests coverage for:
- src/chatstream/messages/storage.py
"""

from __future__ import annotations

import pytest
import yaml

from chatstream.messages import (
    Message,
    MessageStore,
    ReasoningPart,
    Role,
    TextPart,
    ToolCall,
    ToolCallPart,
    ToolStatus,
    Usage,
    user_message,
)


@pytest.fixture
def store(tmp_path):
    return MessageStore(tmp_path / "sessions")


def _assistant() -> Message:
    message = Message(
        id="m2",
        role=Role.ASSISTANT,
        parts=[
            ReasoningPart("Check the tree"),
            TextPart("Looking"),
            ToolCallPart(
                (ToolCall(id="t1", name="bash", args={"command": "ls"}, status=ToolStatus.COMPLETED),)
            ),
            TextPart("Done"),
        ],
    )
    message.metadata.usage = Usage(1, 2, 3)
    message.metadata.finish_reason = "stop"
    return message


class TestSaveLoad:
    """Tests for saving and loading sessions."""

    def test_save_and_load(self, store):
        """Test messages survive a save/load cycle."""
        messages = [user_message("hi", "m1"), _assistant()]

        store.save("s1", messages)
        loaded = store.load("s1")

        assert loaded == messages

    def test_save_writes_camel_case(self, store):
        """Test the file uses the stored camelCase shape."""
        path = store.save("s1", [_assistant()])

        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)

        record = data["messages"][0]
        assert data["session_id"] == "s1"
        assert "contentParts" in record
        assert record["finishReason"] == "stop"
        assert record["usage"] == {"promptTokens": 1, "completionTokens": 2, "totalTokens": 3}

    def test_no_temp_file_left(self, store):
        """Test the atomic write leaves no temp file."""
        store.save("s1", [user_message("hi")])

        assert not (store.root / "s1.yaml.tmp").exists()
        assert store.exists("s1")

    def test_streaming_message_loads_finished(self, store):
        """Test a message saved mid-stream loads as not streaming."""
        message = _assistant()
        message.is_streaming = True

        store.save("s1", [message])

        assert store.load("s1")[0].is_streaming is False

    def test_missing_session_is_empty(self, store):
        """Test loading an unknown session returns no messages."""
        assert store.load("nope") == []


class TestLegacyFiles:
    """Tests for files written by older versions."""

    def test_load_normalizes_without_rewriting(self, store, tmp_path):
        """Test legacy files are normalized on read and left untouched."""
        store.root.mkdir(parents=True)
        path = store.path_for("old")
        raw = {
            "messages": [
                {"id": "m1", "role": "user", "content": "hi"},
                {"id": "m2", "role": "error", "content": "Failed"},
            ]
        }
        path.write_text(yaml.safe_dump(raw), encoding="utf-8")
        before = path.read_text(encoding="utf-8")

        loaded = store.load("old")

        assert loaded[1].role is Role.ASSISTANT
        assert loaded[1].metadata.is_error is True
        assert path.read_text(encoding="utf-8") == before

    def test_list_at_root(self, store):
        """Test a bare list of records is accepted."""
        store.root.mkdir(parents=True)
        store.path_for("bare").write_text(
            yaml.safe_dump([{"id": "m1", "role": "user", "content": "hi"}]), encoding="utf-8"
        )

        assert [m.text for m in store.load("bare")] == ["hi"]

    def test_delete(self, store):
        """Test delete removes the file once."""
        store.save("s1", [user_message("hi")])

        assert store.delete("s1") is True
        assert store.delete("s1") is False
