"""Message persistence.

Saves canonical messages to YAML files in:
  <root>/<session-id>.yaml

Loading goes through the normalizer, so files written by older versions
are read as canonical messages. Loading never rewrites a file.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

import yaml

from chatstream.logging import get_logger
from chatstream.messages.model import Message
from chatstream.messages.normalizer import normalize
from chatstream.messages.wire import message_to_stored

log = get_logger("storage")


class MessageStore:
    """YAML-backed store of per-session message lists."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, session_id: str) -> Path:
        return self._root / f"{session_id}.yaml"

    def exists(self, session_id: str) -> bool:
        return self.path_for(session_id).exists()

    def save(self, session_id: str, messages: list[Message]) -> Path:
        """Save messages with an atomic temp-file write.

        Messages still streaming are written with their current parts and
        read back as finished.
        """
        self._root.mkdir(parents=True, exist_ok=True)
        path = self.path_for(session_id)
        temp_path = self._root / f"{session_id}.yaml.tmp"

        data = {
            "session_id": session_id,
            "updated_at": datetime.now().isoformat(),
            "messages": [message_to_stored(m) for m in messages],
        }

        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                yaml.safe_dump(data, f, default_flow_style=False, allow_unicode=True, sort_keys=False)

            # On Windows, need to remove existing file before rename
            if path.exists():
                path.unlink()
            temp_path.rename(path)

            log.debug("Saved %d messages for session %s to %s", len(messages), session_id, path)
            return path
        except Exception as e:
            if temp_path.exists():
                temp_path.unlink()
            raise RuntimeError(f"Failed to save messages: {e}") from e

    def load(self, session_id: str) -> list[Message]:
        """Load and normalize a session's messages; missing file means none."""
        path = self.path_for(session_id)
        if not path.exists():
            return []

        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        records = data.get("messages", []) if isinstance(data, dict) else data
        if not isinstance(records, list):
            log.warning("Ignoring malformed message file %s", path)
            return []

        messages = [normalize(r) for r in records if isinstance(r, dict)]
        log.debug("Loaded %d messages for session %s", len(messages), session_id)
        return messages

    def delete(self, session_id: str) -> bool:
        path = self.path_for(session_id)
        if path.exists():
            path.unlink()
            return True
        return False
