"""Session stream registry.

Holds every live session and its single active stream slot. All lookups are
keyed by session id, never by whichever session a UI happens to show, so
background sessions keep accumulating while another one is in view.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from chatstream.errors.types import AlreadyStreaming, UnknownSession
from chatstream.logging import get_logger
from chatstream.messages.model import Message, MessageMetadata, Role, new_id
from chatstream.messages.normalizer import normalize
from chatstream.session.session import ActiveStream, Session
from chatstream.streaming.accumulator import MessagePartAccumulator

log = get_logger("registry")


class SessionRegistry:
    """Arena of sessions plus their stream slots."""

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def require(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise UnknownSession(session_id)
        return session

    def ensure(self, session_id: str, working_directory: str | None = None) -> Session:
        """Get a session, creating it on first use."""
        session = self._sessions.get(session_id)
        if session is None:
            session = Session(session_id=session_id, working_directory=working_directory)
            self._sessions[session_id] = session
            log.debug("Created session %s", session_id)
        elif working_directory and session.working_directory is None:
            session.working_directory = working_directory
        return session

    def list_sessions(self) -> list[Session]:
        return list(self._sessions.values())

    def close(self, session_id: str) -> Session | None:
        """Cancel any active stream and forget the session."""
        if session_id in self._sessions:
            self.cancel_stream(session_id)
        return self._sessions.pop(session_id, None)

    def start_stream(
        self,
        session_id: str,
        *,
        cancel: Callable[[], None] | None = None,
        model: str | None = None,
        message_id: str | None = None,
    ) -> str:
        """Open the stream slot with a placeholder assistant message.

        Returns:
            The placeholder message id chunks must be tagged with.

        Raises:
            AlreadyStreaming: the session already has a stream in flight.
        """
        session = self.require(session_id)
        if session.stream is not None:
            raise AlreadyStreaming(session_id, session.stream.message_id)

        message = Message(
            id=message_id or new_id(),
            role=Role.ASSISTANT,
            metadata=MessageMetadata(model=model),
            is_streaming=True,
        )
        session.messages.append(message)
        session.stream = ActiveStream(
            message_id=message.id,
            accumulator=MessagePartAccumulator(message),
            cancel=cancel,
        )
        log.debug("Session %s streaming into %s", session_id, message.id)
        return message.id

    def set_cancel(self, session_id: str, cancel: Callable[[], None]) -> None:
        session = self.require(session_id)
        if session.stream is not None:
            session.stream.cancel = cancel

    def active_message_id(self, session_id: str) -> str | None:
        session = self._sessions.get(session_id)
        if session is None or session.stream is None:
            return None
        return session.stream.message_id

    def active_stream(self, session_id: str) -> ActiveStream | None:
        session = self._sessions.get(session_id)
        return session.stream if session else None

    def finish_stream(self, session_id: str, message_id: str) -> bool:
        """Clear the slot if it still belongs to ``message_id``."""
        session = self._sessions.get(session_id)
        if session is None or session.stream is None:
            return False
        if session.stream.message_id != message_id:
            log.debug(
                "Not finishing %s: session %s now streams %s",
                message_id,
                session_id,
                session.stream.message_id,
            )
            return False
        session.stream = None
        return True

    def cancel_stream(self, session_id: str) -> str | None:
        """Stop the active stream, keeping whatever was accumulated.

        Idempotent: a second call finds no stream and does nothing.

        Returns:
            The cancelled message id, or None if nothing was streaming.
        """
        session = self._sessions.get(session_id)
        if session is None or session.stream is None:
            return None
        stream = session.stream
        session.stream = None
        if stream.cancel is not None:
            stream.cancel()
        stream.accumulator.stop()
        log.debug("Cancelled stream %s in session %s", stream.message_id, session_id)
        return stream.message_id

    def merge_snapshot(self, session_id: str, snapshot: list[Any]) -> list[Message]:
        """Fold a backend snapshot of the session's messages into memory.

        Snapshot records are normalized. The in-flight message always wins
        over its snapshot copy, and in-memory messages the snapshot does not
        know yet are kept after it in their original order. Merging the same
        snapshot twice changes nothing.
        """
        session = self.ensure(session_id)
        streaming_id = session.stream.message_id if session.stream else None
        current = {m.id: m for m in session.messages}

        merged: list[Message] = []
        seen: set[str] = set()
        for record in snapshot:
            message = normalize(record)
            if message.id in seen:
                continue
            seen.add(message.id)
            if message.id == streaming_id:
                merged.append(current[message.id])
            else:
                merged.append(message)

        for message in session.messages:
            if message.id not in seen:
                merged.append(message)
                seen.add(message.id)

        session.messages = merged
        return merged
