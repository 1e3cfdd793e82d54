"""Sessions, stream registry, chunk dispatch and the chat service."""

from chatstream.session.dispatcher import ChunkDispatcher
from chatstream.session.registry import SessionRegistry
from chatstream.session.service import ChatService
from chatstream.session.session import ActiveStream, Session

__all__ = [
    "ActiveStream",
    "ChatService",
    "ChunkDispatcher",
    "Session",
    "SessionRegistry",
]
