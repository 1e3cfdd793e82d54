"""Session aggregate.

A session owns its messages, its stream slot (at most one generation in
flight), its last error and its pending permission requests.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from chatstream.errors.types import ClassifiedError
from chatstream.messages.model import Message
from chatstream.streaming.accumulator import MessagePartAccumulator

if TYPE_CHECKING:
    from chatstream.permissions.gate import PendingPermission


@dataclass
class ActiveStream:
    """The in-flight generation of a session."""

    message_id: str
    accumulator: MessagePartAccumulator
    cancel: Callable[[], None] | None = None


@dataclass
class Session:
    session_id: str
    working_directory: str | None = None
    messages: list[Message] = field(default_factory=list)
    stream: ActiveStream | None = None
    last_error: ClassifiedError | None = None
    pending_permissions: dict[str, PendingPermission] = field(default_factory=dict)

    @property
    def is_streaming(self) -> bool:
        return self.stream is not None

    def message_index(self, message_id: str) -> int:
        for i, msg in enumerate(self.messages):
            if msg.id == message_id:
                return i
        return -1

    def find_message(self, message_id: str) -> Message | None:
        index = self.message_index(message_id)
        return self.messages[index] if index >= 0 else None

    def remove_message(self, message_id: str) -> Message | None:
        index = self.message_index(message_id)
        if index < 0:
            return None
        return self.messages.pop(index)
