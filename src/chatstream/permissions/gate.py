"""Permission gate: suspend a tool call until the user decides.

Each request parks an asyncio Future on the owning session. ``respond``
resolves it; a reject surfaces in the waiting coroutine as
PermissionRejected.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from chatstream.errors.types import UnknownSession
from chatstream.logging import get_logger
from chatstream.messages.model import RiskLevel, ToolCall, new_id
from chatstream.permissions.store import DecisionScope, DecisionStore, PermissionDecision

if TYPE_CHECKING:
    from chatstream.session.registry import SessionRegistry
    from chatstream.session.session import Session

log = get_logger("gate")

DEFAULT_REJECT_REASON = (
    "The user rejected permission to use this tool. You may try again with different parameters."
)

# Older clients answer "always" for what is now a session approval
_RESPONSE_ALIASES = {"always": DecisionScope.SESSION}


@dataclass
class PermissionRejected(Exception):
    """Raised in the waiting tool call when its request is rejected."""

    tool_name: str
    reason: str = DEFAULT_REJECT_REASON

    def __str__(self) -> str:
        return self.reason


@dataclass
class PermissionNotFound(Exception):
    """Raised when responding to a request that is not pending."""

    session_id: str
    permission_id: str

    def __str__(self) -> str:
        return f"No pending permission {self.permission_id} in session {self.session_id}"


@dataclass(frozen=True, slots=True)
class PermissionInfo:
    """A pending permission request as shown to the user."""

    id: str
    session_id: str
    message_id: str
    tool_call_id: str
    tool_name: str
    args: dict[str, Any]
    fingerprint: str | None
    risk: RiskLevel | None
    title: str
    created_at: float = field(default_factory=time.time)


@dataclass
class PendingPermission:
    info: PermissionInfo
    future: asyncio.Future[DecisionScope]


def parse_response(response: str | DecisionScope) -> DecisionScope:
    if isinstance(response, DecisionScope):
        return response
    alias = _RESPONSE_ALIASES.get(response)
    if alias is not None:
        return alias
    try:
        scope = DecisionScope(response)
    except ValueError:
        raise ValueError(f"Unknown permission response: {response!r}") from None
    if scope is DecisionScope.ALWAYS:
        return DecisionScope.SESSION
    return scope


class PermissionGate:
    """Coordinates permission requests across sessions."""

    def __init__(
        self,
        registry: SessionRegistry,
        store: DecisionStore,
        *,
        default_reject_reason: str = DEFAULT_REJECT_REASON,
    ) -> None:
        self._registry = registry
        self._store = store
        self._default_reject_reason = default_reject_reason

    @property
    def store(self) -> DecisionStore:
        return self._store

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    def _session(self, session_id: str) -> Session:
        session = self._registry.get(session_id)
        if session is None:
            raise UnknownSession(session_id)
        return session

    async def ask(
        self,
        session_id: str,
        message_id: str,
        call: ToolCall,
        fingerprint: str | None,
    ) -> DecisionScope:
        """Wait for the user to decide on a tool call.

        Returns:
            The scope the user approved with.

        Raises:
            PermissionRejected: The user rejected the call, or the request
                was dropped because the stream or session ended.
        """
        session = self._session(session_id)
        info = PermissionInfo(
            id=new_id("perm"),
            session_id=session_id,
            message_id=message_id,
            tool_call_id=call.id,
            tool_name=call.name,
            args=dict(call.args),
            fingerprint=fingerprint,
            risk=call.risk,
            title=f"Allow {call.name}?",
        )
        future: asyncio.Future[DecisionScope] = asyncio.get_running_loop().create_future()
        session.pending_permissions[info.id] = PendingPermission(info, future)
        log.info("Permission requested for %s (%s) in session %s", call.name, info.id, session_id)

        try:
            return await future
        finally:
            session.pending_permissions.pop(info.id, None)

    def respond(
        self,
        session_id: str,
        permission_id: str,
        response: str | DecisionScope,
        reject_reason: str | None = None,
    ) -> None:
        """Resolve a pending request.

        Approvals at session or workspace scope are recorded and also resolve
        other pending requests the new decision covers.
        """
        scope = parse_response(response)
        session = self._session(session_id)
        pending = session.pending_permissions.pop(permission_id, None)
        if pending is None:
            raise PermissionNotFound(session_id, permission_id)

        info = pending.info
        if scope is DecisionScope.REJECT:
            reason = reject_reason or self._default_reject_reason
            log.info("Permission %s for %s rejected", permission_id, info.tool_name)
            if not pending.future.done():
                pending.future.set_exception(PermissionRejected(info.tool_name, reason))
            return

        log.info("Permission %s for %s approved (%s)", permission_id, info.tool_name, scope.value)
        if not pending.future.done():
            pending.future.set_result(scope)

        if scope is DecisionScope.ONCE:
            return

        decision = self._store.record(
            session_id,
            session.working_directory,
            PermissionDecision(info.tool_name, scope, info.fingerprint),
        )
        self._approve_covered(session, decision)

    def _approve_covered(self, session: Session, decision: PermissionDecision) -> None:
        if decision.scope is DecisionScope.WORKSPACE:
            sessions = [
                s
                for s in self._registry.list_sessions()
                if s.working_directory == session.working_directory
            ]
        else:
            sessions = [session]

        for target in sessions:
            for permission_id, pending in list(target.pending_permissions.items()):
                if not decision.covers(pending.info.tool_name, pending.info.fingerprint):
                    continue
                target.pending_permissions.pop(permission_id, None)
                if not pending.future.done():
                    pending.future.set_result(decision.scope)
                log.debug("Auto-approved %s via %s decision", permission_id, decision.scope.value)

    def get_pending(self, session_id: str) -> list[PermissionInfo]:
        session = self._registry.get(session_id)
        if session is None:
            return []
        return [p.info for p in session.pending_permissions.values()]

    def cancel_message(self, session_id: str, message_id: str, reason: str) -> int:
        """Reject every pending request belonging to one message."""
        session = self._registry.get(session_id)
        if session is None:
            return 0
        cancelled = 0
        for permission_id, pending in list(session.pending_permissions.items()):
            if pending.info.message_id != message_id:
                continue
            session.pending_permissions.pop(permission_id, None)
            if not pending.future.done():
                pending.future.set_exception(PermissionRejected(pending.info.tool_name, reason))
            cancelled += 1
        return cancelled

    def clear_session(self, session_id: str, reason: str = "Session cleared") -> None:
        """Reject all pending requests and drop session-scoped decisions."""
        session = self._registry.get(session_id)
        if session is not None:
            for pending in session.pending_permissions.values():
                if not pending.future.done():
                    pending.future.set_exception(
                        PermissionRejected(pending.info.tool_name, reason)
                    )
            session.pending_permissions.clear()
        self._store.clear_session(session_id)
