"""Tool call lifecycle.

State machine per call:

    pending -> needs-confirmation -> approved -> executing -> completed | failed
    pending -> approved                      (read-only tools)
    pending -> failed                        (forbidden tools, never executed)
    pending | needs-confirmation -> rejected (a saved reject decision)

Status only moves forward; completed, failed and rejected are final. A
user's reject fails the call with the rejection reason. Runtime errors are
captured on the call and never abort the stream.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from chatstream.logging import get_logger
from chatstream.messages.model import RiskLevel, ToolCall, ToolStatus
from chatstream.permissions.gate import PermissionGate, PermissionRejected
from chatstream.permissions.store import DecisionStore
from chatstream.streaming.chunks import ToolCallChunk, ToolResultChunk
from chatstream.tools.policy import ToolPolicy
from chatstream.tools.runtime import ToolRuntime

log = get_logger("lifecycle")

ToolUpdateCallback = Callable[[str, str, ToolCall], None]

FORBIDDEN_ERROR = "Blocked by policy: this tool call is forbidden"
SAVED_REJECT_ERROR = "Rejected by a saved permission decision"

_RANK = {
    ToolStatus.PENDING: 0,
    ToolStatus.NEEDS_CONFIRMATION: 1,
    ToolStatus.APPROVED: 2,
    ToolStatus.EXECUTING: 3,
    ToolStatus.COMPLETED: 4,
    ToolStatus.FAILED: 4,
    ToolStatus.REJECTED: 4,
}


@dataclass
class InvalidTransition(Exception):
    """Raised when a status change would move a tool call backwards."""

    tool_call_id: str
    current: ToolStatus
    target: ToolStatus

    def __str__(self) -> str:
        return (
            f"Tool call {self.tool_call_id}: cannot move from "
            f"{self.current.value} to {self.target.value}"
        )


def can_transition(current: ToolStatus, target: ToolStatus) -> bool:
    if current.is_terminal:
        return False
    if target is ToolStatus.REJECTED:
        return current in (ToolStatus.PENDING, ToolStatus.NEEDS_CONFIRMATION)
    return _RANK[target] > _RANK[current]


@dataclass
class _Tracked:
    session_id: str
    message_id: str
    call: ToolCall
    fingerprint: str | None
    done: asyncio.Event = field(default_factory=asyncio.Event)
    task: asyncio.Task[None] | None = None


class ToolCallController:
    """Drives tool calls from request to terminal state.

    Every status change after registration is reported through
    ``on_update(session_id, message_id, call)``.
    """

    def __init__(
        self,
        policy: ToolPolicy,
        store: DecisionStore,
        gate: PermissionGate,
        runtime: ToolRuntime | None = None,
        *,
        on_update: ToolUpdateCallback | None = None,
    ) -> None:
        self._policy = policy
        self._store = store
        self._gate = gate
        self._runtime = runtime
        self._on_update = on_update
        self._calls: dict[tuple[str, str, str], _Tracked] = {}
        self._released: set[tuple[str, str]] = set()
        self._background: set[asyncio.Task[Any]] = set()

    @property
    def policy(self) -> ToolPolicy:
        return self._policy

    def set_policy(self, policy: ToolPolicy) -> None:
        """Use a new policy for calls registered from now on."""
        self._policy = policy

    def set_update_callback(self, callback: ToolUpdateCallback | None) -> None:
        self._on_update = callback

    def get(self, session_id: str, message_id: str, tool_call_id: str) -> ToolCall | None:
        tracked = self._calls.get((session_id, message_id, tool_call_id))
        return tracked.call if tracked else None

    def _advance(self, tracked: _Tracked, status: ToolStatus, **changes: Any) -> bool:
        current = tracked.call.status
        if not can_transition(current, status):
            log.debug(
                "Ignoring %s -> %s for tool call %s", current.value, status.value, tracked.call.id
            )
            return False
        if status.is_terminal:
            changes.setdefault("ended_at", time.time())
        tracked.call = tracked.call.evolve(status=status, **changes)
        log.debug("Tool call %s (%s) -> %s", tracked.call.id, tracked.call.name, status.value)
        if status.is_terminal:
            tracked.done.set()
        if self._on_update is not None:
            self._on_update(tracked.session_id, tracked.message_id, tracked.call)
        if status.is_terminal:
            self._prune(tracked.session_id, tracked.message_id)
        return True

    def transition(
        self,
        session_id: str,
        message_id: str,
        tool_call_id: str,
        status: ToolStatus,
        **changes: Any,
    ) -> ToolCall:
        """Force a status change from outside the controller.

        Raises:
            KeyError: unknown tool call
            InvalidTransition: the change would move the call backwards
        """
        tracked = self._calls[(session_id, message_id, tool_call_id)]
        if not self._advance(tracked, status, **changes):
            raise InvalidTransition(tool_call_id, tracked.call.status, status)
        return tracked.call

    def register(self, session_id: str, message_id: str, chunk: ToolCallChunk) -> ToolCall:
        """Start tracking a requested tool call and return its first state.

        A repeated id updates the arguments while the call is still pending.
        """
        key = (session_id, message_id, chunk.id)
        tracked = self._calls.get(key)
        if tracked is not None:
            if tracked.call.status is ToolStatus.PENDING and chunk.args != tracked.call.args:
                tracked.call = tracked.call.evolve(args=dict(chunk.args))
            return tracked.call

        risk = self._policy.classify(chunk.name, chunk.args)
        fingerprint = self._policy.fingerprint(chunk.name, chunk.args)
        call = ToolCall(
            id=chunk.id,
            name=chunk.name,
            args=dict(chunk.args),
            risk=risk,
            requires_confirmation=risk is RiskLevel.DANGEROUS,
        )
        tracked = _Tracked(session_id, message_id, call, fingerprint)
        self._calls[key] = tracked

        if risk is RiskLevel.FORBIDDEN:
            tracked.call = call.evolve(
                status=ToolStatus.FAILED, error=FORBIDDEN_ERROR, ended_at=time.time()
            )
            tracked.done.set()
            log.warning("Forbidden tool call %s (%s) blocked", call.id, call.name)
            return tracked.call

        if risk is RiskLevel.READ_ONLY:
            tracked.call = call.evolve(status=ToolStatus.APPROVED)

        tracked.task = asyncio.get_running_loop().create_task(self._run(tracked))
        return tracked.call

    def apply_result(
        self, session_id: str, message_id: str, chunk: ToolResultChunk
    ) -> ToolCall:
        """Record an outcome reported by the backend for a tool call."""
        status = ToolStatus.FAILED if chunk.error else ToolStatus.COMPLETED
        key = (session_id, message_id, chunk.id)
        tracked = self._calls.get(key)
        if tracked is None:
            now = time.time()
            call = ToolCall(
                id=chunk.id,
                name=chunk.name,
                status=status,
                result=chunk.result,
                error=chunk.error,
                started_at=now,
                ended_at=now,
            )
            tracked = _Tracked(session_id, message_id, call, None)
            tracked.done.set()
            self._calls[key] = tracked
            return call

        if tracked.task is not None and not tracked.task.done():
            tracked.task.cancel()
        self._advance(tracked, status, result=chunk.result, error=chunk.error)
        return tracked.call

    async def _run(self, tracked: _Tracked) -> None:
        call = tracked.call
        try:
            if call.status is ToolStatus.PENDING:
                decision = self._store.lookup(
                    tracked.session_id,
                    self._working_directory(tracked.session_id),
                    call.name,
                    tracked.fingerprint,
                )
                if decision is not None and not decision.allows:
                    self._advance(tracked, ToolStatus.REJECTED, error=SAVED_REJECT_ERROR)
                    return
                if decision is None:
                    self._advance(tracked, ToolStatus.NEEDS_CONFIRMATION)
                    try:
                        await self._gate.ask(
                            tracked.session_id, tracked.message_id, tracked.call, tracked.fingerprint
                        )
                    except PermissionRejected as e:
                        self._advance(tracked, ToolStatus.FAILED, error=e.reason)
                        return
                self._advance(tracked, ToolStatus.APPROVED)

            if self._runtime is None:
                # Backend executes; its tool-result chunk resolves the call
                return

            if not self._advance(tracked, ToolStatus.EXECUTING, started_at=time.time()):
                return
            try:
                result = await self._runtime.execute_tool(
                    call.name,
                    dict(tracked.call.args),
                    tracked.message_id,
                    tracked.session_id,
                    tool_call_id=call.id,
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.warning("Tool %s raised: %s", call.name, e)
                self._advance(tracked, ToolStatus.FAILED, error=str(e) or type(e).__name__)
                return

            if result.success:
                self._advance(tracked, ToolStatus.COMPLETED, result=result.result)
            else:
                self._advance(tracked, ToolStatus.FAILED, error=result.error or "Tool failed")
        finally:
            tracked.task = None

    def _working_directory(self, session_id: str) -> str | None:
        session = self._gate.registry.get(session_id)
        return session.working_directory if session else None

    async def wait_for(self, session_id: str, message_id: str, tool_call_id: str) -> ToolCall:
        """Wait until a tool call reaches a terminal state."""
        tracked = self._calls[(session_id, message_id, tool_call_id)]
        await tracked.done.wait()
        return tracked.call

    def settle_message(
        self,
        session_id: str,
        message_id: str,
        reason: str,
        *,
        include_executing: bool = False,
    ) -> list[ToolCall]:
        """Fail the message's unresolved calls; optionally also running ones.

        Returns:
            The calls that changed.
        """
        changed: list[ToolCall] = []
        for tracked in list(self._calls.values()):
            if tracked.session_id != session_id or tracked.message_id != message_id:
                continue
            status = tracked.call.status
            executing = status is ToolStatus.EXECUTING
            if not status.is_unresolved and not (include_executing and executing):
                continue
            if self._advance(tracked, ToolStatus.FAILED, error=reason):
                changed.append(tracked.call)
            if tracked.task is not None and not tracked.task.done():
                tracked.task.cancel()
            if executing and self._runtime is not None:
                self._spawn(self._runtime.cancel_tool(tracked.call.id))
        return changed

    def release_message(self, session_id: str, message_id: str) -> None:
        """Stop tracking a message's calls once each of them is terminal.

        Calls still executing are dropped when they finish.
        """
        self._released.add((session_id, message_id))
        self._prune(session_id, message_id)

    def _prune(self, session_id: str, message_id: str) -> None:
        if (session_id, message_id) not in self._released:
            return
        keys = [k for k in self._calls if k[0] == session_id and k[1] == message_id]
        if all(self._calls[k].call.status.is_terminal for k in keys):
            for k in keys:
                del self._calls[k]
            self._released.discard((session_id, message_id))
            log.debug("Released %d tool call(s) of message %s", len(keys), message_id)

    def forget_session(self, session_id: str) -> None:
        """Cancel and drop everything tracked for a session."""
        for key, tracked in list(self._calls.items()):
            if tracked.session_id != session_id:
                continue
            if tracked.task is not None and not tracked.task.done():
                tracked.task.cancel()
            tracked.done.set()
            del self._calls[key]
        self._released = {r for r in self._released if r[0] != session_id}

    def _spawn(self, coro: Any) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def aclose(self) -> None:
        tasks = [t.task for t in self._calls.values() if t.task is not None and not t.task.done()]
        tasks.extend(self._background)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
