"""Chat service: the single entry point for UI and network layers.

Owns the registry, permission gate, tool controller and dispatcher, and
drives one pump task per in-flight generation that drains the transport's
chunk stream into the dispatcher.
"""

from __future__ import annotations

import asyncio
from functools import partial
from typing import Any

from chatstream.config.loader import get_config, on_config_reload
from chatstream.config.schema import Config
from chatstream.errors.classifier import error_response
from chatstream.errors.types import AlreadyStreaming, ClassifiedError
from chatstream.logging import apply_component_levels, get_logger, setup_logging
from chatstream.messages.model import ErrorPart, Message, ToolCall, user_message
from chatstream.messages.storage import MessageStore
from chatstream.permissions.gate import PermissionGate, PermissionInfo
from chatstream.permissions.store import DecisionScope, DecisionStore
from chatstream.session.dispatcher import ChunkDispatcher
from chatstream.session.registry import SessionRegistry
from chatstream.streaming.chunks import ChunkEvent, FinishChunk
from chatstream.streaming.litellm_transport import LiteLLMTransport
from chatstream.streaming.transport import GenerationRequest, Transport
from chatstream.tools.lifecycle import ToolCallController
from chatstream.tools.policy import ToolPolicy
from chatstream.tools.runtime import ToolRuntime

log = get_logger("service")

CANCELLED_REASON = "Cancelled by user"


class ChatService:
    """Per-session chat streaming with tool permissions.

    Without a transport, one is built from the ``llm`` config section.
    Without an explicit config, the service follows the global config and
    picks up reloads; an explicit config pins it.

    Usage:
        service = ChatService(LiteLLMTransport("gpt-4o"), runtime=McpToolRuntime(mcp_session))
        message_id = await service.send("s1", "List the files here")
        ...
        service.respond_to_permission("s1", permission_id, "once")
    """

    def __init__(
        self,
        transport: Transport | None = None,
        *,
        runtime: ToolRuntime | None = None,
        decision_store: DecisionStore | None = None,
        config: Config | None = None,
        message_store: MessageStore | None = None,
    ) -> None:
        self._config = config if config is not None else get_config()
        setup_logging(self._config.logging)
        self._owns_transport = transport is None
        self._transport = (
            transport if transport is not None else LiteLLMTransport.from_config(self._config.llm)
        )
        self._runtime = runtime
        self._message_store = message_store

        store = decision_store or DecisionStore.from_config(self._config.permissions)
        self.registry = SessionRegistry()
        self.gate = PermissionGate(
            self.registry,
            store,
            default_reject_reason=self._config.permissions.default_reject_reason,
        )
        self.controller = ToolCallController(
            ToolPolicy.from_config(self._config.tools),
            store,
            self.gate,
            runtime,
            on_update=self._on_tool_update,
        )
        self.dispatcher = ChunkDispatcher(self.registry, self.controller)
        self._pumps: dict[str, asyncio.Task[None]] = {}
        self._unsubscribe = on_config_reload(self._on_config_reload) if config is None else None

    @property
    def config(self) -> Config:
        return self._config

    @property
    def transport(self) -> Transport:
        return self._transport

    def _on_config_reload(self, config: Config) -> None:
        self._config = config
        self.controller.set_policy(ToolPolicy.from_config(config.tools))
        apply_component_levels(config.logging)
        if self._owns_transport and config.llm.model:
            self._transport = LiteLLMTransport.from_config(config.llm)
        log.info("Config reloaded: %d tool rule(s)", len(config.tools.rules))

    async def send(
        self,
        session_id: str,
        text: str,
        *,
        working_directory: str | None = None,
        model: str | None = None,
    ) -> str:
        """Append a user message and start generating the reply.

        Returns:
            The id of the assistant message being streamed.

        Raises:
            AlreadyStreaming: the session is still generating.
        """
        session = self.registry.ensure(session_id, working_directory)
        if session.stream is not None:
            raise AlreadyStreaming(session_id, session.stream.message_id)

        session.last_error = None
        session.messages.append(user_message(text))
        return self._generate(session_id, model)

    async def retry(self, session_id: str, *, model: str | None = None) -> str | None:
        """Regenerate after a retryable failure.

        Returns:
            The new assistant message id, or None if there is nothing to retry.
        """
        session = self.registry.get(session_id)
        if session is None or session.stream is not None:
            return None
        error = session.last_error
        if error is None or not error.retryable:
            log.debug("Nothing retryable in session %s", session_id)
            return None

        if session.messages and _is_error_message(session.messages[-1]):
            session.messages.pop()
        session.last_error = None
        return self._generate(session_id, model)

    def _generate(self, session_id: str, model: str | None) -> str:
        session = self.registry.require(session_id)
        history = list(session.messages)
        model = model or getattr(self._transport, "model", None) or self._config.llm.model
        message_id = self.registry.start_stream(session_id, model=model)
        request = GenerationRequest(
            session_id=session_id,
            message_id=message_id,
            history=history,
            model=model,
            resolve_tool=partial(self.controller.wait_for, session_id, message_id),
        )
        task = asyncio.get_running_loop().create_task(self._pump(request))
        self.registry.set_cancel(session_id, task.cancel)
        self._pumps[session_id] = task

        def _done(t: asyncio.Task[None]) -> None:
            if self._pumps.get(session_id) is t:
                del self._pumps[session_id]

        task.add_done_callback(_done)
        return message_id

    async def _pump(self, request: GenerationRequest) -> None:
        session_id, message_id = request.session_id, request.message_id
        stream = None
        try:
            if self._runtime is not None:
                request.tools = await self._runtime.list_tools()
            stream = self._transport.stream(request)
            async for chunk in stream:
                self.dispatcher.dispatch(ChunkEvent(session_id, message_id, chunk))
                if self.registry.active_message_id(session_id) != message_id:
                    break
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.dispatcher.fail(session_id, message_id, e)
        else:
            if self.registry.active_message_id(session_id) == message_id:
                log.debug("Transport ended %s without finish", message_id)
                self.dispatcher.dispatch(ChunkEvent(session_id, message_id, FinishChunk()))
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

    async def wait(self, session_id: str) -> None:
        """Wait for the session's current generation to end."""
        task = self._pumps.get(session_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    def dispatch(self, event: ChunkEvent | dict[str, Any]) -> bool:
        """Apply a chunk pushed by an external network layer."""
        return self.dispatcher.dispatch(event)

    def cancel(self, session_id: str) -> bool:
        """Stop the session's generation; partial content is kept.

        Safe to call repeatedly.
        """
        message_id = self.registry.cancel_stream(session_id)
        if message_id is None:
            return False
        self.gate.cancel_message(session_id, message_id, CANCELLED_REASON)
        self.controller.settle_message(
            session_id, message_id, CANCELLED_REASON, include_executing=True
        )
        self.controller.release_message(session_id, message_id)
        log.info("Cancelled generation %s in session %s", message_id, session_id)
        return True

    def respond_to_permission(
        self,
        session_id: str,
        permission_id: str,
        response: str | DecisionScope,
        reject_reason: str | None = None,
    ) -> dict[str, Any]:
        try:
            self.gate.respond(session_id, permission_id, response, reject_reason)
        except Exception as e:
            log.warning("Permission response failed: %s", e)
            return error_response(e)
        return {"success": True}

    def get_pending_permissions(self, session_id: str) -> list[PermissionInfo]:
        return self.gate.get_pending(session_id)

    def view_session(self, session_id: str, snapshot: list[Any] | None = None) -> list[Message]:
        """Messages for display, merged with a backend snapshot if given.

        Without a snapshot, a session unknown in memory is loaded from the
        message store when one is configured.
        """
        if snapshot is None and self.registry.get(session_id) is None and self._message_store:
            snapshot = self._message_store.load(session_id)
        if snapshot is not None:
            return list(self.registry.merge_snapshot(session_id, snapshot))
        session = self.registry.get(session_id)
        return list(session.messages) if session else []

    def last_error(self, session_id: str) -> ClassifiedError | None:
        session = self.registry.get(session_id)
        return session.last_error if session else None

    def save_session(self, session_id: str) -> None:
        if self._message_store is None:
            raise RuntimeError("No message store configured")
        session = self.registry.require(session_id)
        self._message_store.save(session_id, session.messages)

    def close_session(self, session_id: str) -> None:
        """Cancel generation, reject pending permissions, forget the session."""
        self.cancel(session_id)
        self.gate.clear_session(session_id)
        self.controller.forget_session(session_id)
        self.registry.close(session_id)

    async def aclose(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        for session in self.registry.list_sessions():
            self.close_session(session.session_id)
        tasks = list(self._pumps.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self.controller.aclose()

    def _on_tool_update(self, session_id: str, message_id: str, call: ToolCall) -> None:
        self.dispatcher.apply_tool_update(session_id, message_id, call)


def _is_error_message(message: Message) -> bool:
    return message.metadata.error_details is not None and any(
        isinstance(p, ErrorPart) for p in message.parts
    )
