"""Tool runtime protocol and the MCP-backed implementation."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from mcp import types
from mcp.client.session import ClientSession

from chatstream.logging import get_logger

log = get_logger("runtime")


@dataclass(slots=True)
class ToolDefinition:
    """A tool the model may call."""

    name: str
    description: str = ""
    input_schema: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )


@dataclass(slots=True)
class ToolExecutionResult:
    """Outcome of one tool execution."""

    success: bool
    result: Any = None
    error: str | None = None


@runtime_checkable
class ToolRuntime(Protocol):
    """Executes tools on behalf of the model."""

    async def list_tools(self) -> list[ToolDefinition]:
        ...

    async def execute_tool(
        self,
        tool_id: str,
        args: dict[str, Any],
        message_id: str,
        session_id: str,
        *,
        tool_call_id: str | None = None,
    ) -> ToolExecutionResult:
        ...

    async def cancel_tool(self, tool_call_id: str) -> bool:
        ...


def _content_text(blocks: list[Any]) -> str:
    texts: list[str] = []
    for block in blocks:
        if isinstance(block, types.TextContent):
            texts.append(block.text)
        elif isinstance(block, types.EmbeddedResource):
            text = getattr(block.resource, "text", None)
            if text:
                texts.append(text)
        elif isinstance(block, types.ImageContent):
            texts.append(f"[image {block.mimeType}]")
    return "\n".join(texts)


class McpToolRuntime:
    """ToolRuntime over a connected MCP client session.

    The session must already be initialized; connection management is the
    caller's concern.
    """

    def __init__(self, session: ClientSession) -> None:
        self._session = session
        self._running: dict[str, asyncio.Task[Any]] = {}
        self._cancelled: set[str] = set()

    async def list_tools(self) -> list[ToolDefinition]:
        result = await self._session.list_tools()
        return [
            ToolDefinition(
                name=t.name,
                description=t.description or "",
                input_schema=dict(t.inputSchema or {"type": "object", "properties": {}}),
            )
            for t in result.tools
        ]

    async def execute_tool(
        self,
        tool_id: str,
        args: dict[str, Any],
        message_id: str,
        session_id: str,
        *,
        tool_call_id: str | None = None,
    ) -> ToolExecutionResult:
        task = asyncio.ensure_future(self._session.call_tool(tool_id, args))
        if tool_call_id:
            self._running[tool_call_id] = task
        try:
            result = await task
        except asyncio.CancelledError:
            if tool_call_id and tool_call_id in self._cancelled:
                self._cancelled.discard(tool_call_id)
                return ToolExecutionResult(success=False, error="Tool execution cancelled")
            raise
        finally:
            if tool_call_id:
                self._running.pop(tool_call_id, None)

        text = _content_text(result.content)
        if result.isError:
            log.info("Tool %s reported an error for message %s", tool_id, message_id)
            return ToolExecutionResult(success=False, error=text or "Tool reported an error")

        structured = getattr(result, "structuredContent", None)
        payload: Any = structured if structured else text
        return ToolExecutionResult(success=True, result=payload)

    async def cancel_tool(self, tool_call_id: str) -> bool:
        task = self._running.get(tool_call_id)
        if task is None or task.done():
            return False
        self._cancelled.add(tool_call_id)
        task.cancel()
        return True
