"""Shared test utilities for chatstream tests."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Any
from unittest.mock import Mock

from chatstream.streaming.chunks import Chunk
from chatstream.streaming.transport import GenerationRequest
from chatstream.tools.runtime import ToolDefinition, ToolExecutionResult


async def wait_until(predicate, timeout: float = 1.0, interval: float = 0.001) -> None:
    """Poll until predicate() is true.

    Raises:
        asyncio.TimeoutError: If timeout is exceeded
    """

    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(interval)

    await asyncio.wait_for(_poll(), timeout=timeout)


def create_mock_llm_stream_chunk(
    text: str | None = "chunk",
    *,
    reasoning: str | None = None,
    tool_calls: list[Any] | None = None,
    finish_reason: str | None = None,
    usage: Any = None,
) -> Mock:
    """Create a mock streaming chunk from LiteLLM.

    Every attribute the transport reads is set explicitly so Mock's
    auto-attributes never leak in.
    """
    chunk = Mock()
    chunk.usage = usage
    chunk.choices = [Mock()]
    delta = Mock()
    delta.content = text
    delta.reasoning_content = reasoning
    delta.tool_calls = tool_calls
    chunk.choices[0].delta = delta
    chunk.choices[0].finish_reason = finish_reason
    return chunk


def create_mock_tool_fragment(
    index: int, *, id: str | None = None, name: str | None = None, arguments: str | None = None
) -> Mock:
    """One streamed fragment of a tool call."""
    fragment = Mock()
    fragment.index = index
    fragment.id = id
    fragment.function = Mock()
    fragment.function.name = name
    fragment.function.arguments = arguments
    return fragment


def create_mock_usage(prompt: int = 10, completion: int = 20) -> Mock:
    usage = Mock()
    usage.prompt_tokens = prompt
    usage.completion_tokens = completion
    usage.total_tokens = prompt + completion
    return usage


def async_iter(items: list[Any]) -> AsyncIterator[Any]:
    async def _gen():
        for item in items:
            yield item

    return _gen()


class ScriptedTransport:
    """Transport that replays a fixed list of chunks.

    Items may be chunks, exceptions (raised at that point), or coroutine
    functions taking the request (awaited, for pausing mid-stream).
    """

    def __init__(self, *scripts: list[Any]) -> None:
        self._scripts = list(scripts)
        self.requests: list[GenerationRequest] = []

    async def stream(self, request: GenerationRequest) -> AsyncIterator[Chunk]:
        self.requests.append(request)
        script = self._scripts.pop(0) if self._scripts else []
        for item in script:
            if isinstance(item, BaseException):
                raise item
            if callable(item):
                result = await item(request)
                if result is not None:
                    yield result
                continue
            yield item


class FakeRuntime:
    """In-memory ToolRuntime recording executions."""

    def __init__(self, results: dict[str, ToolExecutionResult] | None = None) -> None:
        self.results = results or {}
        self.executed: list[tuple[str, dict[str, Any]]] = []
        self.cancelled: list[str] = []
        self.raise_for: dict[str, Exception] = {}
        self.block: asyncio.Event | None = None

    async def list_tools(self) -> list[ToolDefinition]:
        return [ToolDefinition(name=name) for name in self.results]

    async def execute_tool(
        self,
        tool_id: str,
        args: dict[str, Any],
        message_id: str,
        session_id: str,
        *,
        tool_call_id: str | None = None,
    ) -> ToolExecutionResult:
        self.executed.append((tool_id, args))
        if self.block is not None:
            await self.block.wait()
        if tool_id in self.raise_for:
            raise self.raise_for[tool_id]
        return self.results.get(tool_id, ToolExecutionResult(success=True, result="ok"))

    async def cancel_tool(self, tool_call_id: str) -> bool:
        self.cancelled.append(tool_call_id)
        return True
