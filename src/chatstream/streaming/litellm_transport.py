"""LiteLLM transport.

Streams a completion through litellm and turns its deltas into chunks.
Tool calls are assembled from streamed fragments, announced as tool-call
chunks, and resolved through the request's ``resolve_tool`` callback; the
results are fed back to the model and generation continues.

Supports any litellm model id:
- Anthropic: "claude-sonnet-4-20250514"
- OpenAI: "gpt-4o"
- Local: "ollama/llama3"
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import litellm

from chatstream.logging import get_logger
from chatstream.messages.model import (
    ErrorPart,
    Message,
    Role,
    ToolCall,
    ToolStatus,
    Usage,
    new_id,
)
from chatstream.streaming.chunks import (
    Chunk,
    ContinuationChunk,
    FinishChunk,
    ReasoningChunk,
    TextChunk,
    ToolCallChunk,
)
from chatstream.streaming.transport import GenerationRequest
from chatstream.tools.runtime import ToolDefinition

if TYPE_CHECKING:
    from chatstream.config.schema import LLMConfig

log = get_logger("litellm")

DEFAULT_MAX_TOKENS = 4096


@dataclass
class _ToolBuffer:
    """Tool call fragments collected by stream index."""

    id: str | None = None
    name: str = ""
    arguments: list[str] = field(default_factory=list)

    def to_call(self) -> tuple[str, str, dict[str, Any]]:
        raw = "".join(self.arguments).strip()
        args: dict[str, Any] = {}
        if raw:
            try:
                parsed = json.loads(raw)
                args = parsed if isinstance(parsed, dict) else {"value": parsed}
            except json.JSONDecodeError:
                log.warning("Tool %s sent unparseable arguments: %r", self.name, raw)
                args = {"raw": raw}
        return self.id or new_id("call"), self.name, args


def _history_to_litellm(history: list[Message]) -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = []
    for msg in history:
        if msg.metadata.is_error or any(isinstance(p, ErrorPart) for p in msg.parts):
            continue
        text = msg.text
        if not text:
            continue
        out.append({"role": msg.role.value, "content": text})
    return out


def _tool_result_content(call: ToolCall) -> str:
    if call.status == ToolStatus.COMPLETED:
        if isinstance(call.result, str):
            return call.result
        return json.dumps(call.result, default=str)
    return f"Error: {call.error or call.status.value}"


def _add_usage(total: Usage | None, raw: Any) -> Usage | None:
    if raw is None:
        return total
    prompt = getattr(raw, "prompt_tokens", 0) or 0
    completion = getattr(raw, "completion_tokens", 0) or 0
    tokens = getattr(raw, "total_tokens", 0) or prompt + completion
    if total is None:
        return Usage(prompt, completion, tokens)
    return Usage(
        total.prompt_tokens + prompt,
        total.completion_tokens + completion,
        total.total_tokens + tokens,
    )


class LiteLLMTransport:
    """Transport using litellm for multi-provider streaming.

    Usage:
        transport = LiteLLMTransport("gpt-4o")
        transport = LiteLLMTransport("ollama/llama3", api_base="http://localhost:11434")
    """

    def __init__(
        self,
        model: str,
        *,
        api_key: str | None = None,
        api_base: str | None = None,
        max_tokens: int | None = None,
        max_tool_rounds: int = 8,
        **kwargs: Any,
    ) -> None:
        self._model = model
        self._api_key = api_key
        self._api_base = api_base
        self._max_tokens = max_tokens or DEFAULT_MAX_TOKENS
        self._max_tool_rounds = max_tool_rounds
        self._kwargs = kwargs

    @classmethod
    def from_config(cls, config: LLMConfig, **kwargs: Any) -> LiteLLMTransport:
        """Create a transport from the ``llm`` config section.

        Raises:
            ValueError: no model is configured
        """
        if not config.model:
            raise ValueError("No model configured (set llm.model or CHATSTREAM_MODEL)")
        return cls(
            config.model,
            api_base=config.api_base,
            max_tokens=config.max_tokens,
            max_tool_rounds=config.max_tool_rounds,
            **kwargs,
        )

    @property
    def model(self) -> str:
        return self._model

    def _build_kwargs(
        self,
        messages: list[dict[str, Any]],
        *,
        model: str | None,
        tools: list[ToolDefinition],
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": model or self._model,
            "messages": messages,
            "max_tokens": self._max_tokens,
            "stream": True,
            "stream_options": {"include_usage": True},
            **self._kwargs,
        }
        if tools:
            kwargs["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": t.name,
                        "description": t.description,
                        "parameters": t.input_schema,
                    },
                }
                for t in tools
            ]
        if self._api_key:
            kwargs["api_key"] = self._api_key
        if self._api_base:
            kwargs["api_base"] = self._api_base
        return kwargs

    async def stream(self, request: GenerationRequest) -> AsyncIterator[Chunk]:
        """Stream one assistant turn, including tool round-trips."""
        conversation = _history_to_litellm(request.history)
        usage: Usage | None = None
        rounds = 0

        while True:
            kwargs = self._build_kwargs(conversation, model=request.model, tools=request.tools)
            response = await litellm.acompletion(**kwargs)

            text: list[str] = []
            buffers: dict[int, _ToolBuffer] = {}
            finish_reason: str | None = None
            round_usage: Any = None

            async for chunk in response:
                # Usage arrives on the last chunk of a round
                if getattr(chunk, "usage", None) is not None:
                    round_usage = chunk.usage
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                delta = choice.delta
                if delta is not None:
                    reasoning = getattr(delta, "reasoning_content", None)
                    if reasoning:
                        yield ReasoningChunk(reasoning)
                    if delta.content:
                        text.append(delta.content)
                        yield TextChunk(delta.content)
                    for fragment in getattr(delta, "tool_calls", None) or []:
                        index = getattr(fragment, "index", None) or 0
                        buf = buffers.setdefault(index, _ToolBuffer())
                        if fragment.id:
                            buf.id = fragment.id
                        function = fragment.function
                        if function is not None:
                            if function.name:
                                buf.name = function.name
                            if function.arguments:
                                buf.arguments.append(function.arguments)
                if choice.finish_reason:
                    finish_reason = choice.finish_reason

            usage = _add_usage(usage, round_usage)

            if not buffers:
                yield FinishChunk(finish_reason or "stop", usage)
                return

            if request.resolve_tool is None or rounds >= self._max_tool_rounds:
                log.warning(
                    "Stopping after %d tool rounds for message %s", rounds, request.message_id
                )
                yield FinishChunk("tool_calls", usage)
                return

            calls = [buffers[i].to_call() for i in sorted(buffers)]
            for call_id, name, args in calls:
                yield ToolCallChunk(call_id, name, args)
            yield ContinuationChunk()

            conversation.append(
                {
                    "role": Role.ASSISTANT.value,
                    "content": "".join(text) or None,
                    "tool_calls": [
                        {
                            "id": call_id,
                            "type": "function",
                            "function": {"name": name, "arguments": json.dumps(args)},
                        }
                        for call_id, name, args in calls
                    ],
                }
            )
            for call_id, _name, _args in calls:
                resolved = await request.resolve_tool(call_id)
                conversation.append(
                    {
                        "role": "tool",
                        "tool_call_id": call_id,
                        "content": _tool_result_content(resolved),
                    }
                )
            rounds += 1
            log.debug("Tool round %d done for message %s", rounds, request.message_id)
