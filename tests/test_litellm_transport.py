"""Tests for the LiteLLM transport.

Tests coverage for:
- src/chatstream/streaming/litellm_transport.py
"""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from chatstream.config.schema import LLMConfig
from chatstream.errors import ClassifiedError, ErrorCategory
from chatstream.messages import ToolCall, ToolStatus, Usage, error_message, user_message
from chatstream.streaming import (
    ContinuationChunk,
    FinishChunk,
    GenerationRequest,
    LiteLLMTransport,
    ReasoningChunk,
    TextChunk,
    ToolCallChunk,
)
from chatstream.tools import ToolDefinition
from tests.utils import (
    async_iter,
    create_mock_llm_stream_chunk,
    create_mock_tool_fragment,
    create_mock_usage,
)


def _request(**kwargs) -> GenerationRequest:
    kwargs.setdefault("history", [user_message("List files")])
    return GenerationRequest(session_id="s1", message_id="m1", **kwargs)


async def _collect(transport, request):
    return [chunk async for chunk in transport.stream(request)]


# =============================================================================
# Plain Streaming Tests
# =============================================================================


class TestTextStreaming:
    """Tests for text and reasoning deltas."""

    @pytest.mark.asyncio
    async def test_text_deltas(self):
        """Test content deltas become text chunks followed by finish."""
        transport = LiteLLMTransport("gpt-4o")
        chunks = [
            create_mock_llm_stream_chunk("Hel"),
            create_mock_llm_stream_chunk("lo", finish_reason="stop"),
        ]

        with patch("litellm.acompletion", new_callable=AsyncMock) as mock_acompletion:
            mock_acompletion.return_value = async_iter(chunks)

            collected = await _collect(transport, _request())

        assert collected == [TextChunk("Hel"), TextChunk("lo"), FinishChunk("stop", None)]
        call_kwargs = mock_acompletion.call_args.kwargs
        assert call_kwargs["model"] == "gpt-4o"
        assert call_kwargs["stream"] is True
        assert call_kwargs["stream_options"] == {"include_usage": True}
        assert call_kwargs["messages"] == [{"role": "user", "content": "List files"}]
        assert "tools" not in call_kwargs

    @pytest.mark.asyncio
    async def test_reasoning_and_usage(self):
        """Test reasoning deltas and trailing usage are reported."""
        transport = LiteLLMTransport("claude-sonnet-4-20250514")
        chunks = [
            create_mock_llm_stream_chunk(None, reasoning="Thinking"),
            create_mock_llm_stream_chunk("Answer", finish_reason="stop"),
            create_mock_llm_stream_chunk(None, usage=create_mock_usage(10, 20)),
        ]

        with patch("litellm.acompletion", new_callable=AsyncMock) as mock_acompletion:
            mock_acompletion.return_value = async_iter(chunks)

            collected = await _collect(transport, _request())

        assert collected == [
            ReasoningChunk("Thinking"),
            TextChunk("Answer"),
            FinishChunk("stop", Usage(10, 20, 30)),
        ]

    @pytest.mark.asyncio
    async def test_request_options(self):
        """Test model override, endpoint and tools are passed through."""
        transport = LiteLLMTransport("gpt-4o", api_base="http://localhost:11434", max_tokens=512)
        tool = ToolDefinition("read_file", "Read a file", {"type": "object", "properties": {"path": {"type": "string"}}})

        with patch("litellm.acompletion", new_callable=AsyncMock) as mock_acompletion:
            mock_acompletion.return_value = async_iter([create_mock_llm_stream_chunk("x")])

            await _collect(transport, _request(model="ollama/llama3", tools=[tool]))

        call_kwargs = mock_acompletion.call_args.kwargs
        assert call_kwargs["model"] == "ollama/llama3"
        assert call_kwargs["api_base"] == "http://localhost:11434"
        assert call_kwargs["max_tokens"] == 512
        assert call_kwargs["tools"][0]["function"]["name"] == "read_file"
        assert call_kwargs["tools"][0]["function"]["parameters"]["properties"]["path"] == {"type": "string"}

    @pytest.mark.asyncio
    async def test_error_messages_left_out_of_history(self):
        """Test error messages are not sent back to the model."""
        transport = LiteLLMTransport("gpt-4o")
        failure = ClassifiedError(ErrorCategory.NETWORK, "Offline", "ECONNREFUSED", True)
        history = [user_message("hi"), error_message(failure), user_message("again")]

        with patch("litellm.acompletion", new_callable=AsyncMock) as mock_acompletion:
            mock_acompletion.return_value = async_iter([create_mock_llm_stream_chunk("x")])

            await _collect(transport, _request(history=history))

        messages = mock_acompletion.call_args.kwargs["messages"]
        assert [m["content"] for m in messages] == ["hi", "again"]

    @pytest.mark.asyncio
    async def test_api_error_propagates(self):
        """Test errors from litellm are raised to the caller."""
        transport = LiteLLMTransport("invalid-model")

        with patch("litellm.acompletion", new_callable=AsyncMock) as mock_acompletion:
            mock_acompletion.side_effect = Exception("API Error: Invalid model")

            with pytest.raises(Exception, match="Invalid model"):
                await _collect(transport, _request())


# =============================================================================
# Construction Tests
# =============================================================================


class TestFromConfig:
    """Tests for building the transport from the llm config section."""

    @pytest.mark.asyncio
    async def test_settings_applied(self):
        """Test endpoint, token limit and round limit come from config."""
        config = LLMConfig(
            model="ollama/llama3", api_base="http://localhost:11434", max_tokens=256, max_tool_rounds=0
        )
        transport = LiteLLMTransport.from_config(config)

        with patch("litellm.acompletion", new_callable=AsyncMock) as mock_acompletion:
            mock_acompletion.return_value = async_iter(TestToolRounds._tool_round(["{}"]))

            collected = await _collect(transport, _request())

        assert transport.model == "ollama/llama3"
        call_kwargs = mock_acompletion.call_args.kwargs
        assert call_kwargs["model"] == "ollama/llama3"
        assert call_kwargs["api_base"] == "http://localhost:11434"
        assert call_kwargs["max_tokens"] == 256
        assert collected == [FinishChunk("tool_calls", Usage(10, 20, 30))]

    def test_missing_model(self):
        """Test a config without a model is refused."""
        with pytest.raises(ValueError, match="No model configured"):
            LiteLLMTransport.from_config(LLMConfig())


# =============================================================================
# Tool Round-Trip Tests
# =============================================================================


class TestToolRounds:
    """Tests for tool calls assembled from streamed fragments."""

    @staticmethod
    def _tool_round(arguments: list[str]):
        fragments = [
            create_mock_llm_stream_chunk(
                None,
                tool_calls=[
                    create_mock_tool_fragment(
                        0,
                        id="call_1" if i == 0 else None,
                        name="read_file" if i == 0 else None,
                        arguments=part,
                    )
                ],
            )
            for i, part in enumerate(arguments)
        ]
        fragments.append(
            create_mock_llm_stream_chunk(None, finish_reason="tool_calls", usage=create_mock_usage(10, 20))
        )
        return fragments

    @pytest.mark.asyncio
    async def test_tool_round_trip(self):
        """Test a tool call is announced, resolved and fed back to the model."""
        transport = LiteLLMTransport("gpt-4o")
        resolved: list[str] = []

        async def resolve(call_id: str) -> ToolCall:
            resolved.append(call_id)
            return ToolCall(id=call_id, name="read_file", status=ToolStatus.COMPLETED, result="contents")

        second_round = [
            create_mock_llm_stream_chunk("Done", finish_reason="stop", usage=create_mock_usage(5, 5)),
        ]

        with patch("litellm.acompletion", new_callable=AsyncMock) as mock_acompletion:
            mock_acompletion.side_effect = [
                async_iter(self._tool_round(['{"pa', 'th": "a"}'])),
                async_iter(second_round),
            ]

            collected = await _collect(transport, _request(resolve_tool=resolve))

        assert collected == [
            ToolCallChunk("call_1", "read_file", {"path": "a"}),
            ContinuationChunk(),
            TextChunk("Done"),
            FinishChunk("stop", Usage(15, 25, 40)),
        ]
        assert resolved == ["call_1"]

        followup = mock_acompletion.call_args_list[1].kwargs["messages"]
        assert followup[-2]["role"] == "assistant"
        assert followup[-2]["tool_calls"][0]["id"] == "call_1"
        assert followup[-1] == {"role": "tool", "tool_call_id": "call_1", "content": "contents"}

    @pytest.mark.asyncio
    async def test_failed_tool_reported_as_error(self):
        """Test a failed tool call is fed back as an error string."""
        transport = LiteLLMTransport("gpt-4o")

        async def resolve(call_id: str) -> ToolCall:
            return ToolCall(id=call_id, name="read_file", status=ToolStatus.FAILED, error="denied")

        with patch("litellm.acompletion", new_callable=AsyncMock) as mock_acompletion:
            mock_acompletion.side_effect = [
                async_iter(self._tool_round(['{"path": "a"}'])),
                async_iter([create_mock_llm_stream_chunk("Sorry", finish_reason="stop")]),
            ]

            await _collect(transport, _request(resolve_tool=resolve))

        followup = mock_acompletion.call_args_list[1].kwargs["messages"]
        assert followup[-1]["content"] == "Error: denied"

    @pytest.mark.asyncio
    async def test_unparseable_arguments(self):
        """Test broken argument JSON is kept raw."""
        transport = LiteLLMTransport("gpt-4o")

        async def resolve(call_id: str) -> ToolCall:
            return ToolCall(id=call_id, name="read_file", status=ToolStatus.COMPLETED, result="")

        with patch("litellm.acompletion", new_callable=AsyncMock) as mock_acompletion:
            mock_acompletion.side_effect = [
                async_iter(self._tool_round(['{"path": '])),
                async_iter([create_mock_llm_stream_chunk("ok", finish_reason="stop")]),
            ]

            collected = await _collect(transport, _request(resolve_tool=resolve))

        assert collected[0] == ToolCallChunk("call_1", "read_file", {"raw": '{"path":'})

    @pytest.mark.asyncio
    async def test_round_limit(self):
        """Test generation stops once the tool round limit is reached."""
        transport = LiteLLMTransport("gpt-4o", max_tool_rounds=0)

        async def resolve(call_id: str) -> ToolCall:
            raise AssertionError("should not resolve")

        with patch("litellm.acompletion", new_callable=AsyncMock) as mock_acompletion:
            mock_acompletion.return_value = async_iter(self._tool_round(['{}']))

            collected = await _collect(transport, _request(resolve_tool=resolve))

        assert collected == [FinishChunk("tool_calls", Usage(10, 20, 30))]
        mock_acompletion.assert_called_once()
