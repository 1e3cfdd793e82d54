"""Chunk types, accumulation and model transports."""

from chatstream.streaming.accumulator import MessagePartAccumulator
from chatstream.streaming.chunks import (
    Chunk,
    ChunkEvent,
    ContinuationChunk,
    ErrorChunk,
    FinishChunk,
    ReasoningChunk,
    TextChunk,
    ToolCallChunk,
    ToolResultChunk,
    parse_chunk_event,
)
from chatstream.streaming.litellm_transport import LiteLLMTransport
from chatstream.streaming.transport import GenerationRequest, Transport

__all__ = [
    "Chunk",
    "ChunkEvent",
    "ContinuationChunk",
    "ErrorChunk",
    "FinishChunk",
    "GenerationRequest",
    "LiteLLMTransport",
    "MessagePartAccumulator",
    "ReasoningChunk",
    "TextChunk",
    "ToolCallChunk",
    "ToolResultChunk",
    "Transport",
    "parse_chunk_event",
]
