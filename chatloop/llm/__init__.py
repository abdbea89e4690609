"""LLM subsystem -- message types, stream decoding and tool-call assembly."""

from chatloop.llm.types import (
    AssistantMessage,
    DeltaEvent,
    Message,
    SystemMessage,
    ToolCall,
    ToolCallFragment,
    ToolResultMessage,
    UserMessage,
)
from chatloop.llm.stream_decoder import StreamDecoder
from chatloop.llm.tool_call_accumulator import ToolCallAccumulator

__all__ = [
    "AssistantMessage",
    "DeltaEvent",
    "Message",
    "StreamDecoder",
    "SystemMessage",
    "ToolCall",
    "ToolCallAccumulator",
    "ToolCallFragment",
    "ToolResultMessage",
    "UserMessage",
]
