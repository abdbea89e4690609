"""Core types for the LLM subsystem.

Transcript messages are a closed set of role-specific dataclasses.  Each one
validates its own fields on construction and knows its wire shape, so a
malformed message never reaches the completion endpoint.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import ClassVar


# ---------------------------------------------------------------------------
# Tool calls
# ---------------------------------------------------------------------------


@dataclass
class ToolCall:
    """A complete tool call assembled from a finished stream."""

    id: str
    name: str
    arguments_text: str = "{}"
    arguments: dict = field(default_factory=dict)
    parse_error: str | None = None

    def to_wire(self) -> dict:
        # Arguments that never parsed are replaced so the service is not
        # handed back its own malformed JSON.
        arguments = self.arguments_text if self.parse_error is None else "{}"
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": arguments},
        }


@dataclass
class ToolCallFragment:
    """
    A partial tool call carried by one delta event.

    Fragments sharing an ``index`` belong to the same call and are merged by
    the ``ToolCallAccumulator``.
    """

    index: int
    id: str | None = None
    name: str | None = None
    arguments_delta: str = ""


@dataclass
class DeltaEvent:
    """One incremental piece of a streamed response."""

    text: str = ""
    tool_fragments: list[ToolCallFragment] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.text) or bool(self.tool_fragments)


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


@dataclass
class Message:
    """Base class for transcript entries.  Use one of the role subclasses."""

    role: ClassVar[str] = ""

    content: str

    def __post_init__(self) -> None:
        if type(self) is Message:
            raise TypeError("Message is abstract; use a role-specific subclass")
        if not isinstance(self.content, str):
            raise TypeError(
                f"{type(self).__name__}.content must be str, "
                f"got {type(self.content).__name__}"
            )

    def to_wire(self) -> dict:
        return {"role": self.role, "content": self.content}


@dataclass
class SystemMessage(Message):
    role: ClassVar[str] = "system"


@dataclass
class UserMessage(Message):
    role: ClassVar[str] = "user"


@dataclass
class AssistantMessage(Message):
    role: ClassVar[str] = "assistant"

    tool_calls: list[ToolCall] | None = None

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.tool_calls is not None and not self.tool_calls:
            raise ValueError("tool_calls must be None or a non-empty list")

    def to_wire(self) -> dict:
        wire = super().to_wire()
        if self.tool_calls:
            wire["tool_calls"] = [tc.to_wire() for tc in self.tool_calls]
        return wire


@dataclass
class ToolResultMessage(Message):
    role: ClassVar[str] = "function"

    tool_call_id: str = ""
    name: str = ""

    def __post_init__(self) -> None:
        super().__post_init__()
        if not self.tool_call_id:
            raise ValueError("tool result requires a tool_call_id")
        if not self.name:
            raise ValueError("tool result requires the tool name")

    def to_wire(self) -> dict:
        wire = super().to_wire()
        wire["tool_call_id"] = self.tool_call_id
        wire["name"] = self.name
        return wire


def format_arguments(tool_call: ToolCall) -> str:
    """Compact, human-readable rendering of a call's arguments."""
    return json.dumps(tool_call.arguments, ensure_ascii=False, sort_keys=True)
