"""
Turn event model.

The orchestrator reports progress as a stream of ``TurnEvent`` objects so
the UI can render text as it arrives and show tool activity.  Events are
informational only; the transcript is the source of truth.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from chatloop.llm.types import ToolCall
from chatloop.types import ToolResult


@dataclass
class TurnEvent:
    """
    A single progress event within a user turn.

    Attributes
    ----------
    event_type:
        One of ``text_delta``, ``tool_calls``, ``tool_result``, ``notice``,
        ``turn_complete``.
    payload:
        Event-specific data.
    pass_number:
        The streaming pass (1-based) the event belongs to.
    """

    event_type: str
    payload: dict[str, Any] = field(default_factory=dict)
    pass_number: int = 0


EVENT_TEXT_DELTA = "text_delta"
EVENT_TOOL_CALLS = "tool_calls"
EVENT_TOOL_RESULT = "tool_result"
EVENT_NOTICE = "notice"
EVENT_TURN_COMPLETE = "turn_complete"


# ---------------------------------------------------------------------------
# Factory helpers
# ---------------------------------------------------------------------------


def text_delta_event(pass_number: int, text: str) -> TurnEvent:
    return TurnEvent(EVENT_TEXT_DELTA, {"text": text}, pass_number)


def tool_calls_event(pass_number: int, tool_calls: list[ToolCall]) -> TurnEvent:
    return TurnEvent(EVENT_TOOL_CALLS, {"tool_calls": list(tool_calls)}, pass_number)


def tool_result_event(
    pass_number: int, tool_call: ToolCall, result: ToolResult
) -> TurnEvent:
    return TurnEvent(
        EVENT_TOOL_RESULT,
        {"tool_call": tool_call, "result": result},
        pass_number,
    )


def notice_event(pass_number: int, text: str, *, level: str = "info") -> TurnEvent:
    return TurnEvent(EVENT_NOTICE, {"text": text, "level": level}, pass_number)


def turn_complete_event(
    pass_number: int, state: str, content: str | None = None
) -> TurnEvent:
    return TurnEvent(
        EVENT_TURN_COMPLETE,
        {"state": state, "content": content},
        pass_number,
    )
