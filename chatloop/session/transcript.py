"""
The conversation transcript.

An ordered, append-only list of messages, sent to the service exactly as
stored.  The transcript also guards the tool-call protocol: a tool result
may only be appended for a call that the latest assistant message requested
and that has not been answered yet.
"""

from __future__ import annotations

from typing import Iterator

from chatloop.llm.types import (
    AssistantMessage,
    Message,
    SystemMessage,
    ToolResultMessage,
)


class Transcript:
    """Messages of one conversation, in conversational order."""

    def __init__(self, messages: list[Message] | None = None) -> None:
        self._messages: list[Message] = []
        for msg in messages or []:
            self.append(msg)

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(list(self._messages))

    def __getitem__(self, index: int) -> Message:
        return self._messages[index]

    @property
    def messages(self) -> list[Message]:
        """A copy of the stored messages."""
        return list(self._messages)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def append(self, message: Message) -> None:
        if not isinstance(message, Message):
            raise TypeError(f"Expected a Message, got {type(message).__name__}")
        if isinstance(message, ToolResultMessage):
            pending = self.pending_tool_call_ids()
            if message.tool_call_id not in pending:
                raise ValueError(
                    f"Tool result for unknown or already answered call: "
                    f"{message.tool_call_id!r}"
                )
        self._messages.append(message)

    def clear(self) -> None:
        self._messages.clear()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def pending_tool_call_ids(self) -> list[str]:
        """
        Ids requested by the latest assistant tool-call message that have no
        result yet, in request order.
        """
        for pos in range(len(self._messages) - 1, -1, -1):
            msg = self._messages[pos]
            if isinstance(msg, AssistantMessage) and msg.tool_calls:
                pending = [tc.id for tc in msg.tool_calls]
                for answered in self._messages[pos + 1:]:
                    pending.remove(answered.tool_call_id)
                return pending
            if not isinstance(msg, ToolResultMessage):
                return []
        return []

    def for_request(self, system_prompt: str = "") -> list[Message]:
        """Messages to send, with the system prompt (if any) in front."""
        if system_prompt:
            return [SystemMessage(content=system_prompt), *self._messages]
        return list(self._messages)
