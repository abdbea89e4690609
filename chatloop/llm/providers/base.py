"""Abstract base class for the chat-completion endpoint."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import AsyncIterator

from chatloop.llm.types import DeltaEvent, Message


class CompletionError(Exception):
    """
    A completion request failed before or while streaming.

    Covers transport failures, non-success HTTP statuses and a missing
    access token.  Fatal for the current turn; never retried automatically.
    """

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class Provider(ABC):
    """
    Access to a single chat-completion endpoint.

    Implementations must yield only non-empty ``DeltaEvent`` objects, in
    arrival order, and raise ``CompletionError`` for transport problems.
    """

    @abstractmethod
    async def chat(
        self,
        messages: list[Message],
        tools: list[dict] | None = None,
        stream: bool = True,
    ) -> AsyncIterator[DeltaEvent]:
        """
        Start a chat completion and yield its delta events.

        With ``stream=False`` the whole response arrives as a single event.
        """
        ...
        # Make the method an async generator so sub-classes can ``yield``.
        if False:  # pragma: no cover
            yield DeltaEvent()  # type: ignore[misc]

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable endpoint name (e.g. ``"copilot"``)."""
        ...
