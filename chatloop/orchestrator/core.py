"""
Orchestrator core -- the bounded tool-calling loop for one user turn.

The orchestrator:
1. Appends the user message to the transcript
2. Streams a model response (a "pass"), merging tool-call fragments
3. Finishes if the pass produced no tool calls (final answer)
4. Otherwise records the tool-call request, runs each call in order and
   appends the results
5. Starts the next pass, up to ``max_tool_passes`` times

States::

    IDLE -> STREAMING -> DONE
                      -> EXECUTING_TOOLS -> STREAMING ...
                                         -> ABORTED (pass bound reached)

Cancellation and transport errors also end in ABORTED.  In every case the
transcript is left with no unanswered tool calls.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from enum import Enum
from typing import AsyncIterator

from chatloop.llm.providers.base import CompletionError, Provider
from chatloop.llm.tool_call_accumulator import ToolCallAccumulator
from chatloop.llm.types import (
    AssistantMessage,
    DeltaEvent,
    ToolCall,
    ToolResultMessage,
    UserMessage,
)
from chatloop.orchestrator.events import (
    TurnEvent,
    notice_event,
    text_delta_event,
    tool_calls_event,
    tool_result_event,
    turn_complete_event,
)
from chatloop.session.transcript import Transcript
from chatloop.tools.registry import ToolRegistry
from chatloop.tools.validation import ToolValidator
from chatloop.types import ErrorCode, ToolResult

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOOL_PASSES = 4
DEPTH_LIMIT_NOTICE = "Reached tool-call depth limit; aborting this turn."
INTERRUPTED_NOTICE = "Interrupted."
CANCELLED_RESULT = "Tool call cancelled by user"


class TurnState(Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"
    ABORTED = "aborted"


class TurnCancelled(Exception):
    """Raised internally when the cancel event fires mid-turn."""


class Orchestrator:
    """
    Drives one conversation against a single provider.

    Parameters
    ----------
    provider : Provider
        The chat-completion endpoint.
    registry : ToolRegistry
        The fixed table of callable tools.
    transcript : Transcript
        Conversation history; created empty if omitted.  The orchestrator is
        its only writer while a turn is running.
    system_prompt : str
        Sent ahead of the transcript on every request, never stored in it.
    max_tool_passes : int
        Tool-call passes allowed per user turn before giving up.
    tool_timeout : float
        Max seconds for a single tool execution.
    stream : bool
        Request streamed (``True``) or whole (``False``) responses.
    """

    def __init__(
        self,
        provider: Provider,
        registry: ToolRegistry,
        transcript: Transcript | None = None,
        *,
        system_prompt: str = "",
        max_tool_passes: int = DEFAULT_MAX_TOOL_PASSES,
        tool_timeout: float = 30.0,
        stream: bool = True,
    ) -> None:
        if max_tool_passes < 1:
            raise ValueError("max_tool_passes must be at least 1")
        self.provider = provider
        self.registry = registry
        self.transcript = transcript if transcript is not None else Transcript()
        self.system_prompt = system_prompt
        self.max_tool_passes = max_tool_passes
        self.tool_timeout = tool_timeout
        self.stream = stream
        self.state = TurnState.IDLE
        self.passes = 0

    async def run(
        self, user_input: str, cancel: asyncio.Event | None = None
    ) -> AsyncIterator[TurnEvent]:
        """
        Process a user message through the full tool-calling loop.

        Yields ``TurnEvent`` objects for UI rendering; the last one is always
        ``turn_complete`` unless a ``CompletionError`` propagates.  Setting
        *cancel* stops the turn at the next suspension point.
        """
        self.passes = 0
        self.transcript.append(UserMessage(content=user_input))
        tools_schema = self.registry.to_openai_schema() or None

        try:
            for _ in range(self.max_tool_passes):
                self.passes += 1
                self.state = TurnState.STREAMING

                accumulator = ToolCallAccumulator()
                text_parts: list[str] = []

                deltas = self.provider.chat(
                    self.transcript.for_request(self.system_prompt),
                    tools=tools_schema,
                    stream=self.stream,
                )
                async with contextlib.aclosing(self._iterate(deltas, cancel)) as stream:
                    async for delta in stream:
                        if delta.text:
                            text_parts.append(delta.text)
                            yield text_delta_event(self.passes, delta.text)
                        if delta.tool_fragments:
                            accumulator.feed_all(delta.tool_fragments)

                text = "".join(text_parts)
                tool_calls = accumulator.finalize()
                for error in accumulator.errors:
                    yield notice_event(
                        self.passes,
                        f"Malformed tool-call arguments, using defaults: {error}",
                        level="warning",
                    )

                # No tool calls -> final response
                if not tool_calls:
                    final_text = text.rstrip()
                    if final_text:
                        self.transcript.append(AssistantMessage(content=final_text))
                    self.state = TurnState.DONE
                    yield turn_complete_event(
                        self.passes, self.state.value, final_text or None
                    )
                    return

                self.transcript.append(
                    AssistantMessage(content=text, tool_calls=tool_calls)
                )
                self.state = TurnState.EXECUTING_TOOLS
                try:
                    yield tool_calls_event(self.passes, tool_calls)

                    async with contextlib.aclosing(
                        self._execute_tool_calls(tool_calls, cancel)
                    ) as results:
                        async for event in results:
                            yield event
                finally:
                    # Every call in the transcript must have a result before
                    # the next request, however the turn ended.
                    self._cancel_unanswered(tool_calls)

        except TurnCancelled:
            self.state = TurnState.ABORTED
            logger.info("Turn cancelled during pass %d", self.passes)
            yield notice_event(self.passes, INTERRUPTED_NOTICE, level="warning")
            yield turn_complete_event(self.passes, self.state.value)
            return
        except (Exception, asyncio.CancelledError, GeneratorExit):
            if self.state is not TurnState.DONE:
                self.state = TurnState.ABORTED
            raise

        # Pass bound reached
        self.state = TurnState.ABORTED
        logger.warning(
            "Tool-call pass limit (%d) reached without a final answer",
            self.max_tool_passes,
        )
        yield notice_event(self.passes, DEPTH_LIMIT_NOTICE, level="error")
        yield turn_complete_event(self.passes, self.state.value)

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def _iterate(
        self,
        deltas: AsyncIterator[DeltaEvent],
        cancel: asyncio.Event | None,
    ) -> AsyncIterator[DeltaEvent]:
        """
        Relay *deltas*, abandoning the stream as soon as *cancel* is set.

        Each read is raced against the cancel event so an interrupt does not
        have to wait for the next chunk from the network.
        """
        if cancel is None:
            cancel = asyncio.Event()

        waiter = asyncio.ensure_future(cancel.wait())
        step = None
        try:
            while True:
                if cancel.is_set():
                    raise TurnCancelled()
                step = asyncio.ensure_future(_anext(deltas))
                done, _ = await asyncio.wait(
                    {step, waiter}, return_when=asyncio.FIRST_COMPLETED
                )
                if step not in done:
                    await _abandon(step)
                    raise TurnCancelled()
                try:
                    delta = step.result()
                except StopAsyncIteration:
                    return
                yield delta
        finally:
            waiter.cancel()
            if step is not None and not step.done():
                await _abandon(step)
            aclose = getattr(deltas, "aclose", None)
            if aclose is not None:
                await aclose()

    # ------------------------------------------------------------------
    # Tool execution
    # ------------------------------------------------------------------

    async def _execute_tool_calls(
        self,
        tool_calls: list[ToolCall],
        cancel: asyncio.Event | None,
    ) -> AsyncIterator[TurnEvent]:
        """Run calls sequentially in slot order, appending each result."""
        for tc in tool_calls:
            if cancel is not None and cancel.is_set():
                raise TurnCancelled()

            result = await self._execute_tool_call(tc)
            self.transcript.append(
                ToolResultMessage(
                    content=result.content,
                    tool_call_id=tc.id,
                    name=tc.name or "unknown",
                )
            )
            yield tool_result_event(self.passes, tc, result)

    def _cancel_unanswered(self, tool_calls: list[ToolCall]) -> None:
        """Give every call still waiting for a result a cancellation result."""
        names = {tc.id: tc.name for tc in tool_calls}
        cancelled = ToolResult.failure(CANCELLED_RESULT, ErrorCode.CANCELLED)
        for call_id in self.transcript.pending_tool_call_ids():
            logger.info("Marking tool call %s as cancelled", call_id)
            self.transcript.append(
                ToolResultMessage(
                    content=cancelled.content,
                    tool_call_id=call_id,
                    name=names.get(call_id) or "unknown",
                )
            )

    async def _execute_tool_call(self, tool_call: ToolCall) -> ToolResult:
        """
        Execute a single tool call.

        Steps:
        1. Registry lookup
        2. Validate args against the tool's schema
        3. Execute with timeout

        Every failure becomes an unsuccessful ``ToolResult``; nothing raises.
        """
        # 1. Registry lookup
        tool = self.registry.get(tool_call.name)
        if tool is None:
            logger.warning("Unknown tool requested: %r", tool_call.name)
            return ToolResult.failure(
                f"Tool {tool_call.name} is not implemented.",
                ErrorCode.UNKNOWN_TOOL,
                error=f"Unknown tool: {tool_call.name}",
            )

        # 2. Validate args
        valid, error_msg = ToolValidator.validate(tool, tool_call.arguments)
        if not valid:
            content = f"Validation error: {error_msg}"
            code = ErrorCode.VALIDATION_ERROR
            if tool_call.parse_error:
                content += " (the arguments were not valid JSON)"
                code = ErrorCode.INVALID_ARGUMENTS
            return ToolResult.failure(content, code, error=error_msg)

        # 3. Execute with timeout
        logger.info("Calling %s with %s", tool_call.name, tool_call.arguments)
        try:
            result = await asyncio.wait_for(
                tool.execute(**tool_call.arguments),
                timeout=self.tool_timeout,
            )
        except asyncio.TimeoutError:
            return ToolResult.failure(
                f"Tool timed out after {self.tool_timeout}s", ErrorCode.TIMEOUT
            )
        except Exception as e:
            logger.exception("Tool %s raised", tool_call.name)
            return ToolResult.failure(
                f"Error calling {tool_call.name}: {e}",
                ErrorCode.TOOL_EXCEPTION,
                error=str(e),
            )

        if not result.success:
            logger.warning("Tool %s failed: %s", tool_call.name, result.error)
        return result


async def _anext(iterator: AsyncIterator[DeltaEvent]) -> DeltaEvent:
    return await iterator.__anext__()


async def _abandon(step: asyncio.Future) -> None:
    step.cancel()
    with contextlib.suppress(
        asyncio.CancelledError, StopAsyncIteration, CompletionError
    ):
        await step
