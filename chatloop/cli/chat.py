"""Interactive chat session handler."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal

from rich.console import Console

from chatloop.cli.output import OutputFormatter
from chatloop.llm.providers.base import CompletionError
from chatloop.orchestrator.core import Orchestrator, TurnState
from chatloop.orchestrator.events import (
    EVENT_NOTICE,
    EVENT_TEXT_DELTA,
    EVENT_TOOL_CALLS,
    EVENT_TOOL_RESULT,
    EVENT_TURN_COMPLETE,
)

logger = logging.getLogger(__name__)

EXIT_WORDS = ("/exit", "/quit")


class ChatHandler:
    """
    Manages the interactive chat loop.

    Handles streaming output, inline commands and Ctrl-C interruption of a
    running turn.
    """

    def __init__(
        self,
        orchestrator: Orchestrator,
        console: Console | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.console = console or Console()
        self.formatter = OutputFormatter(self.console)
        self._running = True

    async def handle_command(self, command: str) -> bool:
        """
        Handle inline commands. Returns True if the command was handled.
        """
        cmd = command.strip().split(None, 1)[0].lower()

        if cmd in EXIT_WORDS:
            self._running = False
            self.console.print("[dim]Goodbye.[/dim]")
            return True

        if cmd == "/clear":
            self.orchestrator.transcript.clear()
            self.console.clear()
            self.console.print("[dim]Screen cleared, conversation reset.[/dim]")
            return True

        if cmd == "/history":
            self.formatter.format_history(self.orchestrator.transcript.messages)
            return True

        if cmd == "/tools":
            self.formatter.format_tool_list(self.orchestrator.registry.list())
            return True

        if cmd == "/help":
            self.formatter.format_help()
            return True

        self.console.print(
            f"[red]Unknown command:[/red] {command}. Type /help for available commands."
        )
        return True

    async def handle_input(self, user_input: str) -> bool:
        """
        Run one turn through the orchestrator and render its events.

        Returns False when the turn failed with a ``CompletionError``.
        """
        cancel = asyncio.Event()
        loop = asyncio.get_running_loop()
        handler_installed = False
        try:
            loop.add_signal_handler(signal.SIGINT, cancel.set)
            handler_installed = True
        except (NotImplementedError, RuntimeError):
            # Not available on this platform; Ctrl-C falls back to KeyboardInterrupt.
            pass

        mid_line = False
        try:
            async with contextlib.aclosing(
                self.orchestrator.run(user_input, cancel)
            ) as events:
                async for event in events:
                    payload = event.payload
                    if event.event_type == EVENT_TEXT_DELTA:
                        self.console.print(payload["text"], end="", markup=False, highlight=False)
                        mid_line = True
                        continue

                    if mid_line:
                        self.console.print()
                        mid_line = False

                    if event.event_type == EVENT_TOOL_CALLS:
                        self.formatter.format_tool_calls(payload["tool_calls"])
                    elif event.event_type == EVENT_TOOL_RESULT:
                        self.formatter.format_tool_result(payload["tool_call"], payload["result"])
                    elif event.event_type == EVENT_NOTICE:
                        self.formatter.format_notice(payload["text"], payload.get("level", "info"))
                    elif event.event_type == EVENT_TURN_COMPLETE:
                        if payload["state"] == TurnState.DONE.value and not payload["content"]:
                            self.formatter.format_notice("(no response)")
        except CompletionError as e:
            logger.warning("Turn failed: %s", e)
            if mid_line:
                self.console.print()
            self.console.print(f"[red]Error:[/red] {e}", highlight=False)
            return False
        finally:
            if handler_installed:
                loop.remove_signal_handler(signal.SIGINT)

        if mid_line:
            self.console.print()
        return True

    async def run_loop(self) -> None:
        """Main interactive loop."""
        self.console.print(
            "[bold]chatloop[/bold] - GitHub Copilot chat\n"
            "[dim]Type /help for commands, /exit to quit.[/dim]\n"
        )

        loop = asyncio.get_running_loop()
        while self._running:
            try:
                user_input = await loop.run_in_executor(
                    None, lambda: input("you> ").strip()
                )
            except (EOFError, KeyboardInterrupt):
                self.console.print("\n[dim]Goodbye.[/dim]")
                break

            if not user_input:
                continue

            if user_input.lower() == "exit":
                self.console.print("[dim]Goodbye.[/dim]")
                break

            if user_input.startswith("/"):
                await self.handle_command(user_input)
                continue

            self.console.print("[blue]chatloop>[/blue] ", end="")
            try:
                await self.handle_input(user_input)
            except Exception as e:
                logger.exception("Unexpected error while handling input")
                self.console.print(f"\n[red]Unexpected error:[/red] {e}", highlight=False)
