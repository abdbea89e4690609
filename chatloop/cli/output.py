"""Output formatting utilities for the CLI."""

from __future__ import annotations

import json
import os

from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

from chatloop.llm.types import (
    AssistantMessage,
    Message,
    ToolCall,
    ToolResultMessage,
    UserMessage,
    format_arguments,
)
from chatloop.tools.base import Tool
from chatloop.types import ToolResult

NOTICE_COLORS = {
    "info": "dim",
    "warning": "yellow",
    "error": "red",
}

ROLE_LABELS = {
    "user": "[green]You[/green]",
    "assistant": "[blue]chatloop[/blue]",
    "function": "[cyan]tool[/cyan]",
    "system": "[dim]system[/dim]",
}

HELP_TEXT = (
    "  [bold]Commands:[/bold]\n"
    "  /help     - Show this help\n"
    "  /clear    - Clear the screen and reset the conversation\n"
    "  /history  - Show the conversation so far\n"
    "  /tools    - List available tools\n"
    "  /exit     - Exit (also /quit or plain 'exit')\n"
)


def preview_lines(text: str, max_lines: int = 2) -> str:
    """First *max_lines* lines of *text*, with `` ...`` marking a cut."""
    if not text:
        return ""
    lines = text.replace("\r\n", "\n").split("\n")
    if len(lines) <= max_lines:
        return "\n".join(lines).rstrip()
    head = lines[:max_lines]
    head[-1] = f"{head[-1]} ..."
    return "\n".join(head).rstrip()


def tool_preview(tool_call: ToolCall, result: ToolResult, max_lines: int = 2) -> str:
    """One short, human-readable summary of a tool result."""
    snippet = preview_lines(result.content, max_lines)
    name = tool_call.name or "unknown"

    if name == "read_file":
        if not result.success:
            return f"read_file error -> {snippet}".rstrip()
        raw_path = tool_call.arguments.get("path")
        display = os.path.basename(raw_path) if isinstance(raw_path, str) else "(unknown file)"
        parts = [f"reading contents of file -> {display}"]
        if snippet:
            parts.append(snippet)
        return "\n".join(parts)

    if not result.success:
        return f"{name} error -> {snippet}" if snippet else f"{name} error"
    return f"{name} -> {snippet}" if snippet else f"ran {name}"


class OutputFormatter:
    """Rich-based output formatting for the chatloop CLI."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def format_tool_list(self, tools: list[Tool]) -> None:
        table = Table(title="Available Tools", show_lines=True)
        table.add_column("Name", style="cyan", no_wrap=True)
        table.add_column("Parameters", no_wrap=True)
        table.add_column("Description")

        for t in tools:
            params = ", ".join(t.parameter_names) or "-"
            table.add_row(t.name, params, t.description)

        self.console.print(table)

    def format_tool_calls(self, tool_calls: list[ToolCall]) -> None:
        for tc in tool_calls:
            self.console.print(
                f"  [yellow]running {tc.name}[/yellow] [dim]{format_arguments(tc)}[/dim]",
                highlight=False,
            )

    def format_tool_result(self, tool_call: ToolCall, result: ToolResult) -> None:
        color = "cyan" if result.success else "red"
        text = tool_preview(tool_call, result)
        for line in text.split("\n"):
            self.console.print(f"  [{color}]|[/{color}] ", end="")
            self.console.print(line, markup=False, highlight=False)

    def format_notice(self, text: str, level: str = "info") -> None:
        color = NOTICE_COLORS.get(level, "white")
        self.console.print(f"[{color}]{text}[/{color}]", highlight=False)

    def format_history(self, messages: list[Message]) -> None:
        shown = [
            m for m in messages
            if isinstance(m, (UserMessage, ToolResultMessage))
            or (isinstance(m, AssistantMessage) and (m.content or m.tool_calls))
        ]
        if not shown:
            self.console.print("[dim]  (No messages yet)[/dim]")
            return

        self.console.print("[bold]Chat history:[/bold]")
        for i, msg in enumerate(shown, 1):
            label = ROLE_LABELS.get(msg.role, msg.role)
            if isinstance(msg, AssistantMessage) and msg.tool_calls:
                names = ", ".join(tc.name for tc in msg.tool_calls)
                body = f"{msg.content} [requested: {names}]".strip()
            elif isinstance(msg, ToolResultMessage):
                body = f"{msg.name}: {preview_lines(msg.content, 1)}"
            else:
                body = msg.content
            self.console.print(f"{i}. {label}: ", end="")
            self.console.print(body, markup=False, highlight=False)

    def format_help(self) -> None:
        self.console.print(HELP_TEXT)

    def format_config(self, config: dict) -> None:
        config_json = json.dumps(config, indent=2, default=str)
        self.console.print(Syntax(config_json, "json", theme="monokai"))
