"""
Merges streamed tool-call fragments into complete ``ToolCall`` objects.

Merge rules, per slot index:
  - ``id`` and ``name`` are only ever replaced by non-empty values, so a
    later fragment without them never blanks out what an earlier one set.
  - ``arguments_delta`` is always appended.

Calls only become executable in ``finalize()``, after the stream has ended.
Arguments that do not parse as a JSON object are replaced by ``{}`` and the
failure is recorded in ``self.errors`` instead of raising, so a single bad
call cannot take the conversation down.
"""

from __future__ import annotations

import json
import logging
from typing import Iterable

from chatloop.llm.types import ToolCall, ToolCallFragment

logger = logging.getLogger(__name__)


class ToolCallAccumulator:
    """Buffers tool-call fragments for one streaming pass."""

    def __init__(self) -> None:
        self._buf: dict[int, dict] = {}
        self.errors: list[str] = []

    def __len__(self) -> int:
        return len(self._buf)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def feed(self, fragment: ToolCallFragment) -> None:
        """Merge a single fragment into its slot."""
        buf = self._buf.setdefault(
            fragment.index, {"id": "", "name": "", "args": ""}
        )

        if fragment.id:
            buf["id"] = fragment.id

        if fragment.name:
            buf["name"] = fragment.name

        buf["args"] += fragment.arguments_delta or ""

    def feed_all(self, fragments: Iterable[ToolCallFragment]) -> None:
        for fragment in fragments:
            self.feed(fragment)

    def names(self) -> list[str]:
        """Tool names seen so far, in slot order (for progress display)."""
        return [self._buf[i]["name"] for i in sorted(self._buf) if self._buf[i]["name"]]

    def finalize(self) -> list[ToolCall]:
        """Return every buffered call, in slot order."""
        return [self._finalize(idx) for idx in sorted(self._buf)]

    def reset(self) -> None:
        """Discard all accumulated state."""
        self._buf.clear()
        self.errors.clear()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _finalize(self, idx: int) -> ToolCall:
        buf = self._buf[idx]
        call_id = buf["id"] or f"call_{idx}"
        name = buf["name"].strip()
        raw_args = buf["args"]

        if not raw_args.strip():
            return ToolCall(id=call_id, name=name, arguments_text="{}", arguments={})

        error: str | None = None
        try:
            parsed = json.loads(raw_args)
        except (json.JSONDecodeError, ValueError) as exc:
            error = f"tool_call_json_parse_failed idx={idx} name={name} err={exc}"
        else:
            if isinstance(parsed, dict):
                return ToolCall(
                    id=call_id, name=name, arguments_text=raw_args, arguments=parsed
                )
            error = (
                f"tool_call_arguments_not_object idx={idx} name={name} "
                f"type={type(parsed).__name__}"
            )

        logger.warning("Tool-call arguments rejected: %s", error)
        self.errors.append(error)
        return ToolCall(
            id=call_id,
            name=name,
            arguments_text=raw_args,
            arguments={},
            parse_error=error,
        )
