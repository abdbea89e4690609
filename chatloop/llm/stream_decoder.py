"""
Decodes a chat-completion byte stream into ``DeltaEvent`` objects.

The wire format is newline-delimited server-sent events::

    data: {"choices": [{"delta": {"content": "Hel"}}]}
    data: {"choices": [{"delta": {"content": "lo"}}]}
    data: [DONE]

Decoding is best-effort: lines that are not ``data:`` frames are ignored,
frames that are not valid JSON are skipped, and a stream that closes without
the ``[DONE]`` sentinel simply ends.
"""

from __future__ import annotations

import codecs
import json
import logging
from typing import AsyncIterable, AsyncIterator

from chatloop.llm.types import DeltaEvent, ToolCallFragment

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


class StreamDecoder:
    """
    Incremental decoder for one streamed response.

    ``feed`` may be called with arbitrarily split chunks; the events produced
    depend only on the concatenated bytes, never on where the chunks were
    split.  Once the sentinel is seen ``finished`` is ``True`` and further
    input is ignored.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.finished = False

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def feed(self, data: bytes) -> list[DeltaEvent]:
        """Consume a chunk of bytes and return the events it completes."""
        if self.finished:
            return []

        self._buffer += self._decoder.decode(data)
        events: list[DeltaEvent] = []

        while "\n" in self._buffer:
            line, self._buffer = self._buffer.split("\n", 1)
            event = self._decode_line(line.rstrip("\r"))
            if self.finished:
                self._buffer = ""
                break
            if event:
                events.append(event)

        return events

    async def decode(self, chunks: AsyncIterable[bytes]) -> AsyncIterator[DeltaEvent]:
        """Yield events from an async byte iterator until the stream ends."""
        async for chunk in chunks:
            for event in self.feed(chunk):
                yield event
            if self.finished:
                return
        if self._buffer:
            logger.debug("Discarding partial line at end of stream: %r", self._buffer[:200])
            self._buffer = ""

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _decode_line(self, line: str) -> DeltaEvent | None:
        if not line.startswith(DATA_PREFIX):
            return None

        payload = line[len(DATA_PREFIX):]
        if payload.startswith(" "):
            payload = payload[1:]

        if payload == DONE_SENTINEL:
            self.finished = True
            return None

        try:
            data = json.loads(payload)
        except json.JSONDecodeError:
            logger.debug("Skipping malformed stream frame: %s", payload[:200])
            return None

        return delta_from_payload(data)


def delta_from_payload(data: object) -> DeltaEvent | None:
    """Convert one parsed ``data:`` payload into a ``DeltaEvent``."""
    if not isinstance(data, dict):
        return None
    choices = data.get("choices")
    if not choices or not isinstance(choices, list) or not isinstance(choices[0], dict):
        return None

    delta = choices[0].get("delta") or {}
    if not isinstance(delta, dict):
        return None

    text = _str_field(delta, "content")

    fragments = fragments_from_wire(delta.get("tool_calls"))
    event = DeltaEvent(text=text, tool_fragments=fragments)
    return event if event else None


def fragments_from_wire(raw_calls: object) -> list[ToolCallFragment]:
    """
    Build fragments from a wire ``tool_calls`` list.

    The slot index is the wire ``index`` field when the service sends one and
    the entry's position in the list otherwise.
    """
    if not isinstance(raw_calls, list):
        return []

    fragments: list[ToolCallFragment] = []
    for position, raw in enumerate(raw_calls):
        if not isinstance(raw, dict):
            continue
        index = raw.get("index")
        if not isinstance(index, int):
            index = position
        func = raw.get("function") or {}
        if not isinstance(func, dict):
            logger.debug("Skipping tool-call fragment with non-object function: %r", func)
            continue
        fragments.append(
            ToolCallFragment(
                index=index,
                id=_str_field(raw, "id") or None,
                name=_str_field(func, "name") or None,
                arguments_delta=_str_field(func, "arguments"),
            )
        )
    return fragments


def _str_field(data: dict, key: str) -> str:
    # Non-string values in an otherwise valid frame are treated as absent.
    value = data.get(key)
    return value if isinstance(value, str) else ""
