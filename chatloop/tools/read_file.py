"""The ``read_file`` tool: return a text file's contents to the model."""

from __future__ import annotations

import asyncio
import os
from pathlib import Path

from chatloop.tools.base import Tool
from chatloop.types import ErrorCode, ToolResult

# Cap output so one huge file cannot swamp the request.
DEFAULT_MAX_BYTES = 256 * 1024


class ReadFileTool(Tool):
    def __init__(self, max_bytes: int = DEFAULT_MAX_BYTES) -> None:
        self.max_bytes = max_bytes

    @property
    def name(self) -> str:
        return "read_file"

    @property
    def description(self) -> str:
        return "Read the contents of a file"

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": "The absolute path to the file to read",
                },
            },
            "required": ["path"],
        }

    async def execute(self, **kwargs) -> ToolResult:
        path = Path(kwargs["path"]).expanduser()
        try:
            data, size = await asyncio.to_thread(self._read, path)
        except OSError as e:
            return ToolResult.failure(
                f"Error reading file: {e}", ErrorCode.IO_ERROR, error=str(e)
            )

        truncated = size > len(data)
        text = data.decode("utf-8", errors="replace")
        if truncated:
            text += f"\n[truncated: showing {len(data)} of {size} bytes]"
        return ToolResult(
            success=True,
            content=text,
            metadata={"path": str(path), "size_bytes": size, "truncated": truncated},
        )

    def _read(self, path: Path) -> tuple[bytes, int]:
        with path.open("rb") as f:
            size = os.fstat(f.fileno()).st_size
            return f.read(self.max_bytes), size
