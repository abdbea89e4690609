"""Tools the model may call, and the fixed table they are resolved from."""

from chatloop.tools.base import Tool, normalize_schema
from chatloop.tools.read_file import DEFAULT_MAX_BYTES, ReadFileTool
from chatloop.tools.registry import ToolRegistry
from chatloop.tools.validation import ToolValidator


def default_registry(read_file_max_bytes: int = DEFAULT_MAX_BYTES) -> ToolRegistry:
    """The built-in tool table: ``read_file`` only."""
    return ToolRegistry([ReadFileTool(max_bytes=read_file_max_bytes)])


__all__ = [
    "ReadFileTool",
    "Tool",
    "ToolRegistry",
    "ToolValidator",
    "default_registry",
    "normalize_schema",
]
