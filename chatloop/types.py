"""Result types shared by the tools and the orchestrator."""

from dataclasses import dataclass, field


@dataclass
class ToolResult:
    """
    Outcome of one tool call.

    ``content`` is what goes back to the model as the function message, so
    failures carry readable text there too. ``error`` and ``error_code`` are
    for logs and rendering only.
    """

    success: bool
    content: str
    error: str | None = None
    error_code: str | None = None
    metadata: dict = field(default_factory=dict)

    @classmethod
    def failure(cls, content: str, error_code: str, error: str | None = None) -> "ToolResult":
        return cls(
            success=False,
            content=content,
            error=error if error is not None else content,
            error_code=error_code,
        )


class ErrorCode:
    """Values for ``ToolResult.error_code``."""

    VALIDATION_ERROR = "validation_error"
    INVALID_ARGUMENTS = "invalid_arguments"
    UNKNOWN_TOOL = "unknown_tool"
    TIMEOUT = "timeout"
    TOOL_EXCEPTION = "tool_exception"
    IO_ERROR = "io_error"
    CANCELLED = "cancelled"
