"""Claude Code CLI orchestration utilities."""

from .runner import (
    TOOL_RESULT_NAME,
    AgentNotFoundError,
    AgentPermissions,
    AgentResult,
    ClaudeRunner,
    StreamAccumulator,
    StreamCallbacks,
)
from .stream import LineBuffer, decode_line, parse_event

__all__ = [
    "AgentNotFoundError",
    "AgentPermissions",
    "AgentResult",
    "ClaudeRunner",
    "LineBuffer",
    "StreamAccumulator",
    "StreamCallbacks",
    "TOOL_RESULT_NAME",
    "decode_line",
    "parse_event",
]
