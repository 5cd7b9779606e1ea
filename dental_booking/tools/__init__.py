"""Voice-assistant tool handlers.

Importing this package registers every tool in :data:`TOOLS`.
"""

from dental_booking.tools import availability, booking, insurance, patients  # noqa: F401
from dental_booking.tools.base import (
    NextTool,
    ToolArgs,
    ToolContext,
    ToolOutcome,
    ToolServices,
)
from dental_booking.tools.registry import TOOLS, get_tool

__all__ = [
    "TOOLS",
    "NextTool",
    "ToolArgs",
    "ToolContext",
    "ToolOutcome",
    "ToolServices",
    "get_tool",
]
