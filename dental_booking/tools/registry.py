"""Tool name -> (argument model, handler).

The registry is the tagged union of tool argument shapes: the tool name
picks the pydantic model that validates the arguments before the handler
ever sees them.
"""

from __future__ import annotations

from collections.abc import Callable

from dental_booking.tools.base import Handler, ToolArgs, ToolSpec

TOOLS: dict[str, ToolSpec] = {}


def register_tool(name: str, args_model: type[ToolArgs]) -> Callable[[Handler], Handler]:
    def decorator(handler: Handler) -> Handler:
        if name in TOOLS:
            raise ValueError(f"Tool {name!r} registered twice")
        TOOLS[name] = ToolSpec(name=name, args_model=args_model, handler=handler)
        return handler

    return decorator


def get_tool(name: str) -> ToolSpec | None:
    return TOOLS.get(name)
