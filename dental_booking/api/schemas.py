"""Pydantic schemas for the FastAPI endpoints.

The webhook payload comes from the voice platform, so every model ignores
fields it does not know about.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _WebhookModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class ToolFunction(_WebhookModel):
    name: str
    # A JSON string or an object, depending on the platform version
    arguments: Any = None


class ToolCall(_WebhookModel):
    id: str
    function: ToolFunction


class CallInfo(_WebhookModel):
    id: str = Field(..., min_length=1)
    assistant_id: str | None = None


class WebhookMessage(_WebhookModel):
    type: str
    call: CallInfo | None = None
    tool_call_list: list[ToolCall] = Field(default_factory=list)


class WebhookPayload(_WebhookModel):
    """Body of ``POST /tool-webhook``."""

    message: WebhookMessage


class ToolCallResult(_WebhookModel):
    """One reply per tool call; exactly one of ``result``/``error`` is set."""

    tool_call_id: str
    result: str | None = None
    error: str | None = None


class WebhookResponse(_WebhookModel):
    results: list[ToolCallResult] = Field(default_factory=list)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    service: str = "dental-booking"
