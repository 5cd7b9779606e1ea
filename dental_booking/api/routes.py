"""FastAPI route definitions: the voice-assistant tool webhook and health."""

from __future__ import annotations

import asyncio
import json
import logging

import pydantic
from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from dental_booking.api.schemas import (
    HealthResponse,
    ToolCallResult,
    WebhookPayload,
    WebhookResponse,
)
from dental_booking.config import DEFAULT_PRACTICE_ID
from dental_booking.errors import ConfigurationError, ValidationError
from dental_booking.orchestrator import Orchestrator

logger = logging.getLogger(__name__)

router = APIRouter()
webhook_router = APIRouter()


def _get_orchestrator(request: Request) -> Orchestrator:
    """Retrieve the orchestrator built during the FastAPI lifespan."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(
            status_code=503,
            detail="The booking service is still starting up. Please try again in a moment.",
        )
    return orchestrator


def _reply(results: list[ToolCallResult]) -> JSONResponse:
    """Always HTTP 200; failures travel in-band in each result's ``error``."""
    body = WebhookResponse(results=results).model_dump(by_alias=True, exclude_none=True)
    return JSONResponse(status_code=200, content=body)


def _error_reply(message: str, tool_call_id: str = "unknown") -> JSONResponse:
    return _reply([ToolCallResult(tool_call_id=tool_call_id, error=message)])


def _resolve_practice_id(orchestrator: Orchestrator, assistant_id: str | None) -> str:
    if assistant_id:
        practice_id = orchestrator.practice_store.find_practice_id_for_assistant(assistant_id)
        if practice_id:
            return practice_id
    if DEFAULT_PRACTICE_ID:
        return DEFAULT_PRACTICE_ID
    raise ConfigurationError(f"No practice configured for assistant {assistant_id!r}")


# ── Endpoints ────────────────────────────────────────────────────────


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse()


@webhook_router.post("/tool-webhook")
async def tool_webhook(http_request: Request):
    """Handle a ``tool-calls`` message from the voice platform.

    The body is parsed by hand rather than through a request model so a
    malformed payload still gets a parseable HTTP 200 reply instead of
    FastAPI's 422.

    Each tool call is a blocking chain of database and NexHealth calls,
    so it runs on the default thread pool via ``asyncio.to_thread``.
    """
    orchestrator = _get_orchestrator(http_request)
    request_id = getattr(http_request.state, "request_id", "?")

    try:
        payload = WebhookPayload.model_validate(json.loads(await http_request.body()))
    except (json.JSONDecodeError, UnicodeDecodeError, pydantic.ValidationError) as exc:
        logger.warning("[%s] Malformed webhook payload: %s", request_id, exc)
        return _error_reply(ValidationError.default_user_message)

    message = payload.message
    if message.type != "tool-calls":
        logger.debug("[%s] Ignoring %s message", request_id, message.type)
        return _reply([])
    if message.call is None:
        logger.warning("[%s] tool-calls message without a call id", request_id)
        return _reply([
            ToolCallResult(tool_call_id=tc.id, error=ValidationError.default_user_message)
            for tc in message.tool_call_list
        ] or [ToolCallResult(tool_call_id="unknown", error=ValidationError.default_user_message)])

    call_id = message.call.id
    try:
        practice_id = _resolve_practice_id(orchestrator, message.call.assistant_id)
    except ConfigurationError as exc:
        logger.error("[%s] Call %s: %s", request_id, call_id, exc)
        return _reply([
            ToolCallResult(tool_call_id=tc.id, error=exc.user_message)
            for tc in message.tool_call_list
        ])

    results: list[ToolCallResult] = []
    # Sequential: later calls in the list see the state earlier ones saved
    for tool_call in message.tool_call_list:
        logger.info("[%s] Call %s: tool %s", request_id, call_id, tool_call.function.name)
        reply = await asyncio.to_thread(
            orchestrator.handle_tool_call,
            call_id,
            practice_id,
            tool_call.id,
            tool_call.function.name,
            tool_call.function.arguments,
        )
        results.append(ToolCallResult(
            tool_call_id=reply.tool_call_id, result=reply.result, error=reply.error,
        ))
    return _reply(results)
