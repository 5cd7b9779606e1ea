"""Turn orchestration for voice-assistant tool calls.

Architecture:
  Each webhook tool call is one *turn*.  The turn loads the persisted
  ``ConversationState`` for the call, runs the named tool, applies the
  handler's delta through the transition table, and saves the result.

  The turn is a small LangGraph ``StateGraph``:

    dispatch → (next tool pending and depth left?) → dispatch (loop)
             → otherwise                           → persist → END

  ``dispatch`` validates the arguments, runs the handler, applies its
  delta and writes the tool log.  A handler may ask for a follow-up tool
  (e.g. an urgent appointment type immediately triggers a slot search);
  the follow-up runs in the same turn, and its message is appended.

  Argument normalization and the unknown-tool check happen before the
  graph runs; neither persists anything.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any

import pydantic
from langgraph.graph import END, StateGraph
from sqlalchemy.orm import Session, sessionmaker
from typing_extensions import TypedDict

from dental_booking.config import (
    DATABASE_URL,
    DEFAULT_TIMEZONE,
    MAX_TOOL_CHAIN_DEPTH,
    SLOT_HOLD_MINUTES,
)
from dental_booking.errors import BookingError, UpstreamError, ValidationError
from dental_booking.models import ConversationState
from dental_booking.scheduling.booking import BookingCommitter
from dental_booking.scheduling.slot_search import SlotSearchEngine
from dental_booking.services.database import build_engine, build_session_factory, create_schema
from dental_booking.services.llm import ChoiceClassifier
from dental_booking.services.metrics import metrics
from dental_booking.services.nexhealth_client import get_nexhealth_client
from dental_booking.services.notifications import EmailNotifier
from dental_booking.services.practice_store import PracticeContext, PracticeStore
from dental_booking.services.state_store import BookingRecordWriter, ConversationStore, ToolLogWriter
from dental_booking.state_machine import advance
from dental_booking.tools import (
    TOOLS,
    NextTool,
    ToolContext,
    ToolOutcome,
    ToolServices,
    get_tool,
)

logger = logging.getLogger(__name__)


@dataclass
class ToolCallReply:
    """One entry of the webhook ``results`` array."""

    tool_call_id: str
    result: str | None = None
    error: str | None = None


def normalize_arguments(raw: Any) -> dict[str, Any]:
    """Accept tool arguments as a JSON string, a mapping, or nothing."""
    if raw is None or raw == "":
        return {}
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ValidationError(f"Tool arguments are not valid JSON: {exc}") from exc
        if isinstance(parsed, dict):
            return parsed
    raise ValidationError(f"Tool arguments must be an object, got {type(raw).__name__}")


# ── State schema ─────────────────────────────────────────────────────


class TurnState(TypedDict, total=False):
    """What flows through the graph during one webhook tool call."""

    tool_call_id: str
    conversation: ConversationState
    practice: PracticeContext
    pending: NextTool | None
    depth: int
    messages: list[str]
    primary_success: bool


# ── Orchestrator ─────────────────────────────────────────────────────


class Orchestrator:
    def __init__(
        self,
        services: ToolServices,
        conversations: ConversationStore,
        tool_log: ToolLogWriter,
        *,
        max_chain_depth: int = MAX_TOOL_CHAIN_DEPTH,
    ):
        self._services = services
        self._conversations = conversations
        self._tool_log = tool_log
        self._max_chain_depth = max(1, max_chain_depth)
        self._graph = self._build_graph()

    @property
    def practice_store(self) -> PracticeStore:
        return self._services.practice_store

    # ── Public entry point ───────────────────────────────────────────

    def handle_tool_call(
        self,
        call_id: str,
        practice_id: str,
        tool_call_id: str,
        tool_name: str,
        raw_arguments: Any,
    ) -> ToolCallReply:
        """Run one tool call to completion.  Never raises."""
        if tool_name not in TOOLS:
            logger.warning("Call %s: unknown tool %r", call_id, tool_name)
            return ToolCallReply(tool_call_id, error=f"Unknown tool: {tool_name}")

        try:
            arguments = normalize_arguments(raw_arguments)
        except ValidationError as exc:
            logger.warning("Call %s: %s", call_id, exc)
            return ToolCallReply(tool_call_id, error=exc.user_message)

        try:
            practice = self._services.practice_store.get_practice(practice_id)
            conversation = self._conversations.load_or_create(call_id, practice_id)
            final = self._graph.invoke({
                "tool_call_id": tool_call_id,
                "conversation": conversation,
                "practice": practice,
                "pending": NextTool(tool_name, arguments),
                "depth": 0,
                "messages": [],
            })
        except BookingError as exc:
            logger.warning("Call %s: %s failed before dispatch: %s", call_id, tool_name, exc)
            return ToolCallReply(tool_call_id, error=exc.user_message)
        except Exception:
            logger.exception("Call %s: unexpected failure handling %s", call_id, tool_name)
            return ToolCallReply(tool_call_id, error=UpstreamError.default_user_message)

        message = " ".join(m for m in final["messages"] if m)
        if final.get("primary_success", False):
            return ToolCallReply(tool_call_id, result=message)
        return ToolCallReply(tool_call_id, error=message)

    # ── Single tool execution ────────────────────────────────────────

    def _run_tool(
        self,
        conversation: ConversationState,
        practice: PracticeContext,
        call: NextTool,
    ) -> tuple[ConversationState, ToolOutcome]:
        """Run *call* and return the advanced state plus the outcome.

        A failed outcome or a raised error leaves the state exactly as
        it was, except for recoverable failures that carry their own
        delta (e.g. releasing a slot that was just taken).
        """
        spec = get_tool(call.name)
        if spec is None:
            raise ValidationError(f"Unknown tool: {call.name}")
        try:
            args = spec.args_model.model_validate(call.arguments)
        except pydantic.ValidationError as exc:
            raise ValidationError(f"Invalid arguments for {call.name}: {exc}") from exc

        ctx = ToolContext(state=conversation, practice=practice, services=self._services)
        outcome = spec.handler(ctx, args)
        return advance(conversation, outcome.delta), outcome

    # ── Nodes ────────────────────────────────────────────────────────

    def _dispatch_node(self, turn: TurnState) -> dict:
        call = turn["pending"]
        conversation = turn["conversation"]
        depth = turn["depth"]
        t0 = time.perf_counter()

        try:
            conversation, outcome = self._run_tool(conversation, turn["practice"], call)
        except BookingError as exc:
            logger.info(
                "Call %s: %s -> %s (%s)", conversation.call_id, call.name, exc.code, exc,
            )
            outcome = ToolOutcome(message=exc.user_message, success=False, error_code=exc.code)
        except Exception as exc:
            logger.exception("Call %s: %s raised unexpectedly", conversation.call_id, call.name)
            outcome = ToolOutcome(
                message=UpstreamError.default_user_message,
                success=False,
                error_code=type(exc).__name__,
            )

        elapsed = (time.perf_counter() - t0) * 1000
        metrics.record_tool_call(call.name, success=outcome.success, latency_ms=elapsed)
        self._tool_log.record(
            call_id=conversation.call_id,
            tool_call_id=turn.get("tool_call_id") if depth == 0 else None,
            tool_name=call.name,
            arguments=call.arguments,
            result=outcome.message,
            success=outcome.success,
            latency_ms=elapsed,
            error_code=outcome.error_code,
        )
        logger.debug(
            "Call %s: %s %s in %.0fms (stage %s)",
            conversation.call_id, call.name,
            "ok" if outcome.success else "failed", elapsed, conversation.stage,
        )

        pending = outcome.next_tool
        if pending is not None and pending.name not in TOOLS:
            logger.error("Call %s: %s chained unknown tool %r", conversation.call_id, call.name, pending.name)
            pending = None

        update: dict[str, Any] = {
            "conversation": conversation,
            "pending": pending,
            "depth": depth + 1,
            "messages": [*turn["messages"], outcome.message],
        }
        if depth == 0:
            update["primary_success"] = outcome.success
        return update

    def _persist_node(self, turn: TurnState) -> dict:
        return {"conversation": self._conversations.save(turn["conversation"])}

    # ── Conditional edges ────────────────────────────────────────────

    def _should_chain(self, turn: TurnState) -> str:
        if turn.get("pending") is not None and turn["depth"] < self._max_chain_depth:
            logger.debug("Chaining to %s", turn["pending"].name)
            return "dispatch"
        return "persist"

    # ── Graph assembly ───────────────────────────────────────────────

    def _build_graph(self):
        graph = StateGraph(TurnState)
        graph.add_node("dispatch", self._dispatch_node)
        graph.add_node("persist", self._persist_node)
        graph.set_entry_point("dispatch")
        graph.add_conditional_edges(
            "dispatch", self._should_chain, {"dispatch": "dispatch", "persist": "persist"},
        )
        graph.add_edge("persist", END)
        return graph.compile()


def build_services(
    session_factory: sessionmaker[Session],
    practice_store: PracticeStore,
    *,
    hold_minutes: int,
) -> ToolServices:
    """Wire the production collaborators around one database session factory."""
    nexhealth = get_nexhealth_client()
    return ToolServices(
        nexhealth=nexhealth,
        practice_store=practice_store,
        slot_search=SlotSearchEngine(nexhealth, practice_store),
        committer=BookingCommitter(nexhealth, hold_minutes),
        classifier=ChoiceClassifier(),
        booking_records=BookingRecordWriter(session_factory),
        notifier=EmailNotifier(),
    )


def create_orchestrator(database_url: str = DATABASE_URL) -> Orchestrator:
    """Build the production orchestrator against *database_url*.

    Creates the tables on first use, so a fresh SQLite file works out of
    the box.
    """
    engine = build_engine(database_url)
    create_schema(engine)
    session_factory = build_session_factory(engine)
    practice_store = PracticeStore(session_factory, DEFAULT_TIMEZONE)
    orchestrator = Orchestrator(
        build_services(session_factory, practice_store, hold_minutes=SLOT_HOLD_MINUTES),
        ConversationStore(session_factory),
        ToolLogWriter(session_factory),
    )
    logger.debug(
        "Orchestrator ready: %d tools, chain depth %d, hold %d min",
        len(TOOLS), MAX_TOOL_CHAIN_DEPTH, SLOT_HOLD_MINUTES,
    )
    return orchestrator
