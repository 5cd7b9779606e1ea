"""Shared types for voice-assistant tool handlers.

A handler is a plain function ``handler(ctx, args) -> ToolOutcome``.  It
reads ``ctx.state``, calls into the scheduling core, and returns what to
say plus a delta for the orchestrator to apply.  Handlers may raise any
:class:`~dental_booking.errors.BookingError`.  The orchestrator turns
those into in-band errors and leaves the state unchanged.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from dental_booking.models import ConversationState
from dental_booking.scheduling.booking import BookingCommitter
from dental_booking.scheduling.slot_search import SlotSearchEngine
from dental_booking.services.llm import Classifier
from dental_booking.services.nexhealth_client import NexHealthClient
from dental_booking.services.notifications import EmailNotifier
from dental_booking.services.practice_store import PracticeContext, PracticeStore
from dental_booking.services.state_store import BookingRecordWriter


class ToolArgs(BaseModel):
    """Base for tool argument models: camelCase in, unknown keys ignored."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        str_strip_whitespace=True,
    )


@dataclass
class NextTool:
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolOutcome:
    message: str
    delta: dict[str, Any] = field(default_factory=dict)
    success: bool = True
    error_code: str | None = None
    next_tool: NextTool | None = None


@dataclass
class ToolServices:
    """Long-lived collaborators, built once at startup."""

    nexhealth: NexHealthClient
    practice_store: PracticeStore
    slot_search: SlotSearchEngine
    committer: BookingCommitter
    classifier: Classifier
    booking_records: BookingRecordWriter
    notifier: EmailNotifier


@dataclass
class ToolContext:
    state: ConversationState
    practice: PracticeContext
    services: ToolServices

    @property
    def now(self) -> datetime:
        return self.services.committer.now()

    @property
    def today(self) -> date:
        """Today's date where the practice is."""
        return self.now.astimezone(self.practice.tz).date()


Handler = Callable[[ToolContext, Any], ToolOutcome]


@dataclass(frozen=True)
class ToolSpec:
    name: str
    args_model: type[ToolArgs]
    handler: Handler
