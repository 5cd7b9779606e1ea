"""Tools: ``findAppointmentType`` and ``checkAvailableSlots``."""

from __future__ import annotations

import json
import logging
from datetime import date, timedelta

from pydantic import Field, field_validator

from dental_booking.errors import ConfigurationError, NotFoundError, ValidationError
from dental_booking.models import LastAction, SlotData, Stage
from dental_booking.scheduling.appointment_types import is_urgent_request, match_appointment_type
from dental_booking.scheduling.dates import (
    DEFAULT_WINDOW,
    SPECIFIC_DATE_WINDOW,
    URGENT_WINDOW,
    WEEKDAYS,
    normalize_requested_date,
)
from dental_booking.scheduling.slot_search import (
    available_buckets_by_day,
    filter_by_bucket,
    resolve_bucket,
)
from dental_booking.scheduling.speech import format_day, format_slot_time, join_spoken
from dental_booking.tools.base import NextTool, ToolArgs, ToolContext, ToolOutcome
from dental_booking.tools.registry import register_tool

logger = logging.getLogger(__name__)

# How many exact times to read out at once
MAX_SPOKEN_SLOTS = 3


def already_booked_outcome(ctx: ToolContext) -> ToolOutcome:
    booking = ctx.state.booking
    when = (
        format_slot_time(booking.selected_slot.start, ctx.practice.tz)
        if booking.selected_slot else "the time we discussed"
    )
    return ToolOutcome(
        message=(
            f"You're already booked for a {booking.display_name} on {when}. "
            "Is there anything else I can help you with?"
        ),
    )


# ── findAppointmentType ──────────────────────────────────────────────


class FindAppointmentTypeArgs(ToolArgs):
    patient_request: str = Field(min_length=1)


@register_tool("findAppointmentType", FindAppointmentTypeArgs)
def find_appointment_type(ctx: ToolContext, args: FindAppointmentTypeArgs) -> ToolOutcome:
    if ctx.state.booking.confirmed_booking_id:
        return already_booked_outcome(ctx)

    types = ctx.services.practice_store.list_appointment_types(ctx.practice.id)
    if not types:
        raise ConfigurationError(f"Practice {ctx.practice.id} has no bookable appointment types")

    matched = match_appointment_type(args.patient_request, types, ctx.services.classifier)
    if matched is None:
        raise NotFoundError(
            f"No appointment type matched {args.patient_request!r}",
            user_message=(
                "I'm sorry, I'm not sure which kind of appointment that would be. "
                "Could you tell me a little more, like whether it's a cleaning, "
                "a checkup, or a specific problem?"
            ),
        )

    urgent = is_urgent_request(args.patient_request)
    delta = {
        "stage": Stage.APPOINTMENT_TYPE_IDENTIFIED,
        "last_action": LastAction.IDENTIFIED_APPOINTMENT_TYPE,
        "booking": {
            "appointment_type_id": matched.id,
            "appointment_type_name": matched.name,
            "spoken_name": matched.display_name,
            "duration": matched.duration,
            "is_urgent": urgent,
            "presented_slots": [],
            "selected_slot": None,
            "held_slot_id": None,
            "held_slot_expires_at": None,
        },
    }
    message = f"Okay, I've noted you're looking for a {matched.display_name}."

    if urgent or matched.check_immediate_next_available:
        logger.info(
            "Call %s: %s (urgent=%s) chains to immediate availability",
            ctx.state.call_id, matched.id, urgent,
        )
        return ToolOutcome(message=message, delta=delta, next_tool=NextTool("checkAvailableSlots"))

    return ToolOutcome(
        message=f"{message} What day works best for you?",
        delta=delta,
    )


# ── checkAvailableSlots ──────────────────────────────────────────────


class CheckAvailableSlotsArgs(ToolArgs):
    requested_date: str | None = None
    time_bucket: str | None = None
    preferred_days_of_week: list[str] | None = None

    @field_validator("preferred_days_of_week", mode="before")
    @classmethod
    def _coerce_days(cls, value):
        """Accept a list, a JSON array string, or a comma separated string."""
        if value is None or isinstance(value, list):
            return value
        if isinstance(value, str):
            text = value.strip()
            if not text:
                return None
            if text.startswith("["):
                return json.loads(text)
            return [part.strip() for part in text.split(",") if part.strip()]
        return value


def _offer_slots(slots: list[SlotData], ctx: ToolContext, urgent: bool) -> str:
    spoken = join_spoken([format_slot_time(s.start, ctx.practice.tz) for s in slots])
    if urgent:
        return (
            "I'm sorry you're dealing with that. Let's get you in as soon as possible. "
            f"The soonest openings I have are {spoken}. Which works best for you?"
        )
    if len(slots) == 1:
        return f"I have {spoken} available. Would that work for you?"
    return f"I have {spoken} available. Which works best for you?"


def _offer_buckets(by_day: dict[date, list[str]]) -> str:
    days = list(by_day)
    first_day = days[0]
    buckets = [b.lower() for b in by_day[first_day]]
    message = (
        f"On {format_day(first_day)} I have openings in the {join_spoken(buckets)}. "
    )
    if len(days) > 1:
        others = join_spoken([f"{d:%A}" for d in days[1:3]], "and")
        message += f"I also have availability on {others}. "
    return message + "What time of day works best for you?"


def _offer_coarse(slots: list[SlotData], ctx: ToolContext) -> tuple[list[SlotData], str]:
    """Bucket summary when possible, else the earliest exact times."""
    by_day = available_buckets_by_day(slots, ctx.practice.tz)
    if not by_day:
        # Only late-evening or overnight openings
        offered = slots[:MAX_SPOKEN_SLOTS]
        return offered, _offer_slots(offered, ctx, urgent=False)
    return slots, _offer_buckets(by_day)


@register_tool("checkAvailableSlots", CheckAvailableSlotsArgs)
def check_available_slots(ctx: ToolContext, args: CheckAvailableSlotsArgs) -> ToolOutcome:
    booking = ctx.state.booking
    if booking.confirmed_booking_id:
        return already_booked_outcome(ctx)
    if not booking.appointment_type_id:
        raise ValidationError(
            "checkAvailableSlots called before an appointment type was chosen",
            user_message="Before I check times, what kind of appointment are you looking for?",
        )

    practice = ctx.practice
    appointment_type = ctx.services.practice_store.get_appointment_type(
        practice.id, booking.appointment_type_id,
    )
    immediate = booking.is_urgent or appointment_type.check_immediate_next_available
    today = ctx.today
    weekdays: set[int] = set()

    if args.requested_date:
        start = normalize_requested_date(args.requested_date, today, ctx.services.classifier)
        if start is None:
            raise ValidationError(
                f"Could not resolve requested date {args.requested_date!r}",
                user_message=(
                    "I'm sorry, I didn't catch which day you'd like. "
                    "Could you tell me the date again?"
                ),
            )
        days = SPECIFIC_DATE_WINDOW
    elif args.preferred_days_of_week:
        weekdays = {
            WEEKDAYS.index(d.lower()) for d in args.preferred_days_of_week if d.lower() in WEEKDAYS
        }
        start, days = today, URGENT_WINDOW
    elif immediate:
        start, days = today, URGENT_WINDOW
    else:
        start, days = today, DEFAULT_WINDOW

    result = ctx.services.slot_search.find_available_slots(
        booking.appointment_type_id, practice, start, days,
    )
    slots = result.found_slots
    if weekdays:
        slots = [s for s in slots if s.start.astimezone(practice.tz).weekday() in weekdays]

    bucket = resolve_bucket(args.time_bucket)
    bucket_slots = filter_by_bucket(slots, bucket, practice.tz) if bucket else slots

    cleared = {"selected_slot": None, "held_slot_id": None, "held_slot_expires_at": None}

    if not slots:
        next_date = (result.next_available_date or "")[:10] or None
        window_end = start + timedelta(days=days)
        if next_date and next_date >= window_end.isoformat():
            message = (
                "I'm sorry, I don't have any openings then. The next available day is "
                f"{format_day(date.fromisoformat(next_date))}. Would you like me to check that day?"
            )
        else:
            message = (
                "I'm sorry, I don't see any openings in that time frame. "
                "Would you like me to check a different day?"
            )
        return ToolOutcome(
            message=message,
            delta={
                "stage": Stage.APPOINTMENT_TYPE_IDENTIFIED,
                "booking": {"presented_slots": [], **cleared},
            },
        )

    if bucket and bucket != "AllDay" and bucket_slots:
        offered = bucket_slots[:MAX_SPOKEN_SLOTS]
        message = _offer_slots(offered, ctx, urgent=False)
    elif bucket and bucket != "AllDay":
        offered, message = _offer_coarse(slots, ctx)
        message = f"I don't have any {bucket.lower()} openings then. " + message
    elif immediate:
        offered = slots[:MAX_SPOKEN_SLOTS]
        message = _offer_slots(offered, ctx, urgent=booking.is_urgent)
    else:
        # Coarse choice first; every found slot stays selectable
        offered, message = _offer_coarse(slots, ctx)

    logger.info(
        "Call %s: offering %d of %d slots (bucket=%s, immediate=%s)",
        ctx.state.call_id, len(offered), len(slots), bucket, immediate,
    )
    return ToolOutcome(
        message=message,
        delta={
            "stage": Stage.PRESENTING_SLOTS,
            "last_action": LastAction.OFFERED_SLOTS,
            "booking": {"presented_slots": offered, **cleared},
        },
    )
