"""Tools: ``selectAndBookSlot`` and ``holdAppointmentSlot``.

Select -> (identify patient) -> hold -> restate and confirm -> book.
A booking is only ever made from an active hold after the caller has
said yes to the restated details.
"""

from __future__ import annotations

import logging
from typing import Any

from dental_booking.errors import HoldExpiredError, NotFoundError, SlotConflictError, ValidationError
from dental_booking.models import LastAction, SlotData, Stage, deep_merge
from dental_booking.scheduling.booking import release_selection_delta
from dental_booking.scheduling.slot_matcher import match_user_selection_to_slot
from dental_booking.scheduling.speech import format_slot_time, join_spoken
from dental_booking.state_machine import hold_is_active
from dental_booking.tools.availability import already_booked_outcome
from dental_booking.tools.base import NextTool, ToolArgs, ToolContext, ToolOutcome
from dental_booking.tools.registry import register_tool

logger = logging.getLogger(__name__)

SLOT_TAKEN_MESSAGE = (
    "I'm so sorry, it looks like that time was just taken. "
    "Would you like me to look for other available times?"
)


def _when(ctx: ToolContext, slot: SlotData) -> str:
    return format_slot_time(slot.start, ctx.practice.tz)


def _confirmation_question(ctx: ToolContext, slot: SlotData) -> str:
    return (
        f"Just to confirm, I have you down for a {ctx.state.booking.display_name} "
        f"on {_when(ctx, slot)}. Does that all sound correct?"
    )


def _slot_lost(delta: dict[str, Any], reason: str) -> ToolOutcome:
    """Recoverable failure: forget the selection and ask for a new search."""
    delta = deep_merge(delta, release_selection_delta())
    delta["stage"] = Stage.APPOINTMENT_TYPE_IDENTIFIED
    return ToolOutcome(
        message=SLOT_TAKEN_MESSAGE,
        delta=delta,
        success=False,
        error_code=reason,
    )


def _ask_patient_status(ctx: ToolContext, delta: dict[str, Any], slot: SlotData) -> ToolOutcome:
    delta = {**delta, "stage": Stage.IDENTIFYING_PATIENT}
    return ToolOutcome(
        message=(
            f"Great, {_when(ctx, slot)} it is. Before I reserve that for you, "
            "are you a new or existing patient with us?"
        ),
        delta=delta,
    )


def hold_and_confirm(
    ctx: ToolContext,
    slot: SlotData,
    delta: dict[str, Any] | None = None,
    lead_in: str = "",
) -> ToolOutcome:
    """Hold *slot* and ask the caller to confirm the restated details."""
    delta = dict(delta or {})
    try:
        hold = ctx.services.committer.place_hold(ctx.practice, ctx.state, slot)
    except SlotConflictError as exc:
        logger.info("Call %s: hold failed, slot taken (%s)", ctx.state.call_id, exc)
        return _slot_lost(delta, exc.code)

    delta = deep_merge(delta, {"booking": hold})
    delta["stage"] = Stage.AWAITING_SLOT_CONFIRMATION
    delta["last_action"] = LastAction.HELD_SLOT
    minutes = ctx.services.committer.hold_minutes
    message = (
        f"{lead_in}I've got that time held for you for the next {minutes} minutes. "
        f"{_confirmation_question(ctx, slot)}"
    )
    return ToolOutcome(message=message.strip(), delta=delta)


def _finalize(ctx: ToolContext) -> ToolOutcome:
    state = ctx.state
    booking = state.booking
    slot = booking.selected_slot
    if slot is None:
        raise ValidationError(
            "finalConfirmation without a selected slot",
            user_message="Which time would you like me to book for you?",
        )
    if state.patient.id is None:
        return _ask_patient_status(ctx, {}, slot)

    if not hold_is_active(booking, ctx.now):
        # Never book from a stale hold: re-hold and ask again
        logger.info("Call %s: hold %s expired before confirmation", state.call_id, booking.held_slot_id)
        return hold_and_confirm(
            ctx, slot,
            {"booking": {"held_slot_id": None, "held_slot_expires_at": None}},
            lead_in="It took us a little while, so I've refreshed your reservation. ",
        )

    try:
        booking_id = ctx.services.committer.book(ctx.practice, state)
    except HoldExpiredError:
        return hold_and_confirm(ctx, slot)
    except SlotConflictError as exc:
        logger.info("Call %s: booking lost the race for %s", state.call_id, slot.time)
        return _slot_lost({}, exc.code)

    delta = {
        "stage": Stage.BOOKED,
        "last_action": LastAction.BOOKED_APPOINTMENT,
        "booking": {"confirmed_booking_id": booking_id},
    }
    booked_state = state.apply(delta)
    when = _when(ctx, slot)

    # Both are best-effort and swallow their own failures
    ctx.services.booking_records.record(booked_state)
    ctx.services.notifier.send_booking_confirmation(
        to_email=booked_state.patient.email,
        patient_name=booked_state.patient.first_name or "there",
        practice_name=ctx.practice.name,
        appointment_name=booking.display_name,
        when=when,
    )

    return ToolOutcome(
        message=(
            f"You're all set! I've booked your {booking.display_name} for {when}. "
            "You should receive a confirmation shortly. "
            "Is there anything else I can help you with?"
        ),
        delta=delta,
    )


def _repeat_options(ctx: ToolContext) -> str:
    offered = ctx.state.booking.presented_slots
    if 0 < len(offered) <= 3:
        return f"The times I have are {join_spoken([_when(ctx, s) for s in offered])}."
    return "Could you tell me the day and time you'd like?"


# ── selectAndBookSlot ────────────────────────────────────────────────


class SelectAndBookSlotArgs(ToolArgs):
    user_selection: str | None = None
    final_confirmation: bool | None = None


@register_tool("selectAndBookSlot", SelectAndBookSlotArgs)
def select_and_book_slot(ctx: ToolContext, args: SelectAndBookSlotArgs) -> ToolOutcome:
    state = ctx.state
    booking = state.booking
    if booking.confirmed_booking_id:
        return already_booked_outcome(ctx)

    if args.final_confirmation is True and booking.selected_slot is not None:
        return _finalize(ctx)

    if args.final_confirmation is False and booking.selected_slot is not None:
        delta = deep_merge(release_selection_delta(), {"stage": Stage.APPOINTMENT_TYPE_IDENTIFIED})
        return ToolOutcome(
            message="No problem. Would you like me to look for a different time?",
            delta=delta,
        )

    if not args.user_selection:
        if booking.selected_slot is not None:
            # Redelivered or bare call: pick up where the selection left off
            return _continue_with_selection(ctx, booking.selected_slot)
        raise ValidationError(
            "selectAndBookSlot called without a selection",
            user_message="Which time would you like?",
        )

    if not booking.presented_slots:
        if booking.selected_slot is not None:
            return _continue_with_selection(ctx, booking.selected_slot)
        next_tool = NextTool("checkAvailableSlots") if booking.appointment_type_id else None
        return ToolOutcome(
            message="Let me check which times are open first.",
            success=False,
            error_code="NO_PRESENTED_SLOTS",
            next_tool=next_tool,
        )

    slot = match_user_selection_to_slot(
        args.user_selection, booking.presented_slots, ctx.practice.tz, ctx.services.classifier,
    )
    if slot is None:
        raise NotFoundError(
            f"Selection {args.user_selection!r} matched no presented slot",
            user_message=f"I'm sorry, I didn't catch which time you'd like. {_repeat_options(ctx)}",
        )

    logger.info("Call %s: caller selected %s", state.call_id, slot.time)
    delta: dict[str, Any] = {
        "last_action": LastAction.SELECTED_SLOT,
        "booking": {"selected_slot": slot, "presented_slots": []},
    }
    if state.patient.id is None:
        return _ask_patient_status(ctx, delta, slot)
    return hold_and_confirm(ctx, slot, delta)


def _continue_with_selection(ctx: ToolContext, slot: SlotData) -> ToolOutcome:
    if ctx.state.patient.id is None:
        return _ask_patient_status(ctx, {}, slot)
    if hold_is_active(ctx.state.booking, ctx.now):
        return ToolOutcome(message=_confirmation_question(ctx, slot))
    return hold_and_confirm(ctx, slot)


# ── holdAppointmentSlot ──────────────────────────────────────────────


class HoldAppointmentSlotArgs(ToolArgs):
    pass


@register_tool("holdAppointmentSlot", HoldAppointmentSlotArgs)
def hold_appointment_slot(ctx: ToolContext, args: HoldAppointmentSlotArgs) -> ToolOutcome:
    booking = ctx.state.booking
    if booking.confirmed_booking_id:
        return already_booked_outcome(ctx)
    if booking.selected_slot is None:
        raise ValidationError(
            "holdAppointmentSlot called without a selected slot",
            user_message="Which time would you like me to reserve?",
        )
    return _continue_with_selection(ctx, booking.selected_slot)
