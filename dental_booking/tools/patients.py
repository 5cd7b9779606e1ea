"""Tools: ``findAndConfirmPatient`` and ``createPatientRecord``."""

from __future__ import annotations

import logging

from pydantic import Field

from dental_booking.errors import NotFoundError
from dental_booking.models import (
    BookingInfo,
    IntakeStep,
    LastAction,
    PatientStatus,
    Stage,
)
from dental_booking.scheduling.insurance import check_insurance
from dental_booking.scheduling.intake import (
    ASK_NAME,
    IntakeAnswer,
    advance_intake,
    name_confirmation_prompt,
)
from dental_booking.scheduling.patients import (
    create_or_reuse_patient,
    find_and_confirm_patient,
    parse_date_of_birth,
)
from dental_booking.scheduling.speech import parse_full_name
from dental_booking.tools.base import NextTool, ToolArgs, ToolContext, ToolOutcome
from dental_booking.tools.registry import register_tool

logger = logging.getLogger(__name__)


def next_after_identification(booking: BookingInfo) -> tuple[str, NextTool | None]:
    """What to do once we know who the caller is."""
    if booking.confirmed_booking_id:
        return "", None
    if booking.selected_slot is not None:
        return "", NextTool("holdAppointmentSlot")
    if booking.presented_slots:
        return "Which of those times works best for you?", None
    if booking.appointment_type_id:
        return "", NextTool("checkAvailableSlots")
    return "What kind of appointment are you looking for today?", None


def _with_follow_up(message: str, follow_up: str) -> str:
    return f"{message} {follow_up}".strip()


# ── findAndConfirmPatient ────────────────────────────────────────────


class FindAndConfirmPatientArgs(ToolArgs):
    full_name: str = Field(min_length=1)
    date_of_birth: str = Field(min_length=1)


@register_tool("findAndConfirmPatient", FindAndConfirmPatientArgs)
def find_and_confirm(ctx: ToolContext, args: FindAndConfirmPatientArgs) -> ToolOutcome:
    state = ctx.state
    if state.patient.id is not None:
        follow_up, next_tool = next_after_identification(state.booking)
        return ToolOutcome(
            message=_with_follow_up(f"I already have you down as {state.patient.full_name}.", follow_up),
            next_tool=next_tool,
        )

    try:
        match = find_and_confirm_patient(
            ctx.services.nexhealth, ctx.practice, args.full_name, args.date_of_birth,
        )
    except NotFoundError as exc:
        # Start new-patient intake with what the caller already told us
        first, last = parse_full_name(args.full_name)
        step = IntakeStep.CONFIRM_NAME if last else IntakeStep.ASK_NAME
        question = name_confirmation_prompt(first, last) if last else ASK_NAME
        return ToolOutcome(
            message=f"{exc.user_message} {question}",
            delta={
                "stage": Stage.COLLECTING_NEW_PATIENT,
                "last_action": LastAction.COLLECTING_PATIENT_DETAILS,
                "patient": {
                    "first_name": first or None,
                    "last_name": last,
                    "dob": parse_date_of_birth(args.date_of_birth, ctx.today),
                    "is_name_confirmed": False,
                    "intake_step": step,
                },
            },
        )

    logger.info("Call %s: identified existing patient %s", state.call_id, match.patient_id)
    delta = {
        "stage": Stage.PATIENT_IDENTIFIED,
        "last_action": LastAction.IDENTIFIED_PATIENT,
        "patient": {
            "status": PatientStatus.IDENTIFIED_EXISTING,
            "id": match.patient_id,
            "first_name": match.first_name,
            "last_name": match.last_name,
            "dob": match.dob,
            "phone": match.phone,
            "email": match.email,
            "is_name_confirmed": True,
            "intake_step": None,
        },
    }
    follow_up, next_tool = next_after_identification(state.booking)
    return ToolOutcome(
        message=_with_follow_up(f"Thanks, {match.first_name}. I found your record.", follow_up),
        delta=delta,
        next_tool=next_tool,
    )


# ── createPatientRecord ──────────────────────────────────────────────


class CreatePatientRecordArgs(ToolArgs):
    full_name: str | None = None
    date_of_birth: str | None = None
    phone: str | None = None
    email: str | None = None
    insurance_name: str | None = None
    user_confirmation: str | None = None


@register_tool("createPatientRecord", CreatePatientRecordArgs)
def create_patient_record(ctx: ToolContext, args: CreatePatientRecordArgs) -> ToolOutcome:
    state = ctx.state
    if state.patient.id is not None:
        follow_up, next_tool = next_after_identification(state.booking)
        return ToolOutcome(
            message=_with_follow_up("You're already set up in our system.", follow_up),
            next_tool=next_tool,
        )

    turn = advance_intake(
        state.patient,
        IntakeAnswer(
            full_name=args.full_name,
            date_of_birth=args.date_of_birth,
            phone=args.phone,
            email=args.email,
            insurance_name=args.insurance_name,
            user_confirmation=args.user_confirmation,
        ),
        today=ctx.today,
    )
    collecting = {
        "stage": Stage.COLLECTING_NEW_PATIENT,
        "last_action": LastAction.COLLECTING_PATIENT_DETAILS,
        "patient": turn.patient_delta,
    }
    if not turn.complete:
        return ToolOutcome(message=turn.message, delta=collecting)

    # Every required field is confirmed: register the patient upstream
    pending = state.apply(collecting).patient
    provider_id = ctx.services.practice_store.primary_provider_id(
        ctx.practice.id, state.booking.appointment_type_id,
    )
    patient_id = create_or_reuse_patient(
        ctx.services.nexhealth, ctx.practice, pending, provider_id,
    )
    logger.info("Call %s: registered new patient %s", state.call_id, patient_id)

    delta = {
        "stage": Stage.PATIENT_IDENTIFIED,
        "last_action": LastAction.IDENTIFIED_PATIENT,
        "patient": {
            **turn.patient_delta,
            "status": PatientStatus.NEW_DETAILS_COLLECTED,
            "id": patient_id,
            "intake_step": None,
        },
    }
    message = f"Thank you, {pending.first_name}! You're all set up as a new patient."
    if turn.insurance_name:
        status, carrier = check_insurance(ctx.practice.accepted_insurances, turn.insurance_name)
        delta["insurance"] = {"status": status, "queried_plan": turn.insurance_name}
        if carrier:
            message += f" And good news, we're in network with {carrier}."
        elif ctx.practice.accepted_insurances:
            message += (
                f" Just so you know, we're not in network with {turn.insurance_name}, "
                "but you're still welcome to be seen."
            )

    follow_up, next_tool = next_after_identification(state.booking)
    return ToolOutcome(
        message=_with_follow_up(message, follow_up),
        delta=delta,
        next_tool=next_tool,
    )
