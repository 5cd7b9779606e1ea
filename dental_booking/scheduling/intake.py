"""Step-by-step new-patient intake over a voice line.

Order: name -> spelled confirmation -> date of birth -> phone -> readback
confirmation -> email -> spelled confirmation -> optional insurance.

Each call to :func:`advance_intake` handles the current step only and
returns the patient fields to change plus what to say next.  A "no" at a
confirmation step clears just that field and asks for it again.  A "no"
that comes with a new value is treated as a correction.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any

from dental_booking.models import IntakeStep, PatientInfo
from dental_booking.scheduling.patients import parse_date_of_birth
from dental_booking.scheduling.speech import (
    format_phone_for_readback,
    is_affirmative,
    is_negative,
    is_valid_email,
    is_valid_phone,
    normalize_phone,
    normalize_spoken_email,
    parse_full_name,
    spell_email,
    spell_out,
)

ASK_NAME = "To get you set up as a new patient, could I have your first and last name?"
ASK_DOB = "Thank you. And what is your date of birth?"
ASK_PHONE = "Got it. What's the best phone number to reach you?"
ASK_EMAIL = "And what email address should we use for appointment reminders?"
ASK_INSURANCE = (
    "Do you have dental insurance you'd like us to put on file? "
    "If so, who is the provider?"
)


@dataclass
class IntakeAnswer:
    full_name: str | None = None
    date_of_birth: str | None = None
    phone: str | None = None
    email: str | None = None
    insurance_name: str | None = None
    user_confirmation: str | None = None


@dataclass
class IntakeTurn:
    message: str
    patient_delta: dict[str, Any] = field(default_factory=dict)
    complete: bool = False
    insurance_name: str | None = None


def name_confirmation_prompt(first: str, last: str) -> str:
    return (
        f"Let me make sure I have that right. Your first name is spelled {spell_out(first)} "
        f"and your last name is spelled {spell_out(last)}. Is that correct?"
    )


def _ask_for_step(step: IntakeStep, patient: PatientInfo) -> str:
    if step is IntakeStep.CONFIRM_NAME and patient.first_name and patient.last_name:
        return name_confirmation_prompt(patient.first_name, patient.last_name)
    if step is IntakeStep.CONFIRM_PHONE and patient.phone:
        return f"I have {format_phone_for_readback(patient.phone)}. Is that right?"
    if step is IntakeStep.CONFIRM_EMAIL and patient.email:
        return f"I have {spell_email(patient.email)}. Is that correct?"
    return {
        IntakeStep.ASK_DOB: ASK_DOB,
        IntakeStep.ASK_PHONE: ASK_PHONE,
        IntakeStep.ASK_EMAIL: ASK_EMAIL,
        IntakeStep.ASK_INSURANCE: ASK_INSURANCE,
    }.get(step, ASK_NAME)


def _step_after_name(patient: PatientInfo) -> IntakeStep:
    return IntakeStep.ASK_PHONE if patient.dob else IntakeStep.ASK_DOB


# ── Per-step handlers ────────────────────────────────────────────────


def _take_name(full_name: str | None) -> IntakeTurn:
    first, last = parse_full_name(full_name or "")
    if not first:
        return IntakeTurn(ASK_NAME, {"intake_step": IntakeStep.ASK_NAME})
    if not last:
        return IntakeTurn(
            f"Thanks, {first}. Could I get your last name as well?",
            {"intake_step": IntakeStep.ASK_NAME},
        )
    return IntakeTurn(
        f"Thanks. {name_confirmation_prompt(first, last)}",
        {
            "first_name": first,
            "last_name": last,
            "is_name_confirmed": False,
            "intake_step": IntakeStep.CONFIRM_NAME,
        },
    )


def _take_dob(raw: str | None, today: date | None) -> IntakeTurn:
    dob = parse_date_of_birth(raw, today)
    if dob is None:
        message = ASK_DOB if not raw else (
            "I'm sorry, I didn't catch that. Could you tell me your date of birth, "
            "with the month, day and year?"
        )
        return IntakeTurn(message, {"intake_step": IntakeStep.ASK_DOB})
    return IntakeTurn(ASK_PHONE, {"dob": dob, "intake_step": IntakeStep.ASK_PHONE})


def _take_phone(raw: str | None) -> IntakeTurn:
    digits = normalize_phone(raw or "")
    if not is_valid_phone(digits):
        message = ASK_PHONE if not raw else (
            "I'm sorry, I need a 10-digit phone number, including the area code. "
            "Could you say it again?"
        )
        return IntakeTurn(message, {"intake_step": IntakeStep.ASK_PHONE})
    digits = digits[-10:]
    return IntakeTurn(
        f"I have {format_phone_for_readback(digits)}. Is that right?",
        {"phone": digits, "intake_step": IntakeStep.CONFIRM_PHONE},
    )


def _take_email(raw: str | None, answer: IntakeAnswer) -> IntakeTurn:
    if not raw and answer.user_confirmation and is_negative(answer.user_confirmation):
        # No email is fine; reminders will go by text
        return IntakeTurn(
            f"No problem. {ASK_INSURANCE}",
            {"email": None, "intake_step": IntakeStep.ASK_INSURANCE},
        )
    email = normalize_spoken_email(raw or "")
    if not is_valid_email(email):
        message = ASK_EMAIL if not raw else (
            "I'm sorry, that doesn't sound like a complete email address. "
            "Could you say it again?"
        )
        return IntakeTurn(message, {"intake_step": IntakeStep.ASK_EMAIL})
    return IntakeTurn(
        f"I have {spell_email(email)}. Is that correct?",
        {"email": email, "intake_step": IntakeStep.CONFIRM_EMAIL},
    )


def advance_intake(
    patient: PatientInfo,
    answer: IntakeAnswer,
    today: date | None = None,
) -> IntakeTurn:
    """Consume the caller's answer for the current step and move on."""
    step = patient.intake_step or IntakeStep.ASK_NAME
    confirmation = answer.user_confirmation or ""
    said_yes = bool(confirmation) and is_affirmative(confirmation)
    said_no = bool(confirmation) and is_negative(confirmation)

    if step is IntakeStep.ASK_NAME:
        return _take_name(answer.full_name)

    if step is IntakeStep.CONFIRM_NAME:
        if answer.full_name and not said_yes:
            return _take_name(answer.full_name)
        if said_yes:
            next_step = _step_after_name(patient)
            turn = IntakeTurn(
                _ask_for_step(next_step, patient),
                {"is_name_confirmed": True, "intake_step": next_step},
            )
            if next_step is IntakeStep.ASK_DOB and answer.date_of_birth:
                dob_turn = _take_dob(answer.date_of_birth, today)
                turn.patient_delta.update(dob_turn.patient_delta)
                turn.message = dob_turn.message
            return turn
        if said_no:
            return IntakeTurn(
                "Sorry about that. Could you spell your first and last name for me?",
                {
                    "first_name": None,
                    "last_name": None,
                    "is_name_confirmed": False,
                    "intake_step": IntakeStep.ASK_NAME,
                },
            )
        return IntakeTurn(_ask_for_step(step, patient))

    if step is IntakeStep.ASK_DOB:
        return _take_dob(answer.date_of_birth, today)

    if step is IntakeStep.ASK_PHONE:
        return _take_phone(answer.phone)

    if step is IntakeStep.CONFIRM_PHONE:
        if answer.phone and not said_yes:
            return _take_phone(answer.phone)
        if said_yes:
            return IntakeTurn(ASK_EMAIL, {"intake_step": IntakeStep.ASK_EMAIL})
        if said_no:
            return IntakeTurn(
                "Let's try that again. What's the best phone number to reach you?",
                {"phone": None, "intake_step": IntakeStep.ASK_PHONE},
            )
        return IntakeTurn(_ask_for_step(step, patient))

    if step is IntakeStep.ASK_EMAIL:
        return _take_email(answer.email, answer)

    if step is IntakeStep.CONFIRM_EMAIL:
        if answer.email and not said_yes:
            return _take_email(answer.email, answer)
        if said_yes:
            return IntakeTurn(ASK_INSURANCE, {"intake_step": IntakeStep.ASK_INSURANCE})
        if said_no:
            return IntakeTurn(
                "Sorry about that. Could you spell your email address for me?",
                {"email": None, "intake_step": IntakeStep.ASK_EMAIL},
            )
        return IntakeTurn(_ask_for_step(step, patient))

    # ASK_INSURANCE: the last, optional step
    if answer.insurance_name and answer.insurance_name.strip():
        return IntakeTurn("", complete=True, insurance_name=answer.insurance_name.strip())
    if said_no:
        return IntakeTurn("", complete=True)
    return IntakeTurn(ASK_INSURANCE)
