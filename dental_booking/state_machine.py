"""Explicit stage transitions for a booking conversation.

Handlers only *propose* a delta; :func:`advance` is the single place that
decides whether the proposal is legal.  Self-transitions are always
allowed, so a handler that does not touch ``stage`` never trips the table.

    GREETING ─► APPOINTMENT_TYPE_IDENTIFIED ─► PRESENTING_SLOTS
        │                 │                        │
        └──► patient identification sub-flow ◄─────┘
                 (IDENTIFYING_PATIENT / COLLECTING_NEW_PATIENT
                  ─► PATIENT_IDENTIFIED)
                          │
                          ▼
              AWAITING_SLOT_CONFIRMATION ─► BOOKED (terminal)
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from dental_booking.errors import IllegalTransitionError
from dental_booking.models import BookingInfo, ConversationState, Stage

logger = logging.getLogger(__name__)

S = Stage

TRANSITIONS: dict[Stage, frozenset[Stage]] = {
    S.GREETING: frozenset({
        S.APPOINTMENT_TYPE_IDENTIFIED,
        S.IDENTIFYING_PATIENT,
        S.COLLECTING_NEW_PATIENT,
        S.PATIENT_IDENTIFIED,
    }),
    S.APPOINTMENT_TYPE_IDENTIFIED: frozenset({
        S.PRESENTING_SLOTS,
        S.IDENTIFYING_PATIENT,
        S.COLLECTING_NEW_PATIENT,
        S.PATIENT_IDENTIFIED,
    }),
    S.PRESENTING_SLOTS: frozenset({
        S.APPOINTMENT_TYPE_IDENTIFIED,
        S.IDENTIFYING_PATIENT,
        S.COLLECTING_NEW_PATIENT,
        S.PATIENT_IDENTIFIED,
        S.AWAITING_SLOT_CONFIRMATION,
    }),
    S.IDENTIFYING_PATIENT: frozenset({
        S.APPOINTMENT_TYPE_IDENTIFIED,
        S.PRESENTING_SLOTS,
        S.COLLECTING_NEW_PATIENT,
        S.PATIENT_IDENTIFIED,
    }),
    S.COLLECTING_NEW_PATIENT: frozenset({
        S.APPOINTMENT_TYPE_IDENTIFIED,
        S.PRESENTING_SLOTS,
        S.IDENTIFYING_PATIENT,
        S.PATIENT_IDENTIFIED,
    }),
    S.PATIENT_IDENTIFIED: frozenset({
        S.APPOINTMENT_TYPE_IDENTIFIED,
        S.PRESENTING_SLOTS,
        S.AWAITING_SLOT_CONFIRMATION,
    }),
    S.AWAITING_SLOT_CONFIRMATION: frozenset({
        S.APPOINTMENT_TYPE_IDENTIFIED,
        S.PRESENTING_SLOTS,
        S.BOOKED,
    }),
    S.BOOKED: frozenset(),
}

# Booking fields that may not change once an appointment is confirmed
_FROZEN_AFTER_BOOKING = frozenset({
    "presented_slots",
    "selected_slot",
    "held_slot_id",
    "held_slot_expires_at",
    "confirmed_booking_id",
})


def can_transition(current: Stage, target: Stage) -> bool:
    return current == target or target in TRANSITIONS[current]


def hold_is_active(booking: BookingInfo, now: datetime | None = None) -> bool:
    """True when a hold exists and its expiry is still in the future."""
    if not booking.held_slot_id or booking.held_slot_expires_at is None:
        return False
    now = now or datetime.now(UTC)
    return booking.held_slot_expires_at > now


def advance(state: ConversationState, delta: Mapping[str, Any]) -> ConversationState:
    """Apply *delta* to *state*, enforcing the transition table and the
    booking invariants.  Raises :class:`IllegalTransitionError` and leaves
    *state* untouched when the proposal is not allowed.
    """
    if not delta:
        return state

    before = state.booking
    if before.confirmed_booking_id:
        touched = _FROZEN_AFTER_BOOKING & set(delta.get("booking") or {})
        if touched:
            raise IllegalTransitionError(
                f"Booking {before.confirmed_booking_id} is confirmed; "
                f"cannot change {sorted(touched)}",
            )

    new_state = state.apply(delta)

    if not can_transition(state.stage, new_state.stage):
        raise IllegalTransitionError(
            f"Illegal stage transition {state.stage} -> {new_state.stage}",
        )

    after = new_state.booking
    if after.selected_slot is not None and not after.selected_slot.same_slot(
        before.selected_slot,
    ):
        if not any(after.selected_slot.same_slot(s) for s in before.presented_slots):
            raise IllegalTransitionError(
                f"Selected slot {after.selected_slot.time} was never presented",
            )

    if after.held_slot_id and after.held_slot_id != before.held_slot_id:
        if new_state.patient.id is None:
            raise IllegalTransitionError("Cannot record a hold without a patient id")
        if after.selected_slot is None:
            raise IllegalTransitionError("Cannot record a hold without a selected slot")

    if after.confirmed_booking_id and not before.confirmed_booking_id:
        if not before.held_slot_id:
            raise IllegalTransitionError("Cannot confirm a booking without a hold")

    if new_state.stage != state.stage:
        logger.debug(
            "Call %s: stage %s -> %s", state.call_id, state.stage, new_state.stage,
        )
    return new_state
