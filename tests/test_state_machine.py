"""Tests for stage transitions and the booking invariants in advance()."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from dental_booking.errors import IllegalTransitionError
from dental_booking.models import BookingInfo, Stage, deep_merge
from dental_booking.state_machine import advance, can_transition, hold_is_active

NOW = datetime(2026, 7, 13, 15, 0, tzinfo=UTC)


class TestTransitions:
    @pytest.mark.parametrize("current, target", [
        (Stage.GREETING, Stage.APPOINTMENT_TYPE_IDENTIFIED),
        (Stage.APPOINTMENT_TYPE_IDENTIFIED, Stage.PRESENTING_SLOTS),
        (Stage.PRESENTING_SLOTS, Stage.IDENTIFYING_PATIENT),
        (Stage.PATIENT_IDENTIFIED, Stage.AWAITING_SLOT_CONFIRMATION),
        (Stage.AWAITING_SLOT_CONFIRMATION, Stage.BOOKED),
        (Stage.AWAITING_SLOT_CONFIRMATION, Stage.APPOINTMENT_TYPE_IDENTIFIED),
    ])
    def test_allowed(self, current, target):
        assert can_transition(current, target)

    @pytest.mark.parametrize("current, target", [
        (Stage.GREETING, Stage.BOOKED),
        (Stage.PRESENTING_SLOTS, Stage.BOOKED),
        (Stage.BOOKED, Stage.PRESENTING_SLOTS),
        (Stage.GREETING, Stage.AWAITING_SLOT_CONFIRMATION),
    ])
    def test_rejected(self, current, target):
        assert not can_transition(current, target)

    def test_self_transition_is_always_allowed(self):
        assert can_transition(Stage.BOOKED, Stage.BOOKED)

    def test_illegal_jump_leaves_state_untouched(self, make_state):
        state = make_state()
        with pytest.raises(IllegalTransitionError):
            advance(state, {"stage": Stage.BOOKED})
        assert state.stage is Stage.GREETING

    def test_empty_delta_returns_same_state(self, make_state):
        state = make_state()
        assert advance(state, {}) is state


class TestBookingInvariants:
    def test_selected_slot_must_have_been_presented(self, make_state, make_slot):
        state = make_state({"booking": {"presented_slots": [make_slot("2026-07-14T09:00:00-05:00")]}})
        with pytest.raises(IllegalTransitionError, match="never presented"):
            advance(state, {"booking": {
                "selected_slot": make_slot("2026-07-14T10:00:00-05:00"),
            }})

    def test_same_time_other_provider_is_not_the_presented_slot(self, make_state, make_slot):
        state = make_state({"booking": {"presented_slots": [make_slot("2026-07-14T09:00:00-05:00")]}})
        with pytest.raises(IllegalTransitionError):
            advance(state, {"booking": {
                "selected_slot": make_slot("2026-07-14T09:00:00-05:00", provider_id=502),
            }})

    def test_presented_slot_can_be_selected(self, make_state, make_slot):
        slot = make_slot("2026-07-14T09:00:00-05:00")
        state = make_state({"booking": {"presented_slots": [slot]}})
        new_state = advance(state, {"booking": {"selected_slot": slot, "presented_slots": []}})
        assert new_state.booking.selected_slot == slot

    def test_hold_needs_a_patient(self, make_state, make_slot):
        slot = make_slot("2026-07-14T09:00:00-05:00")
        state = make_state({"booking": {"selected_slot": slot}})
        with pytest.raises(IllegalTransitionError, match="patient"):
            advance(state, {"booking": {"held_slot_id": "hold-1"}})

    def test_confirmation_needs_a_hold(self, make_state, make_slot):
        state = make_state({
            "stage": Stage.AWAITING_SLOT_CONFIRMATION,
            "patient": {"id": 12},
            "booking": {"selected_slot": make_slot("2026-07-14T09:00:00-05:00")},
        })
        with pytest.raises(IllegalTransitionError, match="without a hold"):
            advance(state, {
                "stage": Stage.BOOKED,
                "booking": {"confirmed_booking_id": "appt-1"},
            })

    def test_booking_fields_are_frozen_once_confirmed(self, make_state, make_slot):
        state = make_state({
            "stage": Stage.BOOKED,
            "patient": {"id": 12},
            "booking": {
                "selected_slot": make_slot("2026-07-14T09:00:00-05:00"),
                "held_slot_id": "hold-1",
                "confirmed_booking_id": "appt-1",
            },
        })
        with pytest.raises(IllegalTransitionError, match="appt-1"):
            advance(state, {"booking": {"selected_slot": None}})

    def test_booked_state_still_accepts_insurance_updates(self, make_state):
        state = make_state({
            "stage": Stage.BOOKED,
            "booking": {"confirmed_booking_id": "appt-1", "held_slot_id": "hold-1"},
        })
        new_state = advance(state, {"insurance": {"queried_plan": "Cigna"}})
        assert new_state.insurance.queried_plan == "Cigna"
        assert new_state.booking.confirmed_booking_id == "appt-1"


class TestHoldIsActive:
    def test_active_until_expiry(self):
        booking = BookingInfo(held_slot_id="hold-1", held_slot_expires_at=NOW + timedelta(minutes=1))
        assert hold_is_active(booking, NOW)
        assert not hold_is_active(booking, NOW + timedelta(minutes=1))

    def test_no_hold_id_is_inactive(self):
        booking = BookingInfo(held_slot_expires_at=NOW + timedelta(minutes=5))
        assert not hold_is_active(booking, NOW)


class TestDeepMerge:
    def test_nested_mappings_merge(self):
        merged = deep_merge({"a": {"x": 1, "y": 2}}, {"a": {"y": 3}})
        assert merged == {"a": {"x": 1, "y": 3}}

    def test_lists_replace(self):
        assert deep_merge({"a": [1, 2]}, {"a": [3]}) == {"a": [3]}

    def test_explicit_none_clears(self):
        assert deep_merge({"a": {"x": 1}}, {"a": None}) == {"a": None}

    def test_call_identifiers_cannot_be_overwritten(self, make_state):
        state = make_state().apply({"call_id": "other", "practice_id": "other"})
        assert state.call_id == "call-1"
        assert state.practice_id == "practice-1"
