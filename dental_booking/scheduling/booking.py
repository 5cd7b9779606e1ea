"""Two-phase commit of a selected slot: hold first, book on confirmation.

The committer talks to NexHealth and returns state deltas; it never
decides what to say.  Preconditions it enforces:

* a hold needs a selected slot and a patient id;
* a booking needs a hold that has not expired;
* a state that already has a booking id is returned as-is (no second
  ``create_appointment``).
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from dental_booking.errors import HoldExpiredError, ValidationError
from dental_booking.models import ConversationState, SlotData
from dental_booking.services.nexhealth_client import NexHealthClient
from dental_booking.services.practice_store import PracticeContext
from dental_booking.state_machine import hold_is_active

logger = logging.getLogger(__name__)


def release_selection_delta() -> dict[str, Any]:
    """Delta that forgets the selection, the hold and stale alternatives."""
    return {
        "booking": {
            "selected_slot": None,
            "held_slot_id": None,
            "held_slot_expires_at": None,
            "presented_slots": [],
        },
    }


class BookingCommitter:
    def __init__(
        self,
        client: NexHealthClient,
        hold_minutes: int,
        *,
        clock: Callable[[], datetime] | None = None,
    ):
        self._client = client
        self.hold_minutes = hold_minutes
        self._clock = clock or (lambda: datetime.now(UTC))

    def place_hold(
        self,
        practice: PracticeContext,
        state: ConversationState,
        slot: SlotData,
    ) -> dict[str, Any]:
        """Hold *slot* for the identified patient; returns the booking delta.

        Raises :class:`SlotConflictError` if NexHealth says it is taken.
        """
        if state.patient.id is None:
            raise ValidationError("Cannot hold a slot before the patient is identified")
        if not state.booking.duration:
            raise ValidationError("Cannot hold a slot without an appointment duration")

        hold_id = self._client.hold_slot(
            practice.subdomain,
            practice.location_id,
            slot=slot,
            patient_id=state.patient.id,
            duration=state.booking.duration,
        )
        expires_at = self._clock() + timedelta(minutes=self.hold_minutes)
        logger.info(
            "Call %s: held %s (hold %s, expires %s)",
            state.call_id, slot.time, hold_id, expires_at.isoformat(),
        )
        return {"held_slot_id": hold_id, "held_slot_expires_at": expires_at}

    def book(self, practice: PracticeContext, state: ConversationState) -> str:
        """Turn the active hold into an appointment and return its id.

        Raises :class:`HoldExpiredError` when the hold has lapsed and
        :class:`SlotConflictError` when the slot was lost to another caller.
        """
        booking = state.booking
        if booking.confirmed_booking_id:
            logger.info(
                "Call %s: already booked as %s; not booking again",
                state.call_id, booking.confirmed_booking_id,
            )
            return booking.confirmed_booking_id

        slot = booking.selected_slot
        if slot is None or state.patient.id is None or not booking.duration:
            raise ValidationError("Booking needs a selected slot, a patient and a duration")
        if not hold_is_active(booking, self._clock()):
            raise HoldExpiredError(
                f"Hold {booking.held_slot_id} on {slot.time} is missing or expired",
            )

        start = slot.start.astimezone(practice.tz)
        end = start + timedelta(minutes=booking.duration)
        appointment_id = self._client.create_appointment(
            practice.subdomain,
            slot.location_id or practice.location_id,
            patient_id=state.patient.id,
            provider_id=slot.provider_id,
            operatory_id=slot.operatory_id,
            start_time=start.isoformat(),
            end_time=end.isoformat(),
            note=f"{booking.display_name} - booked by phone assistant",
        )
        logger.info("Call %s: booked appointment %s at %s", state.call_id, appointment_id, slot.time)
        return appointment_id

    def now(self) -> datetime:
        return self._clock()
