"""Pydantic models for the per-call conversation state.

The state is persisted as one JSON document per call id.  Field names are
snake_case in Python and camelCase on disk (``alias_generator``), so a
stored blob reads ``{"booking": {"presentedSlots": [...]}}``.

Handlers never mutate a state in place.  They return a *delta* (a nested
dict using Python field names) and the orchestrator produces the next
state with :meth:`ConversationState.apply`.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class PatientStatus(StrEnum):
    UNKNOWN = "UNKNOWN"
    IDENTIFIED_EXISTING = "IDENTIFIED_EXISTING"
    NEW_DETAILS_COLLECTED = "NEW_DETAILS_COLLECTED"


class InsuranceStatus(StrEnum):
    NOT_CHECKED = "NOT_CHECKED"
    IN_NETWORK = "IN_NETWORK"
    OUT_OF_NETWORK = "OUT_OF_NETWORK"


class Stage(StrEnum):
    GREETING = "GREETING"
    APPOINTMENT_TYPE_IDENTIFIED = "APPOINTMENT_TYPE_IDENTIFIED"
    PRESENTING_SLOTS = "PRESENTING_SLOTS"
    IDENTIFYING_PATIENT = "IDENTIFYING_PATIENT"
    COLLECTING_NEW_PATIENT = "COLLECTING_NEW_PATIENT"
    PATIENT_IDENTIFIED = "PATIENT_IDENTIFIED"
    AWAITING_SLOT_CONFIRMATION = "AWAITING_SLOT_CONFIRMATION"
    BOOKED = "BOOKED"


class LastAction(StrEnum):
    GREETED = "GREETED"
    IDENTIFIED_APPOINTMENT_TYPE = "IDENTIFIED_APPOINTMENT_TYPE"
    CHECKED_INSURANCE = "CHECKED_INSURANCE"
    IDENTIFIED_PATIENT = "IDENTIFIED_PATIENT"
    COLLECTING_PATIENT_DETAILS = "COLLECTING_PATIENT_DETAILS"
    OFFERED_SLOTS = "OFFERED_SLOTS"
    SELECTED_SLOT = "SELECTED_SLOT"
    HELD_SLOT = "HELD_SLOT"
    BOOKED_APPOINTMENT = "BOOKED_APPOINTMENT"


class IntakeStep(StrEnum):
    """Where the new-patient intake currently is."""

    ASK_NAME = "ASK_NAME"
    CONFIRM_NAME = "CONFIRM_NAME"
    ASK_DOB = "ASK_DOB"
    ASK_PHONE = "ASK_PHONE"
    CONFIRM_PHONE = "CONFIRM_PHONE"
    ASK_EMAIL = "ASK_EMAIL"
    CONFIRM_EMAIL = "CONFIRM_EMAIL"
    ASK_INSURANCE = "ASK_INSURANCE"


class _StateModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Slots ────────────────────────────────────────────────────────────


class SlotData(_StateModel):
    """One bookable start time for a specific provider and operatory."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True,
    )

    time: str
    operatory_id: int | None = Field(default=None, alias="operatory_id")
    provider_id: int
    location_id: int | None = None

    @property
    def key(self) -> tuple[str, int, int | None]:
        """Identity used for provenance checks (time + provider + operatory)."""
        return (self.time, self.provider_id, self.operatory_id)

    @property
    def start(self) -> datetime:
        return parse_iso_datetime(self.time)

    def same_slot(self, other: SlotData | Mapping[str, Any] | None) -> bool:
        if other is None:
            return False
        if not isinstance(other, SlotData):
            other = SlotData.model_validate(other)
        return self.key == other.key


# ── Conversation state ───────────────────────────────────────────────


class PatientInfo(_StateModel):
    status: PatientStatus = PatientStatus.UNKNOWN
    id: int | None = None
    first_name: str | None = None
    last_name: str | None = None
    dob: str | None = None
    phone: str | None = None
    email: str | None = None
    is_name_confirmed: bool = False
    intake_step: IntakeStep | None = None

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p)


class BookingInfo(_StateModel):
    appointment_type_id: str | None = None
    appointment_type_name: str | None = None
    spoken_name: str | None = None
    duration: int | None = None
    is_urgent: bool = False
    presented_slots: list[SlotData] = Field(default_factory=list)
    selected_slot: SlotData | None = None
    held_slot_id: str | None = None
    held_slot_expires_at: datetime | None = None
    confirmed_booking_id: str | None = None

    @property
    def display_name(self) -> str:
        return self.spoken_name or self.appointment_type_name or "appointment"


class InsuranceInfo(_StateModel):
    status: InsuranceStatus = InsuranceStatus.NOT_CHECKED
    queried_plan: str | None = None


class ConversationState(_StateModel):
    """Everything we remember about one voice call between webhooks."""

    call_id: str
    practice_id: str
    stage: Stage = Stage.GREETING
    last_action: LastAction | None = None
    patient: PatientInfo = Field(default_factory=PatientInfo)
    booking: BookingInfo = Field(default_factory=BookingInfo)
    insurance: InsuranceInfo = Field(default_factory=InsuranceInfo)
    # Bumped by the store on every successful save
    version: int = 0

    @classmethod
    def initial(cls, call_id: str, practice_id: str) -> ConversationState:
        return cls(
            call_id=call_id,
            practice_id=practice_id,
            stage=Stage.GREETING,
            last_action=LastAction.GREETED,
        )

    def apply(self, delta: Mapping[str, Any]) -> ConversationState:
        """Return a new state with *delta* deep-merged over this one."""
        merged = deep_merge(self.model_dump(), delta)
        # Identifiers are immutable for the life of the call
        merged["call_id"] = self.call_id
        merged["practice_id"] = self.practice_id
        return ConversationState.model_validate(merged)

    def to_document(self) -> dict[str, Any]:
        """JSON-safe camelCase document for persistence."""
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> ConversationState:
        return cls.model_validate(document)


# ── Helpers ──────────────────────────────────────────────────────────


def deep_merge(base: Mapping[str, Any], delta: Mapping[str, Any]) -> dict[str, Any]:
    """Merge *delta* into a copy of *base*, recursing into nested mappings.

    Lists and scalars in *delta* replace the base value outright, and an
    explicit ``None`` clears the field.
    """
    result = dict(base)
    for key, value in delta.items():
        current = result.get(key)
        if isinstance(value, Mapping) and isinstance(current, Mapping):
            result[key] = deep_merge(current, value)
        else:
            result[key] = value
    return result


def parse_iso_datetime(value: str) -> datetime:
    """Parse an ISO-8601 timestamp as returned by NexHealth (``Z`` allowed)."""
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)
