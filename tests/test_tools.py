"""Tests for the appointment-type, availability, patient and insurance tools."""

from __future__ import annotations

import pytest

from dental_booking.errors import NotFoundError, ValidationError
from dental_booking.models import InsuranceStatus, IntakeStep, PatientStatus, Stage
from dental_booking.state_machine import advance
from dental_booking.tools import TOOLS, ToolContext, get_tool
from dental_booking.tools.availability import (
    CheckAvailableSlotsArgs,
    FindAppointmentTypeArgs,
    check_available_slots,
    find_appointment_type,
)
from dental_booking.tools.insurance import InsuranceInfoArgs, insurance_info
from dental_booking.tools.patients import (
    CreatePatientRecordArgs,
    FindAndConfirmPatientArgs,
    create_patient_record,
    find_and_confirm,
)


def _run(handler, args, state, practice, services):
    outcome = handler(ToolContext(state=state, practice=practice, services=services), args)
    return advance(state, outcome.delta), outcome


@pytest.fixture
def typed(make_state, cleaning_booking):
    """A caller who has asked for a cleaning."""
    return make_state({"stage": Stage.APPOINTMENT_TYPE_IDENTIFIED, "booking": cleaning_booking})


# ── findAppointmentType ──────────────────────────────────────────────


class TestFindAppointmentType:
    def test_routine_type_asks_for_a_day(self, make_state, practice, services, classifier):
        classifier.answers.append("cleaning")
        state, outcome = _run(
            find_appointment_type, FindAppointmentTypeArgs(patient_request="just a cleaning"),
            make_state(), practice, services,
        )

        assert outcome.next_tool is None
        assert outcome.message == (
            "Okay, I've noted you're looking for a cleaning. What day works best for you?"
        )
        assert state.booking.appointment_type_id == "cleaning"
        assert state.booking.duration == 30
        assert state.booking.is_urgent is False

    def test_classifier_only_sees_bookable_types(self, make_state, practice, services, classifier):
        classifier.answers.append("cleaning")
        _run(
            find_appointment_type, FindAppointmentTypeArgs(patient_request="cleaning"),
            make_state(), practice, services,
        )
        _, prompt = classifier.prompts[0]
        assert "Ortho Consult" not in prompt

    def test_no_match_is_not_found(self, make_state, practice, services, classifier):
        classifier.answers.append("NO_MATCH")
        with pytest.raises(NotFoundError):
            _run(
                find_appointment_type, FindAppointmentTypeArgs(patient_request="a haircut"),
                make_state(), practice, services,
            )


# ── checkAvailableSlots ──────────────────────────────────────────────


class TestCheckAvailableSlots:
    def test_requires_an_appointment_type(self, make_state, practice, services):
        with pytest.raises(ValidationError):
            _run(check_available_slots, CheckAvailableSlotsArgs(), make_state(), practice, services)

    def test_open_request_offers_time_of_day_first(
        self, typed, practice, services, nexhealth, slots_body,
    ):
        nexhealth.list_available_slots.return_value = slots_body(
            "2026-07-14T09:00:00-05:00",
            "2026-07-14T17:30:00-05:00",
            "2026-07-15T10:00:00-05:00",
        )
        state, outcome = _run(check_available_slots, CheckAvailableSlotsArgs(), typed, practice, services)

        assert outcome.message == (
            "On Tuesday, July 14 I have openings in the morning or evening. "
            "I also have availability on Wednesday. What time of day works best for you?"
        )
        assert state.stage is Stage.PRESENTING_SLOTS
        assert len(state.booking.presented_slots) == 3
        assert nexhealth.list_available_slots.call_args.kwargs["days"] == 3

    def test_empty_bucket_falls_back_to_buckets(
        self, typed, practice, services, nexhealth, slots_body,
    ):
        nexhealth.list_available_slots.return_value = slots_body("2026-07-14T09:00:00-05:00")
        _, outcome = _run(
            check_available_slots, CheckAvailableSlotsArgs(time_bucket="afternoon"),
            typed, practice, services,
        )
        assert outcome.message.startswith("I don't have any afternoon openings then.")

    def test_preferred_weekdays_filter_slots(
        self, typed, practice, services, nexhealth, slots_body,
    ):
        nexhealth.list_available_slots.return_value = slots_body(
            "2026-07-14T09:00:00-05:00", "2026-07-15T10:00:00-05:00",
        )
        args = CheckAvailableSlotsArgs.model_validate({"preferredDaysOfWeek": "Wednesday"})
        state, _ = _run(check_available_slots, args, typed, practice, services)

        assert [s.time for s in state.booking.presented_slots] == ["2026-07-15T10:00:00-05:00"]

    def test_late_evening_only_offers_exact_times(
        self, typed, practice, services, nexhealth, slots_body,
    ):
        nexhealth.list_available_slots.return_value = slots_body("2026-07-14T20:30:00-05:00")
        state, outcome = _run(check_available_slots, CheckAvailableSlotsArgs(), typed, practice, services)

        assert outcome.message == (
            "I have Tuesday, July 14 at 8:30 PM available. Would that work for you?"
        )
        assert state.stage is Stage.PRESENTING_SLOTS
        assert [s.time for s in state.booking.presented_slots] == ["2026-07-14T20:30:00-05:00"]

    def test_nothing_open_points_to_next_available_day(
        self, typed, practice, services, nexhealth, slots_body,
    ):
        nexhealth.list_available_slots.return_value = slots_body(next_available_date="2026-07-20")
        state, outcome = _run(check_available_slots, CheckAvailableSlotsArgs(), typed, practice, services)

        assert "The next available day is Monday, July 20." in outcome.message
        assert state.stage is Stage.APPOINTMENT_TYPE_IDENTIFIED
        assert state.booking.presented_slots == []

    def test_past_date_is_rejected(self, typed, practice, services):
        with pytest.raises(ValidationError):
            _run(
                check_available_slots, CheckAvailableSlotsArgs(requested_date="2026-07-01"),
                typed, practice, services,
            )


# ── Patients ─────────────────────────────────────────────────────────


class TestFindAndConfirm:
    def test_unknown_caller_starts_intake_with_what_they_said(self, typed, practice, services):
        state, outcome = _run(
            find_and_confirm,
            FindAndConfirmPatientArgs(full_name="sam lee", date_of_birth="April 12, 1988"),
            typed, practice, services,
        )

        assert outcome.success is True
        assert state.stage is Stage.COLLECTING_NEW_PATIENT
        assert state.patient.first_name == "Sam"
        assert state.patient.dob == "1988-04-12"
        assert state.patient.intake_step is IntakeStep.CONFIRM_NAME
        assert "S. A. M." in outcome.message

    def test_existing_caller_with_type_chains_to_slot_search(
        self, typed, practice, services, nexhealth,
    ):
        nexhealth.search_patients.return_value = [{
            "id": 12, "first_name": "Jane", "last_name": "Doe",
            "bio": {"date_of_birth": "1990-01-01"},
        }]
        state, outcome = _run(
            find_and_confirm,
            FindAndConfirmPatientArgs(full_name="Jane Doe", date_of_birth="1990-01-01"),
            typed, practice, services,
        )

        assert state.patient.id == 12
        assert state.patient.status is PatientStatus.IDENTIFIED_EXISTING
        assert outcome.next_tool.name == "checkAvailableSlots"


class TestCreatePatientRecord:
    def test_final_answer_registers_the_patient(self, typed, practice, services, nexhealth):
        collecting = typed.apply({
            "stage": Stage.COLLECTING_NEW_PATIENT,
            "patient": {
                "first_name": "Sam", "last_name": "Lee", "is_name_confirmed": True,
                "dob": "1988-04-12", "phone": "5125550142", "email": "sam@example.com",
                "intake_step": IntakeStep.ASK_INSURANCE,
            },
        })

        state, outcome = _run(
            create_patient_record, CreatePatientRecordArgs(insurance_name="Cigna"),
            collecting, practice, services,
        )

        assert state.patient.id == 9001
        assert state.patient.status is PatientStatus.NEW_DETAILS_COLLECTED
        assert state.stage is Stage.PATIENT_IDENTIFIED
        assert state.insurance.status is InsuranceStatus.IN_NETWORK
        assert outcome.message == (
            "Thank you, Sam! You're all set up as a new patient. "
            "And good news, we're in network with Cigna."
        )
        assert outcome.next_tool.name == "checkAvailableSlots"
        assert nexhealth.create_patient.call_args.args[2] == 501

    def test_intermediate_step_only_collects(self, make_state, practice, services, nexhealth):
        state, outcome = _run(
            create_patient_record, CreatePatientRecordArgs(full_name="Sam Lee"),
            make_state({"patient": {"intake_step": IntakeStep.ASK_NAME}}), practice, services,
        )
        assert state.stage is Stage.COLLECTING_NEW_PATIENT
        assert state.patient.intake_step is IntakeStep.CONFIRM_NAME
        nexhealth.create_patient.assert_not_called()


# ── insuranceInfo ────────────────────────────────────────────────────


class TestInsuranceInfo:
    def test_lists_accepted_carriers(self, make_state, practice, services):
        _, outcome = _run(insurance_info, InsuranceInfoArgs(), make_state(), practice, services)
        assert outcome.message == (
            "We're in network with Delta Dental, Cigna, and Aetna. Which insurance do you have?"
        )

    def test_out_of_network_is_still_welcome(self, make_state, practice, services):
        state, outcome = _run(
            insurance_info, InsuranceInfoArgs(insurance_name="MetLife"), make_state(), practice, services,
        )
        assert state.insurance.status is InsuranceStatus.OUT_OF_NETWORK
        assert state.insurance.queried_plan == "MetLife"
        assert "still welcome" in outcome.message


# ── Registry ─────────────────────────────────────────────────────────


class TestRegistry:
    def test_every_tool_is_registered(self):
        assert set(TOOLS) == {
            "findAppointmentType", "checkAvailableSlots", "findAndConfirmPatient",
            "createPatientRecord", "selectAndBookSlot", "holdAppointmentSlot", "insuranceInfo",
        }

    def test_get_tool_looks_up_by_exact_name(self):
        assert get_tool("insuranceInfo").args_model is InsuranceInfoArgs
        assert get_tool("insuranceinfo") is None
