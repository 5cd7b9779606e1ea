"""Shared test fixtures for the dental booking test suite."""

from __future__ import annotations

import os
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest


def pytest_configure(config):
    """Set test environment variables BEFORE collection starts.

    This runs before any test module is imported, so config.py won't fail
    on module load.
    """
    os.environ.setdefault("ANTHROPIC_API_KEY", "test-anthropic-key-123")
    os.environ.setdefault("NEXHEALTH_API_KEY", "test-nexhealth-key-456")
    os.environ.setdefault("METRICS_ENABLED", "false")
    os.environ.setdefault("DATABASE_URL", "sqlite://")
    os.environ.setdefault("RESEND_API_KEY", "")


PRACTICE_ID = "practice-1"
PRACTICE_TZ = "America/Chicago"
SUBDOMAIN = "bright-smiles"
LOCATION_ID = 100
PROVIDER_ID = 501
OPERATORY_ID = 701

# Monday, July 13 2026, 10:00 AM in Chicago (CDT, UTC-5)
NOW = datetime(2026, 7, 13, 15, 0, tzinfo=UTC)


# ── Fakes ────────────────────────────────────────────────────────────


class FakeClassifier:
    """Classifier stand-in: replays canned answers and records prompts."""

    def __init__(self, *answers: str):
        self.answers = list(answers)
        self.prompts: list[tuple[str, str]] = []
        self.error: Exception | None = None

    def classify(self, prompt: str, *, operation: str = "classify") -> str:
        self.prompts.append((operation, prompt))
        if self.error is not None:
            raise self.error
        if not self.answers:
            raise AssertionError(f"Unexpected classifier call ({operation})")
        return self.answers.pop(0)


class FakeClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


# ── Database ─────────────────────────────────────────────────────────


@pytest.fixture
def engine():
    from dental_booking.services.database import build_engine, create_schema

    eng = build_engine("sqlite://")
    create_schema(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    from dental_booking.services.database import build_session_factory

    return build_session_factory(engine)


@pytest.fixture
def seeded_db(session_factory):
    """One practice: an active provider and operatory, plus inactive ones
    that must never show up in a slot search."""
    from dental_booking.services.practice_store import (
        AppointmentTypeRow,
        OperatoryRow,
        PracticeRow,
        ProviderRow,
        provider_appointment_types,
        provider_operatories,
    )

    with session_factory() as session, session.begin():
        session.add(PracticeRow(
            id=PRACTICE_ID,
            name="Bright Smiles Dental",
            timezone=PRACTICE_TZ,
            phone="512-555-0100",
            nexhealth_subdomain=SUBDOMAIN,
            nexhealth_location_id=LOCATION_ID,
            assistant_id="assistant-1",
            accepted_insurances="Delta Dental, Cigna, Aetna",
        ))
        session.add_all([
            AppointmentTypeRow(
                id="cleaning", practice_id=PRACTICE_ID, nexhealth_appointment_type_id=11,
                name="Adult Cleaning", spoken_name="cleaning", duration=30,
                keywords="cleaning, hygiene, polish", bookable_online=True,
            ),
            AppointmentTypeRow(
                id="emergency", practice_id=PRACTICE_ID, nexhealth_appointment_type_id=12,
                name="Limited Exam", spoken_name="emergency exam", duration=60,
                keywords="pain, toothache, broken tooth", bookable_online=True,
                check_immediate_next_available=True,
            ),
            AppointmentTypeRow(
                id="whitening", practice_id=PRACTICE_ID, nexhealth_appointment_type_id=13,
                name="Whitening", duration=60, bookable_online=True,
            ),
            AppointmentTypeRow(
                id="ortho", practice_id=PRACTICE_ID, nexhealth_appointment_type_id=14,
                name="Ortho Consult", duration=45, bookable_online=False,
            ),
            ProviderRow(id="prov-1", practice_id=PRACTICE_ID, nexhealth_provider_id=PROVIDER_ID,
                        first_name="Amy", last_name="Reyes", is_active=True),
            ProviderRow(id="prov-2", practice_id=PRACTICE_ID, nexhealth_provider_id=502,
                        first_name="Ben", last_name="Cole", is_active=False),
            OperatoryRow(id="op-1", practice_id=PRACTICE_ID, nexhealth_operatory_id=OPERATORY_ID,
                         name="Room 1", is_active=True),
            OperatoryRow(id="op-2", practice_id=PRACTICE_ID, nexhealth_operatory_id=702,
                         name="Room 2", is_active=False),
        ])
        session.flush()
        session.execute(provider_appointment_types.insert(), [
            {"provider_id": "prov-1", "appointment_type_id": "cleaning"},
            {"provider_id": "prov-1", "appointment_type_id": "emergency"},
            {"provider_id": "prov-2", "appointment_type_id": "cleaning"},
        ])
        session.execute(provider_operatories.insert(), [
            {"provider_id": "prov-1", "operatory_id": "op-1"},
            {"provider_id": "prov-1", "operatory_id": "op-2"},
            {"provider_id": "prov-2", "operatory_id": "op-1"},
        ])
    return session_factory


@pytest.fixture
def practice_store(seeded_db):
    from dental_booking.services.practice_store import PracticeStore

    return PracticeStore(seeded_db, PRACTICE_TZ)


@pytest.fixture
def practice(practice_store):
    return practice_store.get_practice(PRACTICE_ID)


# ── Collaborators ────────────────────────────────────────────────────


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def classifier():
    return FakeClassifier()


@pytest.fixture
def nexhealth():
    """NexHealth client double; tests set return values per operation."""
    from dental_booking.services.nexhealth_client import NexHealthClient

    client = MagicMock(spec=NexHealthClient)
    client.search_patients.return_value = []
    client.list_available_slots.return_value = {"data": [], "next_available_date": None}
    client.hold_slot.return_value = "hold-1"
    client.create_appointment.return_value = "appt-1"
    client.create_patient.return_value = 9001
    return client


@pytest.fixture
def services(nexhealth, practice_store, classifier, clock, seeded_db):
    from dental_booking.scheduling.booking import BookingCommitter
    from dental_booking.scheduling.slot_search import SlotSearchEngine
    from dental_booking.services.notifications import EmailNotifier
    from dental_booking.services.state_store import BookingRecordWriter
    from dental_booking.tools import ToolServices

    return ToolServices(
        nexhealth=nexhealth,
        practice_store=practice_store,
        slot_search=SlotSearchEngine(nexhealth, practice_store),
        committer=BookingCommitter(nexhealth, 10, clock=clock),
        classifier=classifier,
        booking_records=BookingRecordWriter(seeded_db),
        notifier=MagicMock(spec=EmailNotifier),
    )


# ── Factories ────────────────────────────────────────────────────────


@pytest.fixture
def slots_body():
    """Factory for an ``/appointment_slots`` response body."""

    def _make(*times: str, pid: int = PROVIDER_ID, oid: int = OPERATORY_ID,
              next_available_date: str | None = None) -> dict:
        return {
            "data": [{
                "pid": pid,
                "lid": LOCATION_ID,
                "slots": [{"time": t, "operatory_id": oid} for t in times],
            }],
            "next_available_date": next_available_date,
        }

    return _make


@pytest.fixture
def make_slot():
    from dental_booking.models import SlotData

    def _make(time: str, provider_id: int = PROVIDER_ID, operatory_id: int = OPERATORY_ID):
        return SlotData(
            time=time, provider_id=provider_id, operatory_id=operatory_id, location_id=LOCATION_ID,
        )

    return _make


@pytest.fixture
def make_state():
    """Factory for a ConversationState with a delta applied on top."""
    from dental_booking.models import ConversationState

    def _make(delta: dict | None = None, call_id: str = "call-1") -> ConversationState:
        state = ConversationState.initial(call_id, PRACTICE_ID)
        return state.apply(delta) if delta else state

    return _make


@pytest.fixture
def cleaning_booking():
    """Booking delta for a chosen cleaning appointment type."""
    return {
        "appointment_type_id": "cleaning",
        "appointment_type_name": "Adult Cleaning",
        "spoken_name": "cleaning",
        "duration": 30,
    }


@pytest.fixture
def mock_nexhealth_response():
    """Factory fixture for creating mock httpx responses."""

    def _make(data: dict, status_code: int = 200):
        mock = MagicMock()
        mock.status_code = status_code
        mock.json.return_value = data
        mock.text = str(data)
        return mock

    return _make
