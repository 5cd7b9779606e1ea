"""Patient identity: returning-patient lookup and new-patient creation.

Lookup is deliberately strict.  The date of birth must equal a candidate's
stored DOB as a trimmed string, and more than one record passing that
check is never resolved automatically.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from dental_booking.errors import AmbiguousMatchError, NotFoundError, ValidationError
from dental_booking.models import PatientInfo
from dental_booking.services.nexhealth_client import NexHealthClient
from dental_booking.services.practice_store import PracticeContext

logger = logging.getLogger(__name__)

_DOB_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%m-%d-%Y", "%B %d %Y", "%B %d, %Y", "%b %d %Y", "%b %d, %Y")


@dataclass(frozen=True)
class PatientMatch:
    patient_id: int
    first_name: str
    last_name: str
    dob: str
    phone: str | None = None
    email: str | None = None

    @property
    def name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


def parse_date_of_birth(raw: str | None, today: date | None = None) -> str | None:
    """Best-effort conversion of a spoken/typed DOB to ``YYYY-MM-DD``.

    Used for new-patient intake only; returning-patient lookup compares
    the raw trimmed string.
    """
    text = re.sub(r"(\d)(st|nd|rd|th)\b", r"\1", (raw or "").strip(), flags=re.IGNORECASE)
    if not text:
        return None
    for fmt in _DOB_FORMATS:
        try:
            parsed = datetime.strptime(text, fmt).date()
        except ValueError:
            continue
        if parsed > (today or date.today()):
            return None
        return parsed.isoformat()
    return None


def _stored_dob(candidate: dict[str, Any]) -> str:
    bio = candidate.get("bio") or {}
    return str(bio.get("date_of_birth") or candidate.get("date_of_birth") or "").strip()


def _to_match(candidate: dict[str, Any]) -> PatientMatch:
    bio = candidate.get("bio") or {}
    return PatientMatch(
        patient_id=int(candidate["id"]),
        first_name=candidate.get("first_name") or "",
        last_name=candidate.get("last_name") or "",
        dob=_stored_dob(candidate),
        phone=bio.get("phone_number"),
        email=candidate.get("email"),
    )


def find_and_confirm_patient(
    client: NexHealthClient,
    practice: PracticeContext,
    full_name: str,
    date_of_birth: str,
) -> PatientMatch:
    """Find exactly one patient by name with an exactly matching DOB.

    Raises :class:`NotFoundError` for zero matches and
    :class:`AmbiguousMatchError` for more than one.
    """
    name = (full_name or "").strip()
    dob = (date_of_birth or "").strip()
    if not name or not dob:
        raise ValidationError("Both full name and date of birth are required for lookup")

    candidates = client.search_patients(practice.subdomain, practice.location_id, name)
    matches = [c for c in candidates if _stored_dob(c) == dob]
    logger.info(
        "Patient lookup at %s: %d name candidates, %d DOB matches",
        practice.id, len(candidates), len(matches),
    )

    if not matches:
        raise NotFoundError(
            f"No patient named {name!r} with DOB {dob!r}",
            user_message=(
                "I wasn't able to find a patient record with that name and date of birth. "
                "No problem, I can set you up as a new patient."
            ),
        )
    if len(matches) > 1:
        office = f" at {practice.phone}" if practice.phone else ""
        raise AmbiguousMatchError(
            f"{len(matches)} patients match {name!r} / {dob!r}",
            user_message=(
                "For your security, I'm not able to confirm which record is yours over the phone. "
                f"Please call our office{office} and the team will get you booked."
            ),
        )
    return _to_match(matches[0])


def create_or_reuse_patient(
    client: NexHealthClient,
    practice: PracticeContext,
    patient: PatientInfo,
    provider_id: int,
) -> int:
    """Create the patient upstream, reusing an exact existing match.

    The lookup first makes a redelivered webhook (create succeeded, reply
    lost) land on the same record instead of creating a duplicate.
    """
    if not (patient.first_name and patient.last_name and patient.dob and patient.phone):
        raise ValidationError("Name, date of birth and phone are required to create a patient")

    try:
        existing = find_and_confirm_patient(client, practice, patient.full_name, patient.dob)
    except NotFoundError:
        existing = None
    if existing is not None:
        logger.info("Reusing existing patient %s for %s", existing.patient_id, practice.id)
        return existing.patient_id

    return client.create_patient(
        practice.subdomain,
        practice.location_id,
        provider_id,
        first_name=patient.first_name,
        last_name=patient.last_name,
        date_of_birth=patient.dob,
        phone=patient.phone,
        email=patient.email,
    )
