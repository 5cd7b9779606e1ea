"""Match a caller's reason for visiting to a configured appointment type."""

from __future__ import annotations

import logging
import re

from dental_booking.prompts import NO_MATCH, build_appointment_type_prompt
from dental_booking.services.llm import Classifier
from dental_booking.services.practice_store import AppointmentTypeConfig

logger = logging.getLogger(__name__)

URGENT_KEYWORDS = frozenset({
    "pain", "toothache", "emergency", "hurts", "broken",
    "urgent", "abscess", "swelling", "infection",
})


def is_urgent_request(text: str) -> bool:
    words = set(re.findall(r"[a-z]+", (text or "").lower()))
    return bool(words & URGENT_KEYWORDS)


def match_appointment_type(
    request: str,
    appointment_types: list[AppointmentTypeConfig],
    classifier: Classifier,
) -> AppointmentTypeConfig | None:
    """Ask the classifier for one of *appointment_types* by id.

    Returns ``None`` on ``NO_MATCH``, an unknown id, or a classifier error.
    """
    if not appointment_types or not request.strip():
        return None

    prompt = build_appointment_type_prompt(
        request.strip(),
        [(t.id, t.name, t.keywords or "") for t in appointment_types],
    )
    try:
        answer = classifier.classify(prompt, operation="appointment_type_match")
    except Exception as exc:
        logger.warning("Appointment type matcher failed: %s", exc)
        return None

    answer = answer.strip().strip("\"'`.")
    if not answer or answer.upper() == NO_MATCH:
        return None

    by_id = {t.id: t for t in appointment_types}
    matched = by_id.get(answer)
    if matched is None:
        logger.warning("Appointment type matcher returned unknown id %r", answer)
    return matched
