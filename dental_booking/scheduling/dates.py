"""Work out where a slot search should start.

Simple inputs (ISO dates, "today", "tomorrow", weekday names) are handled
directly.  Anything else goes to the classifier, which must answer with a
``YYYY-MM-DD`` date or ``INVALID_DATE``.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta

from dental_booking.prompts import INVALID_DATE, build_date_prompt
from dental_booking.services.llm import Classifier

logger = logging.getLogger(__name__)

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

# Search window lengths in days
SPECIFIC_DATE_WINDOW = 1
URGENT_WINDOW = 7
DEFAULT_WINDOW = 3


def next_weekday(today: date, day_names: list[str]) -> date | None:
    """Earliest date on or after *today* falling on one of *day_names*."""
    targets = {WEEKDAYS.index(n.strip().lower()) for n in day_names if n.strip().lower() in WEEKDAYS}
    if not targets:
        return None
    return min(today + timedelta(days=(t - today.weekday()) % 7) for t in targets)


def normalize_requested_date(
    query: str,
    today: date,
    classifier: Classifier,
) -> date | None:
    """Resolve a spoken date to a calendar date, or ``None`` if we can't.

    Dates in the past resolve to ``None``.
    """
    text = (query or "").strip()
    if not text:
        return None

    lowered = text.lower()
    if lowered == "today":
        return today
    if lowered == "tomorrow":
        return today + timedelta(days=1)
    if lowered in WEEKDAYS:
        return next_weekday(today, [lowered])

    try:
        resolved = date.fromisoformat(text)
    except ValueError:
        resolved = None

    if resolved is None:
        try:
            answer = classifier.classify(
                build_date_prompt(text, today.isoformat(), f"{today:%A}"),
                operation="date_normalize",
            )
        except Exception as exc:
            logger.warning("Date normalizer failed for %r: %s", text, exc)
            return None
        answer = answer.strip()
        if not answer or INVALID_DATE in answer.upper():
            return None
        try:
            resolved = date.fromisoformat(answer[:10])
        except ValueError:
            logger.warning("Date normalizer returned %r for %r", answer, text)
            return None

    if resolved < today:
        logger.info("Requested date %s is in the past", resolved)
        return None
    return resolved
