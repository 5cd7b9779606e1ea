"""Resolve a caller's free-text choice against the slots we offered them."""

from __future__ import annotations

import logging
import re
from zoneinfo import ZoneInfo

from dental_booking.models import SlotData
from dental_booking.prompts import NO_MATCH, build_slot_match_prompt
from dental_booking.scheduling.speech import format_slot_time
from dental_booking.services.llm import Classifier

logger = logging.getLogger(__name__)


def match_user_selection_to_slot(
    utterance: str,
    presented_slots: list[SlotData],
    tz: ZoneInfo,
    classifier: Classifier,
) -> SlotData | None:
    """Return the offered slot the caller picked, or ``None``.

    The answer is always an element of *presented_slots* picked by index.
    Ambiguity, model errors and out-of-range answers all come back as
    ``None`` so the caller re-asks instead of guessing.
    """
    if not presented_slots or not utterance or not utterance.strip():
        return None

    options = [format_slot_time(slot.start, tz) for slot in presented_slots]
    prompt = build_slot_match_prompt(utterance.strip(), options)
    try:
        answer = classifier.classify(prompt, operation="slot_match")
    except Exception as exc:
        logger.warning("Slot matcher failed, treating as no match: %s", exc)
        return None

    if NO_MATCH in answer.upper():
        logger.debug("Slot matcher: no match for %r", utterance)
        return None

    numbers = re.findall(r"\d+", answer)
    if len(numbers) != 1:
        logger.warning("Slot matcher returned unparseable answer %r", answer)
        return None
    index = int(numbers[0]) - 1
    if not 0 <= index < len(presented_slots):
        logger.warning("Slot matcher returned out-of-range option %s", numbers[0])
        return None

    chosen = presented_slots[index]
    logger.debug("Slot matcher: %r -> %s", utterance, options[index])
    return chosen
