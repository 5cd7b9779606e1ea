"""Text helpers for speaking identity data back to a caller.

Speech-to-text mangles names, emails and phone numbers often enough that
every one of them is read back in a form that is hard to mishear:
names letter by letter, phone numbers in 3-3-4 groups.
"""

from __future__ import annotations

import re
from datetime import date, datetime
from zoneinfo import ZoneInfo

_EMAIL_RE = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+"
    r"@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)+$"
)

_AFFIRMATIVE_PHRASES = (
    "that's right", "thats right", "that is right", "sounds good",
    "go ahead", "that's correct", "that is correct",
)
_AFFIRMATIVE_WORDS = frozenset({
    "yes", "yeah", "yep", "yup", "correct", "right", "sure", "ok", "okay",
    "perfect", "absolutely", "confirm", "confirmed", "true",
})
_NEGATIVE_PHRASES = (
    "not right", "not correct", "that's wrong", "thats wrong", "that is wrong",
    "not quite", "don't have", "do not have",
)
_NEGATIVE_WORDS = frozenset({
    "no", "nope", "nah", "wrong", "incorrect", "false", "none", "negative",
})


# ── Spelling ─────────────────────────────────────────────────────────


def spell_out(text: str) -> str:
    """``"Jane"`` -> ``"J. A. N. E."``.  Non-letters are dropped."""
    letters = [ch.upper() for ch in text if ch.isalpha()]
    if not letters:
        return ""
    return ". ".join(letters) + "."


def spell_email(email: str) -> str:
    """Spell the local part letter by letter and keep the domain as words.

    Digits and dots in the local part are kept so ``jane.doe99`` is not
    read back as ``janedoe``.
    """
    local, _, domain = email.partition("@")
    spoken = []
    for ch in local:
        if ch.isalpha():
            spoken.append(ch.upper())
        elif ch.isdigit():
            spoken.append(ch)
        elif ch == ".":
            spoken.append("dot")
        elif ch in "-_":
            spoken.append("dash" if ch == "-" else "underscore")
    head = ", ".join(spoken)
    return f"{head}, at {domain}" if domain else head


# ── Phone numbers ────────────────────────────────────────────────────


def normalize_phone(raw: str) -> str:
    """Keep digits only (``"(512) 334-1212"`` -> ``"5123341212"``)."""
    return re.sub(r"\D", "", raw or "")


def is_valid_phone(digits: str) -> bool:
    return len(digits) == 10 or (len(digits) == 11 and digits.startswith("1"))


def format_phone_for_readback(raw: str) -> str:
    """Group digits the way people say phone numbers.

    10 digits -> ``"5 1 2... 3 3 4... 1 2 1 2"``; 11 digits put the country
    code first; anything else is read digit by digit.
    """
    digits = normalize_phone(raw)

    def say(group: str) -> str:
        return " ".join(group)

    if len(digits) == 10:
        return f"{say(digits[:3])}... {say(digits[3:6])}... {say(digits[6:])}"
    if len(digits) == 11:
        return f"{digits[0]}... {say(digits[1:4])}... {say(digits[4:7])}... {say(digits[7:])}"
    return say(digits)


# ── Email ────────────────────────────────────────────────────────────


def normalize_spoken_email(raw: str) -> str:
    """Turn ``"jane dot doe at gmail dot com"`` into ``"jane.doe@gmail.com"``."""
    text = (raw or "").strip().lower()
    text = re.sub(r"\s+at\s+", "@", text)
    text = re.sub(r"\s+dot\s+", ".", text)
    return re.sub(r"\s+", "", text)


def is_valid_email(email: str) -> bool:
    return bool(email) and bool(_EMAIL_RE.match(email.strip()))


# ── Names ────────────────────────────────────────────────────────────


def parse_full_name(full_name: str) -> tuple[str, str | None]:
    """Split a spoken full name into (first, last).  Middle names go with last."""
    parts = (full_name or "").split()
    if not parts:
        return "", None
    if len(parts) == 1:
        return parts[0].title(), None
    return parts[0].title(), " ".join(p.title() for p in parts[1:])


# ── Yes / no ─────────────────────────────────────────────────────────


def _words(text: str) -> set[str]:
    return set(re.findall(r"[a-z']+", (text or "").lower()))


def is_negative(text: str) -> bool:
    lowered = (text or "").lower()
    if any(phrase in lowered for phrase in _NEGATIVE_PHRASES):
        return True
    return bool(_words(text) & _NEGATIVE_WORDS)


def is_affirmative(text: str) -> bool:
    """Yes-ish answer that is not also a no ("yes... no wait" is a no)."""
    if is_negative(text):
        return False
    lowered = (text or "").lower()
    if any(phrase in lowered for phrase in _AFFIRMATIVE_PHRASES):
        return True
    return bool(_words(text) & _AFFIRMATIVE_WORDS)


# ── Dates and times ──────────────────────────────────────────────────


def format_time(dt: datetime) -> str:
    """``9:05 AM`` style, without a leading zero on the hour."""
    hour = dt.hour % 12 or 12
    return f"{hour}:{dt:%M} {'AM' if dt.hour < 12 else 'PM'}"


def format_day(day: date) -> str:
    """``Tuesday, July 15``."""
    return f"{day:%A}, {day:%B} {day.day}"


def format_slot_time(start: datetime, tz: ZoneInfo) -> str:
    """``Tuesday, July 15 at 9:00 AM`` in the practice timezone."""
    local = start.astimezone(tz)
    return f"{format_day(local.date())} at {format_time(local)}"


def join_spoken(items: list[str], conjunction: str = "or") -> str:
    """``["a", "b", "c"]`` -> ``"a, b, or c"``."""
    if not items:
        return ""
    if len(items) == 1:
        return items[0]
    if len(items) == 2:
        return f"{items[0]} {conjunction} {items[1]}"
    return f"{', '.join(items[:-1])}, {conjunction} {items[-1]}"
