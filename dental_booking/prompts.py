"""Prompt templates for the constrained-output classifier calls."""

from __future__ import annotations

NO_MATCH = "NO_MATCH"
INVALID_DATE = "INVALID_DATE"

SLOT_MATCH_PROMPT = """A dental patient is choosing an appointment time on a phone call.
These are the ONLY times that were offered to them:

{options}

The patient said: "{utterance}"

Which numbered option did the patient choose?
- Match on day, date and time of day. "The first one" or "the earlier one" refer to list order.
- If the words fit more than one option equally well, or fit none, answer {no_match}.
- Never pick an option the patient did not clearly indicate.

RETURN ONLY THE NUMBER of the chosen option, or {no_match}. No other words."""

APPOINTMENT_TYPE_PROMPT = """A caller to a dental office described why they want an appointment:
"{request}"

Available appointment types (id | name | keywords):
{options}

Pick the single appointment type that best fits the caller's request.
If none of them reasonably fits, answer {no_match}.

RETURN ONLY THE ID of the appointment type, or {no_match}. No other words."""

DATE_NORMALIZE_PROMPT = """Today is {today} ({weekday}) in the practice's timezone.
A caller asked for an appointment on: "{query}"

Convert that to a calendar date in YYYY-MM-DD format.
- Interpret relative phrases ("next Tuesday", "the 15th", "a week from Friday") from today.
- Never return a date before today.
- If it is not a recognisable single date, answer {invalid}.

RETURN ONLY the date as YYYY-MM-DD, or {invalid}. No other words."""


def build_slot_match_prompt(utterance: str, options: list[str]) -> str:
    numbered = "\n".join(f"{i}. {label}" for i, label in enumerate(options, start=1))
    return SLOT_MATCH_PROMPT.format(options=numbered, utterance=utterance, no_match=NO_MATCH)


def build_appointment_type_prompt(request: str, options: list[tuple[str, str, str]]) -> str:
    lines = "\n".join(
        f"- {type_id} | {name} | {keywords or 'none'}" for type_id, name, keywords in options
    )
    return APPOINTMENT_TYPE_PROMPT.format(request=request, options=lines, no_match=NO_MATCH)


def build_date_prompt(query: str, today: str, weekday: str) -> str:
    return DATE_NORMALIZE_PROMPT.format(
        query=query, today=today, weekday=weekday, invalid=INVALID_DATE,
    )
