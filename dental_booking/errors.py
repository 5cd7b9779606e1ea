"""Error taxonomy shared by the scheduling core and the tool handlers.

Every error carries two strings:

* ``code``: stable machine identifier written to the tool log.
* ``user_message``: text that is safe to speak to the caller.

Handlers raise these; the orchestrator turns them into in-band tool
errors so the voice platform always gets a parseable HTTP 200 reply.
"""

from __future__ import annotations


class BookingError(Exception):
    """Base class for every handled failure in a booking conversation."""

    code = "BOOKING_ERROR"
    default_user_message = (
        "I'm sorry, something went wrong on my end. Could you try that again?"
    )

    def __init__(self, message: str, user_message: str | None = None):
        self.user_message = user_message or self.default_user_message
        super().__init__(message)


class ConfigurationError(BookingError):
    """Practice is missing upstream identifiers or bookable resources."""

    code = "CONFIGURATION_ERROR"
    default_user_message = (
        "I'm sorry, I'm not able to book that online right now. "
        "Please contact the office directly and they'll take care of you."
    )


class NotFoundError(BookingError):
    """Patient or appointment type could not be matched."""

    code = "NOT_FOUND"
    default_user_message = "I'm sorry, I couldn't find that. Could you say it another way?"


class AmbiguousMatchError(BookingError):
    """More than one patient record matches; never resolved automatically."""

    code = "AMBIGUOUS_MATCH"
    default_user_message = (
        "For your security, I can't confirm your identity over this line. "
        "Please call our office directly so the team can help you."
    )


class SlotConflictError(BookingError):
    """The upstream scheduler rejected a hold or booking for a taken slot."""

    code = "SLOT_CONFLICT"
    default_user_message = (
        "I'm so sorry, it looks like that time was just taken. "
        "Let me look for other available times for you."
    )


class HoldExpiredError(SlotConflictError):
    """The hold on the selected slot lapsed before the caller confirmed."""

    code = "HOLD_EXPIRED"
    default_user_message = (
        "I'm sorry, the hold on that time ran out before we could finish. "
        "Let me check that it's still available."
    )


class UpstreamError(BookingError):
    """Network failure, 5xx, or malformed response from an upstream API."""

    code = "UPSTREAM_ERROR"
    default_user_message = (
        "I'm sorry, I'm having trouble reaching our scheduling system right now. "
        "Could you give me a moment and try that again?"
    )


class ValidationError(BookingError):
    """Malformed or missing tool arguments."""

    code = "VALIDATION_ERROR"
    default_user_message = (
        "I'm sorry, I didn't quite catch that. Could you repeat it for me?"
    )


class IllegalTransitionError(ValidationError):
    """A handler proposed a state change the conversation flow does not allow."""

    code = "ILLEGAL_TRANSITION"
    default_user_message = (
        "I'm sorry, I can't do that step just yet. Let's pick up where we left off."
    )
