"""Tests for the booking confirmation email sender."""

from __future__ import annotations

import logging
from unittest.mock import MagicMock

import httpx

from dental_booking.services.notifications import RESEND_URL, EmailNotifier

BOOKING = dict(
    patient_name="Sam <Lee>",
    practice_name="Bright Smiles Dental",
    appointment_name="cleaning",
    when="Tuesday, July 14 at 9:00 AM",
)


def _notifier(http: MagicMock, api_key: str = "re_test") -> EmailNotifier:
    return EmailNotifier(api_key, "front@brightsmiles.test", http_client=http)


class TestEmailNotifier:
    def test_disabled_without_api_key(self):
        http = MagicMock(spec=httpx.Client)
        notifier = _notifier(http, api_key="")

        assert notifier.enabled is False
        assert notifier.send_booking_confirmation(to_email="sam@example.com", **BOOKING) is False
        http.post.assert_not_called()

    def test_no_email_on_file_is_skipped(self):
        http = MagicMock(spec=httpx.Client)
        assert _notifier(http).send_booking_confirmation(to_email=None, **BOOKING) is False
        http.post.assert_not_called()

    def test_sends_escaped_html_through_resend(self):
        http = MagicMock(spec=httpx.Client)
        assert _notifier(http).send_booking_confirmation(to_email="sam@example.com", **BOOKING)

        url = http.post.call_args.args[0]
        kwargs = http.post.call_args.kwargs
        assert url == RESEND_URL
        assert kwargs["headers"] == {"Authorization": "Bearer re_test"}
        assert kwargs["json"]["from"] == "front@brightsmiles.test"
        assert kwargs["json"]["to"] == ["sam@example.com"]
        assert kwargs["json"]["subject"] == "Your appointment at Bright Smiles Dental"
        assert "Sam &lt;Lee&gt;" in kwargs["json"]["html"]
        assert "<strong>Tuesday, July 14 at 9:00 AM</strong>" in kwargs["json"]["html"]

    def test_failure_is_logged_not_raised(self, caplog):
        http = MagicMock(spec=httpx.Client)
        http.post.side_effect = httpx.ConnectError("refused")

        with caplog.at_level(logging.ERROR, logger="dental_booking.services.notifications"):
            sent = _notifier(http).send_booking_confirmation(to_email="sam@example.com", **BOOKING)

        assert sent is False
        assert "Failed to send confirmation email" in caplog.text

    def test_http_error_status_counts_as_failure(self):
        http = MagicMock(spec=httpx.Client)
        response = MagicMock()
        response.raise_for_status.side_effect = httpx.HTTPStatusError(
            "422", request=MagicMock(), response=MagicMock(),
        )
        http.post.return_value = response

        assert _notifier(http).send_booking_confirmation(
            to_email="sam@example.com", **BOOKING,
        ) is False
