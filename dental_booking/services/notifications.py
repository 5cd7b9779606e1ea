"""Booking confirmation emails sent through the Resend HTTP API.

Sending is fire-and-forget: the appointment already exists in NexHealth
by the time we get here, so any failure is logged and dropped.
"""

from __future__ import annotations

import html
import logging
import time

import httpx

from dental_booking.config import NOTIFICATION_FROM_EMAIL, RESEND_API_KEY
from dental_booking.services.metrics import metrics

logger = logging.getLogger(__name__)

RESEND_URL = "https://api.resend.com/emails"
REQUEST_TIMEOUT_SECONDS = 10.0


class EmailNotifier:
    def __init__(
        self,
        api_key: str | None = None,
        from_email: str | None = None,
        *,
        http_client: httpx.Client | None = None,
    ):
        self._api_key = RESEND_API_KEY if api_key is None else api_key
        self._from_email = from_email or NOTIFICATION_FROM_EMAIL
        self._http = http_client or httpx.Client(timeout=REQUEST_TIMEOUT_SECONDS)

    @property
    def enabled(self) -> bool:
        return bool(self._api_key)

    def send_booking_confirmation(
        self,
        *,
        to_email: str | None,
        patient_name: str,
        practice_name: str,
        appointment_name: str,
        when: str,
    ) -> bool:
        """Email the patient their booking details.  Returns ``True`` if sent."""
        if not self.enabled:
            logger.debug("Email disabled (no RESEND_API_KEY); skipping confirmation")
            return False
        if not to_email:
            logger.info("No email on file for %s; skipping confirmation", patient_name)
            return False

        body = (
            f"<p>Hi {html.escape(patient_name)},</p>"
            f"<p>Your {html.escape(appointment_name)} at {html.escape(practice_name)} "
            f"is booked for <strong>{html.escape(when)}</strong>.</p>"
            "<p>If you need to change it, please give the office a call.</p>"
        )
        t0 = time.perf_counter()
        try:
            response = self._http.post(
                RESEND_URL,
                headers={"Authorization": f"Bearer {self._api_key}"},
                json={
                    "from": self._from_email,
                    "to": [to_email],
                    "subject": f"Your appointment at {practice_name}",
                    "html": body,
                },
            )
            response.raise_for_status()
        except Exception as exc:
            metrics.record_failure(
                "resend", "POST /emails",
                error_type=type(exc).__name__,
                latency_ms=(time.perf_counter() - t0) * 1000,
            )
            logger.exception("Failed to send confirmation email to %s", to_email)
            return False

        metrics.record_success(
            "resend", "POST /emails", latency_ms=(time.perf_counter() - t0) * 1000,
        )
        logger.info("Sent booking confirmation to %s", to_email)
        return True
