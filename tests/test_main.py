"""Tests for the local tool-call console."""

from __future__ import annotations

import pytest

from dental_booking.main import parse_line


@pytest.mark.parametrize("line, expected", [
    ('findAppointmentType {"patientRequest": "a cleaning"}',
     ("findAppointmentType", '{"patientRequest": "a cleaning"}')),
    ("  holdAppointmentSlot  ", ("holdAppointmentSlot", "")),
    ("checkAvailableSlots    {}", ("checkAvailableSlots", "{}")),
])
def test_parse_line(line, expected):
    assert parse_line(line) == expected
