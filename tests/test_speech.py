"""Tests for the spoken-identity helpers (emails, phones, names, yes/no)."""

from __future__ import annotations

from datetime import date, datetime
from zoneinfo import ZoneInfo

import pytest

from dental_booking.scheduling.speech import (
    format_day,
    format_phone_for_readback,
    format_slot_time,
    is_affirmative,
    is_negative,
    is_valid_email,
    join_spoken,
    normalize_spoken_email,
    parse_full_name,
    spell_email,
    spell_out,
)


class TestEmail:
    @pytest.mark.parametrize(
        "email",
        [
            "alice@example.com",
            "bob.jones@clinic.co.uk",
            "jane+tag@gmail.com",
            "UPPER@CASE.COM",
            "digits123@test456.io",
        ],
    )
    def test_accepts_valid_emails(self, email: str):
        assert is_valid_email(email)

    @pytest.mark.parametrize(
        "email",
        [
            "",
            "   ",
            "not-an-email",
            "missing@",
            "@no-local.com",
            "spaces in@email.com",
            "double@@at.com",
            "no-tld@localhost",
        ],
    )
    def test_rejects_invalid_emails(self, email: str):
        assert not is_valid_email(email)

    def test_spoken_form_is_normalized(self):
        assert normalize_spoken_email("Sam Lee at Example dot org") == "samlee@example.org"

    def test_spelling_keeps_digits_and_separators(self):
        assert spell_email("j-d_9@x.io") == "J, dash, D, underscore, 9, at x.io"


class TestPhoneAndNames:
    def test_eleven_digit_readback_leads_with_country_code(self):
        assert format_phone_for_readback("+1 512 334 1212") == "1... 5 1 2... 3 3 4... 1 2 1 2"

    def test_short_number_is_read_digit_by_digit(self):
        assert format_phone_for_readback("911") == "9 1 1"

    def test_spell_out_drops_non_letters(self):
        assert spell_out("O'Neil") == "O. N. E. I. L."
        assert spell_out("42") == ""

    @pytest.mark.parametrize("raw, expected", [
        ("jane doe", ("Jane", "Doe")),
        ("mary ann van dyke", ("Mary", "Ann Van Dyke")),
        ("cher", ("Cher", None)),
        ("", ("", None)),
    ])
    def test_parse_full_name(self, raw, expected):
        assert parse_full_name(raw) == expected


class TestYesNo:
    @pytest.mark.parametrize("text", ["yes", "Yeah, that's right", "sounds good", "correct"])
    def test_affirmative(self, text):
        assert is_affirmative(text)

    @pytest.mark.parametrize("text", ["no", "that's not right", "yes... no wait", "nope"])
    def test_not_affirmative(self, text):
        assert not is_affirmative(text)

    def test_missing_answer_is_neither(self):
        assert not is_affirmative(None)
        assert not is_negative(None)


class TestSpokenTimes:
    def test_slot_time_is_local_and_unpadded(self):
        start = datetime.fromisoformat("2026-07-14T14:05:00+00:00")
        assert format_slot_time(start, ZoneInfo("America/Chicago")) == "Tuesday, July 14 at 9:05 AM"

    def test_noon_and_midnight(self):
        tz = ZoneInfo("America/Chicago")
        assert format_slot_time(datetime(2026, 7, 14, 12, 0, tzinfo=tz), tz).endswith("12:00 PM")
        assert format_slot_time(datetime(2026, 7, 14, 0, 30, tzinfo=tz), tz).endswith("12:30 AM")

    def test_format_day(self):
        assert format_day(date(2026, 7, 4)) == "Saturday, July 4"

    @pytest.mark.parametrize("items, expected", [
        ([], ""),
        (["a"], "a"),
        (["a", "b"], "a or b"),
        (["a", "b", "c"], "a, b, or c"),
    ])
    def test_join_spoken(self, items, expected):
        assert join_spoken(items) == expected
