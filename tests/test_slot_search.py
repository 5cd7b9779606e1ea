"""Tests for the slot search engine and its time-of-day rules."""

from __future__ import annotations

from datetime import date, datetime
from zoneinfo import ZoneInfo

import pytest

from dental_booking.errors import ConfigurationError
from dental_booking.scheduling.slot_search import (
    SlotSearchEngine,
    available_buckets_by_day,
    buckets_for,
    filter_by_bucket,
    overlaps_lunch,
    resolve_bucket,
)

CHICAGO = ZoneInfo("America/Chicago")
TUESDAY = date(2026, 7, 14)


def _local(hour: int, minute: int = 0) -> datetime:
    return datetime(2026, 7, 14, hour, minute, tzinfo=CHICAGO)


# ── Lunch exclusion ──────────────────────────────────────────────────


class TestOverlapsLunch:
    def test_slot_ending_exactly_at_lunch_is_kept(self):
        assert overlaps_lunch(_local(12, 30), 30) is False

    def test_slot_running_into_lunch_is_dropped(self):
        assert overlaps_lunch(_local(12, 45), 30) is True

    def test_slot_starting_at_lunch_is_dropped(self):
        assert overlaps_lunch(_local(13, 0), 30) is True

    def test_slot_ending_exactly_at_lunch_end_is_dropped(self):
        assert overlaps_lunch(_local(13, 30), 30) is True

    def test_slot_spanning_whole_lunch_is_dropped(self):
        assert overlaps_lunch(_local(12, 0), 180) is True

    def test_slot_starting_at_lunch_end_is_kept(self):
        assert overlaps_lunch(_local(14, 0), 30) is False


# ── Buckets ──────────────────────────────────────────────────────────


class TestBuckets:
    def test_morning_slot(self):
        assert buckets_for(_local(9, 0)) == ["Morning", "AllDay"]

    def test_boundaries_are_inclusive(self):
        assert buckets_for(_local(12, 0)) == ["Morning", "Midday", "Afternoon", "AllDay"]

    def test_evening_slot_is_also_late(self):
        assert buckets_for(_local(17, 30)) == ["Evening", "Late", "AllDay"]

    def test_early_slot(self):
        assert "Early" in buckets_for(_local(7, 30))

    @pytest.mark.parametrize("raw, expected", [
        ("morning", "Morning"),
        ("AFTERNOON", "Afternoon"),
        ("all day", "AllDay"),
        ("all-day", "AllDay"),
        ("brunch", None),
        (None, None),
    ])
    def test_resolve_bucket(self, raw, expected):
        assert resolve_bucket(raw) == expected

    def test_available_buckets_by_day(self, make_slot):
        slots = [
            make_slot("2026-07-15T09:00:00-05:00"),
            make_slot("2026-07-14T17:30:00-05:00"),
            make_slot("2026-07-14T09:30:00-05:00"),
        ]
        by_day = available_buckets_by_day(slots, CHICAGO)
        assert list(by_day) == [date(2026, 7, 14), date(2026, 7, 15)]
        assert by_day[date(2026, 7, 14)] == ["Morning", "Evening"]
        assert by_day[date(2026, 7, 15)] == ["Morning"]

    def test_filter_by_bucket_uses_practice_timezone(self, make_slot):
        # 15:00 UTC is 10:00 in Chicago: a morning slot there, not an afternoon one
        slot = make_slot("2026-07-14T15:00:00Z")
        assert filter_by_bucket([slot], "Morning", CHICAGO) == [slot]
        assert filter_by_bucket([slot], "Afternoon", CHICAGO) == []


# ── Engine ───────────────────────────────────────────────────────────


class TestFindAvailableSlots:
    def test_scenario_cleaning_day(self, nexhealth, practice_store, practice, slots_body):
        nexhealth.list_available_slots.return_value = slots_body(
            "2026-07-14T09:00:00-05:00",
            "2026-07-14T13:00:00-05:00",
            "2026-07-14T13:30:00-05:00",
            "2026-07-14T14:30:00-05:00",
            "2026-07-14T17:30:00-05:00",
        )
        engine = SlotSearchEngine(nexhealth, practice_store)

        result = engine.find_available_slots("cleaning", practice, TUESDAY, 1)

        kept = [s.time for s in result.found_slots]
        assert kept == [
            "2026-07-14T09:00:00-05:00",
            "2026-07-14T14:30:00-05:00",
            "2026-07-14T17:30:00-05:00",
        ]
        assert available_buckets_by_day(result.found_slots, CHICAGO) == {
            TUESDAY: ["Morning", "Afternoon", "Evening"],
        }
        assert result.next_available_date == "2026-07-14"

    def test_queries_only_active_providers_and_operatories(
        self, nexhealth, practice_store, practice,
    ):
        engine = SlotSearchEngine(nexhealth, practice_store)
        engine.find_available_slots("cleaning", practice, TUESDAY, 3)

        kwargs = nexhealth.list_available_slots.call_args.kwargs
        assert kwargs["provider_ids"] == [501]
        assert kwargs["operatory_ids"] == [701]
        assert kwargs["slot_length"] == 30
        assert kwargs["start_date"] == TUESDAY
        assert kwargs["days"] == 3

    def test_tags_slots_with_provider_and_operatory(
        self, nexhealth, practice_store, practice, slots_body,
    ):
        nexhealth.list_available_slots.return_value = slots_body("2026-07-14T09:00:00-05:00")
        engine = SlotSearchEngine(nexhealth, practice_store)

        slot = engine.find_available_slots("cleaning", practice, TUESDAY, 1).found_slots[0]
        assert slot.provider_id == 501
        assert slot.operatory_id == 701
        assert slot.location_id == practice.location_id

    def test_lunch_is_evaluated_in_local_time(
        self, nexhealth, practice_store, practice, slots_body,
    ):
        # 18:30Z is 13:30 CDT (lunch); 19:00Z is 14:00 CDT (after lunch)
        nexhealth.list_available_slots.return_value = slots_body(
            "2026-07-14T18:30:00Z", "2026-07-14T19:00:00Z",
        )
        engine = SlotSearchEngine(nexhealth, practice_store)

        result = engine.find_available_slots("cleaning", practice, TUESDAY, 1)
        assert [s.time for s in result.found_slots] == ["2026-07-14T19:00:00Z"]

    def test_drops_duplicates_malformed_and_out_of_window(
        self, nexhealth, practice_store, practice, slots_body,
    ):
        body = slots_body(
            "2026-07-14T10:00:00-05:00",
            "2026-07-14T10:00:00-05:00",
            "2026-07-16T10:00:00-05:00",
        )
        body["data"][0]["slots"].append({"operatory_id": 701})
        body["data"].append({"lid": 100, "slots": [{"time": "2026-07-14T11:00:00-05:00"}]})
        nexhealth.list_available_slots.return_value = body
        engine = SlotSearchEngine(nexhealth, practice_store)

        result = engine.find_available_slots("cleaning", practice, TUESDAY, 1)
        assert [s.time for s in result.found_slots] == ["2026-07-14T10:00:00-05:00"]

    def test_merges_provider_groups_in_time_order(
        self, nexhealth, practice_store, practice,
    ):
        nexhealth.list_available_slots.return_value = {"data": [
            {"pid": 501, "slots": [{"time": "2026-07-14T11:00:00-05:00", "operatory_id": 701}]},
            {"pid": 503, "slots": [{"time": "2026-07-14T09:00:00-05:00", "operatory_id": 701}]},
        ]}
        engine = SlotSearchEngine(nexhealth, practice_store)

        result = engine.find_available_slots("cleaning", practice, TUESDAY, 1)
        assert [(s.time, s.provider_id) for s in result.found_slots] == [
            ("2026-07-14T09:00:00-05:00", 503),
            ("2026-07-14T11:00:00-05:00", 501),
        ]

    def test_empty_window_reports_upstream_next_available(
        self, nexhealth, practice_store, practice, slots_body,
    ):
        nexhealth.list_available_slots.return_value = slots_body(
            next_available_date="2026-07-20",
        )
        engine = SlotSearchEngine(nexhealth, practice_store)

        result = engine.find_available_slots("cleaning", practice, TUESDAY, 3)
        assert result.found_slots == []
        assert result.next_available_date == "2026-07-20"

    def test_no_active_providers_is_a_configuration_error(
        self, nexhealth, practice_store, practice,
    ):
        engine = SlotSearchEngine(nexhealth, practice_store)
        with pytest.raises(ConfigurationError):
            engine.find_available_slots("whitening", practice, TUESDAY, 3)
        nexhealth.list_available_slots.assert_not_called()

    def test_unknown_appointment_type_is_a_configuration_error(
        self, nexhealth, practice_store, practice,
    ):
        engine = SlotSearchEngine(nexhealth, practice_store)
        with pytest.raises(ConfigurationError):
            engine.find_available_slots("root-canal", practice, TUESDAY, 3)
