"""Slot search: query NexHealth for a date window and apply practice rules.

The engine is side-effect free.  It asks the practice store which
providers and operatories may perform the appointment type, fetches the
raw per-provider slot grids in one request, and flattens them into
:class:`SlotData`.  Then it drops anything that touches the lunch break.

Every time-of-day rule (lunch, buckets, "which day is this") is evaluated
in the practice's timezone.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from dental_booking.models import SlotData
from dental_booking.services.nexhealth_client import NexHealthClient
from dental_booking.services.practice_store import PracticeContext, PracticeStore

logger = logging.getLogger(__name__)

# ── Business rules ───────────────────────────────────────────────────

LUNCH_START = time(13, 0)
LUNCH_END = time(14, 0)

# Inclusive on both ends; buckets overlap on purpose
TIME_BUCKETS: dict[str, tuple[time, time]] = {
    "Early": (time(5, 0), time(8, 30)),
    "Morning": (time(5, 0), time(12, 0)),
    "Midday": (time(10, 0), time(15, 0)),
    "Afternoon": (time(12, 0), time(17, 0)),
    "Evening": (time(15, 30), time(20, 0)),
    "Late": (time(17, 0), time(22, 0)),
    "AllDay": (time(5, 0), time(22, 0)),
}
PRIMARY_BUCKETS = ("Morning", "Afternoon", "Evening")


@dataclass
class SlotSearchResult:
    found_slots: list[SlotData] = field(default_factory=list)
    next_available_date: str | None = None


# ── Pure helpers ─────────────────────────────────────────────────────


def overlaps_lunch(start_local: datetime, duration_minutes: int) -> bool:
    """True if ``[start, start + duration)`` intersects the local lunch hour.

    A slot ending exactly at 13:00 or starting exactly at 14:00 is kept.
    """
    lunch_start = datetime.combine(start_local.date(), LUNCH_START, tzinfo=start_local.tzinfo)
    lunch_end = datetime.combine(start_local.date(), LUNCH_END, tzinfo=start_local.tzinfo)
    end_local = start_local + timedelta(minutes=duration_minutes)
    return start_local < lunch_end and end_local > lunch_start


def resolve_bucket(name: str | None) -> str | None:
    """Case-insensitive bucket lookup (``"morning"`` -> ``"Morning"``)."""
    if not name:
        return None
    key = name.strip().lower().replace(" ", "").replace("-", "")
    for bucket in TIME_BUCKETS:
        if bucket.lower() == key:
            return bucket
    return None


def buckets_for(start_local: datetime) -> list[str]:
    """Every bucket whose window contains the slot's local start time."""
    t = start_local.time().replace(tzinfo=None)
    return [name for name, (lo, hi) in TIME_BUCKETS.items() if lo <= t <= hi]


def filter_by_bucket(slots: list[SlotData], bucket: str, tz: ZoneInfo) -> list[SlotData]:
    return [s for s in slots if bucket in buckets_for(s.start.astimezone(tz))]


def available_buckets_by_day(slots: list[SlotData], tz: ZoneInfo) -> dict[date, list[str]]:
    """Which primary buckets have at least one slot, per local date.

    Days are in chronological order and buckets keep Morning/Afternoon/Evening
    order.
    """
    seen: dict[date, set[str]] = {}
    for slot in sorted(slots, key=lambda s: s.start):
        local = slot.start.astimezone(tz)
        seen.setdefault(local.date(), set()).update(buckets_for(local))
    return {
        day: [b for b in PRIMARY_BUCKETS if b in names]
        for day, names in seen.items()
        if any(b in names for b in PRIMARY_BUCKETS)
    }


# ── Engine ───────────────────────────────────────────────────────────


class SlotSearchEngine:
    def __init__(self, client: NexHealthClient, practice_store: PracticeStore):
        self._client = client
        self._practice_store = practice_store

    def find_available_slots(
        self,
        appointment_type_id: str,
        practice: PracticeContext,
        start_date: date,
        search_days: int,
    ) -> SlotSearchResult:
        """Bookable slots in ``[start_date, start_date + search_days)``.

        Raises :class:`ConfigurationError` when no provider or operatory is
        eligible, and :class:`UpstreamError` when NexHealth fails.
        """
        params = self._practice_store.get_slot_search_params(practice.id, appointment_type_id)
        tz = practice.tz
        window_end = start_date + timedelta(days=search_days)

        body = self._client.list_available_slots(
            practice.subdomain,
            practice.location_id,
            start_date=start_date,
            days=search_days,
            provider_ids=params.provider_ids,
            operatory_ids=params.operatory_ids,
            slot_length=params.duration,
        )

        by_key: dict[tuple, SlotData] = {}
        raw_count = lunch_count = 0
        for group in body.get("data") or []:
            provider_id = group.get("pid")
            location_id = group.get("lid", practice.location_id)
            for raw in group.get("slots") or []:
                raw_count += 1
                if provider_id is None or not raw.get("time"):
                    logger.warning("Skipping malformed slot entry %r (pid=%r)", raw, provider_id)
                    continue
                slot = SlotData(
                    time=raw["time"],
                    operatory_id=raw.get("operatory_id"),
                    provider_id=provider_id,
                    location_id=location_id,
                )
                start_local = slot.start.astimezone(tz)
                if not start_date <= start_local.date() < window_end:
                    continue
                if overlaps_lunch(start_local, params.duration):
                    lunch_count += 1
                    continue
                by_key.setdefault(slot.key, slot)

        found = sorted(by_key.values(), key=lambda s: s.start)
        if found:
            next_available = found[0].start.astimezone(tz).date().isoformat()
        else:
            next_available = body.get("next_available_date")

        logger.info(
            "Slot search %s from %s (+%dd): %d raw, %d lunch-filtered, %d kept",
            appointment_type_id, start_date, search_days, raw_count, lunch_count, len(found),
        )
        return SlotSearchResult(found_slots=found, next_available_date=next_available)
