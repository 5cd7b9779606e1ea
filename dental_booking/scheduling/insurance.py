"""In-network check against the practice's accepted insurance list."""

from __future__ import annotations

import re

from dental_booking.models import InsuranceStatus


def _normalize(name: str) -> str:
    return re.sub(r"[^a-z0-9 ]", "", name.lower()).strip()


def check_insurance(
    accepted: tuple[str, ...] | list[str],
    plan_name: str,
) -> tuple[InsuranceStatus, str | None]:
    """Return the network status and the accepted carrier name that matched.

    An empty *accepted* list means the practice has not configured one, so
    the plan stays ``NOT_CHECKED``.

    Matching is containment either way after normalizing, so
    "Delta Dental PPO" matches an accepted "Delta Dental" and vice versa.
    """
    plan = _normalize(plan_name)
    if not plan or not accepted:
        return InsuranceStatus.NOT_CHECKED, None
    for carrier in accepted:
        normalized = _normalize(carrier)
        if normalized and (normalized in plan or plan in normalized):
            return InsuranceStatus.IN_NETWORK, carrier
    return InsuranceStatus.OUT_OF_NETWORK, None
