"""HTTP client for the NexHealth API with retry logic, timeout handling,
and a short-lived patient-search cache.

NexHealth docs: https://docs.nexhealth.com/reference
Every request carries the API key as a Bearer token, the versioned
``Accept`` header, and the practice ``subdomain`` as a query parameter.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import date
from typing import Any

import httpx

from dental_booking.config import NEXHEALTH_API_KEY, NEXHEALTH_BASE_URL
from dental_booking.errors import SlotConflictError, UpstreamError
from dental_booking.models import SlotData
from dental_booking.services.cache import ExpiringLRUCache
from dental_booking.services.metrics import metrics

logger = logging.getLogger(__name__)

# ── Retry configuration ─────────────────────────────────────────────
MAX_RETRIES = 3
INITIAL_BACKOFF_SECONDS = 1.0
REQUEST_TIMEOUT_SECONDS = 15.0

ACCEPT_HEADER = "application/vnd.Nexhealth+json;version=2"

# ── Cache key prefixes ──────────────────────────────────────────────
_CK_PATIENTS = "patients:"

# Words NexHealth uses when a slot can no longer be held or booked
_CONFLICT_HINTS = ("slot", "available", "taken", "booked", "conflict", "overlap")

QueryParams = list[tuple[str, str | int]]


class NexHealthAPIError(UpstreamError):
    """Raised when a NexHealth API call fails (after retries for 5xx)."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


def _is_slot_conflict(exc: NexHealthAPIError) -> bool:
    if exc.status_code in (409, 422):
        return True
    if exc.status_code == 400:
        text = str(exc).lower()
        return any(hint in text for hint in _CONFLICT_HINTS)
    return False


class NexHealthClient:
    """Wrapper around the five NexHealth operations the booking flow uses.

    **Cache invalidation contract**

    Only patient searches are cached (``ExpiringLRUCache``, two minutes).
    ``create_patient`` drops every cached search for the same location so a
    freshly created patient is found on the next lookup.  Slot availability
    is never cached.
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        *,
        cache: ExpiringLRUCache | None = None,
    ):
        self._api_key = api_key or NEXHEALTH_API_KEY
        self._base_url = base_url or NEXHEALTH_BASE_URL
        self._client = httpx.Client(
            base_url=self._base_url,
            headers={
                "Authorization": f"Bearer {self._api_key}",
                "Accept": ACCEPT_HEADER,
                "Content-Type": "application/json",
            },
            timeout=REQUEST_TIMEOUT_SECONDS,
        )
        self._cache = cache or ExpiringLRUCache()

    # ── Internal helpers ─────────────────────────────────────────────

    def _request(
        self,
        method: str,
        path: str,
        *,
        subdomain: str,
        params: QueryParams | None = None,
        json_body: dict[str, Any] | None = None,
        retry: bool = True,
    ) -> dict[str, Any]:
        """Execute a request with exponential-backoff retries on 5xx/timeouts.

        With ``retry=False`` only failures where the request never reached
        NexHealth (connection refused, connect timeout) are retried.  Creating
        writes must not be re-sent once the server may have committed them.
        """
        query: QueryParams = [("subdomain", subdomain), *(params or [])]
        operation = f"{method} {path}"
        t0 = time.perf_counter()
        last_error: Exception | None = None

        for attempt in range(1, MAX_RETRIES + 1):
            try:
                response = self._client.request(method, path, params=query, json=json_body)
                if response.status_code >= 400:
                    kind = "Server" if response.status_code >= 500 else "Client"
                    raise NexHealthAPIError(
                        f"{kind} error {response.status_code}: {response.text}",
                        status_code=response.status_code,
                    )
                try:
                    body = response.json()
                except ValueError as exc:
                    raise NexHealthAPIError(
                        f"Malformed JSON from {operation}", status_code=response.status_code,
                    ) from exc
                metrics.record_success(
                    "nexhealth", operation, latency_ms=(time.perf_counter() - t0) * 1000,
                )
                return body

            except (httpx.TimeoutException, httpx.ConnectError) as exc:
                last_error = exc
                if not retry and not isinstance(exc, (httpx.ConnectError, httpx.ConnectTimeout)):
                    metrics.record_failure(
                        "nexhealth", operation,
                        error_type=type(exc).__name__,
                        latency_ms=(time.perf_counter() - t0) * 1000,
                    )
                    raise NexHealthAPIError(
                        f"NexHealth {operation} timed out; not retried: {exc}",
                    ) from exc
                logger.warning(
                    "NexHealth %s attempt %d/%d failed (%s). Retrying in %.1fs…",
                    operation,
                    attempt,
                    MAX_RETRIES,
                    type(exc).__name__,
                    INITIAL_BACKOFF_SECONDS * (2 ** (attempt - 1)),
                )
            except NexHealthAPIError as exc:
                if retry and exc.status_code and exc.status_code >= 500:
                    last_error = exc
                    logger.warning(
                        "NexHealth %s server error on attempt %d/%d. Retrying…",
                        operation, attempt, MAX_RETRIES,
                    )
                else:
                    metrics.record_failure(
                        "nexhealth", operation,
                        error_type=str(exc.status_code or "malformed"),
                        latency_ms=(time.perf_counter() - t0) * 1000,
                    )
                    raise

            time.sleep(INITIAL_BACKOFF_SECONDS * (2 ** (attempt - 1)))

        metrics.record_failure(
            "nexhealth", operation,
            error_type=type(last_error).__name__,
            latency_ms=(time.perf_counter() - t0) * 1000,
        )
        raise NexHealthAPIError(
            f"NexHealth {operation} failed after {MAX_RETRIES} retries: {last_error}",
        )

    # ── Patients ─────────────────────────────────────────────────────

    def search_patients(
        self, subdomain: str, location_id: int, name: str,
    ) -> list[dict[str, Any]]:
        """Search patients at a location by name (cached briefly)."""
        cache_key = f"{_CK_PATIENTS}{subdomain}:{location_id}:{name.strip().lower()}"
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        body = self._request(
            "GET",
            "/patients",
            subdomain=subdomain,
            params=[("location_id", location_id), ("name", name.strip())],
        )
        data = body.get("data") or {}
        patients = data.get("patients", []) if isinstance(data, dict) else data
        if not isinstance(patients, list):
            raise NexHealthAPIError("Malformed patient search response")

        self._cache.put(cache_key, patients)
        return patients

    def create_patient(
        self,
        subdomain: str,
        location_id: int,
        provider_id: int,
        *,
        first_name: str,
        last_name: str,
        date_of_birth: str,
        phone: str,
        email: str | None = None,
    ) -> int:
        """Create a patient record and return its NexHealth id."""
        patient: dict[str, Any] = {
            "first_name": first_name,
            "last_name": last_name,
            "bio": {"date_of_birth": date_of_birth, "phone_number": phone},
        }
        if email:
            patient["email"] = email

        body = self._request(
            "POST",
            "/patients",
            subdomain=subdomain,
            params=[("location_id", location_id)],
            json_body={"provider": {"provider_id": provider_id}, "patient": patient},
            retry=False,
        )
        data = body.get("data") or {}
        patient_id = (
            (data.get("user") or {}).get("id")
            or data.get("id")
            or (data.get("patient") or {}).get("id")
        )
        if patient_id is None:
            raise NexHealthAPIError("Create patient response did not include an id")

        removed = self._cache.invalidate_prefix(f"{_CK_PATIENTS}{subdomain}:{location_id}:")
        logger.info(
            "Created NexHealth patient %s (invalidated %d cached searches)", patient_id, removed,
        )
        return int(patient_id)

    # ── Availability ─────────────────────────────────────────────────

    def list_available_slots(
        self,
        subdomain: str,
        location_id: int,
        *,
        start_date: date,
        days: int,
        provider_ids: list[int],
        operatory_ids: list[int],
        slot_length: int,
    ) -> dict[str, Any]:
        """Return the raw per-provider slot groups for a date window.

        **Not cached**: availability changes in real time.

        The body looks like ``{"data": [{"pid", "lid", "slots": [{"time",
        "operatory_id"}]}], "next_available_date": "YYYY-MM-DD" | null}``.
        """
        params: QueryParams = [
            ("start_date", start_date.isoformat()),
            ("days", days),
            ("lids[]", location_id),
            ("slot_length", slot_length),
        ]
        params += [("pids[]", pid) for pid in provider_ids]
        params += [("operatory_ids[]", oid) for oid in operatory_ids]

        body = self._request("GET", "/appointment_slots", subdomain=subdomain, params=params)
        if not isinstance(body.get("data", []), list):
            raise NexHealthAPIError("Malformed appointment_slots response")
        return body

    # ── Holds and appointments ───────────────────────────────────────

    def hold_slot(
        self,
        subdomain: str,
        location_id: int,
        *,
        slot: SlotData,
        patient_id: int,
        duration: int,
    ) -> str:
        """Place a temporary hold on *slot* and return the hold id.

        Raises :class:`SlotConflictError` when NexHealth says the slot is gone.
        """
        try:
            body = self._request(
                "POST",
                "/slot_holds",
                subdomain=subdomain,
                params=[("location_id", location_id)],
                json_body={
                    "slot_hold": {
                        "patient_id": patient_id,
                        "provider_id": slot.provider_id,
                        "operatory_id": slot.operatory_id,
                        "start_time": slot.time,
                        "duration": duration,
                    },
                },
                retry=False,
            )
        except NexHealthAPIError as exc:
            if _is_slot_conflict(exc):
                raise SlotConflictError(f"Hold rejected for {slot.time}: {exc}") from exc
            raise

        hold_id = (body.get("data") or {}).get("id")
        if hold_id is None:
            raise NexHealthAPIError("Slot hold response did not include an id")
        return str(hold_id)

    def create_appointment(
        self,
        subdomain: str,
        location_id: int,
        *,
        patient_id: int,
        provider_id: int,
        operatory_id: int | None,
        start_time: str,
        end_time: str,
        note: str,
    ) -> str:
        """Book an appointment and return its NexHealth id.

        Raises :class:`SlotConflictError` when the slot was taken between the
        hold and this call.
        """
        appt: dict[str, Any] = {
            "patient_id": patient_id,
            "provider_id": provider_id,
            "start_time": start_time,
            "end_time": end_time,
            "note": note,
        }
        if operatory_id is not None:
            appt["operatory_id"] = operatory_id

        try:
            body = self._request(
                "POST",
                "/appointments",
                subdomain=subdomain,
                params=[("location_id", location_id)],
                json_body={"appt": appt},
                retry=False,
            )
        except NexHealthAPIError as exc:
            if _is_slot_conflict(exc):
                raise SlotConflictError(f"Booking rejected for {start_time}: {exc}") from exc
            raise

        data = body.get("data") or {}
        appointment_id = (data.get("appt") or {}).get("id") or data.get("id")
        if appointment_id is None:
            raise NexHealthAPIError("Create appointment response did not include an id")
        return str(appointment_id)


# ── Module-level singleton (thread-safe) ────────────────────────────
_client: NexHealthClient | None = None
_client_lock = threading.Lock()


def get_nexhealth_client() -> NexHealthClient:
    """Return a module-level NexHealthClient singleton (double-checked locking)."""
    global _client
    if _client is None:
        with _client_lock:
            if _client is None:
                _client = NexHealthClient()
    return _client
