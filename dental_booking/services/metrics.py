"""CloudWatch custom metrics emitter with background batching.

Two families of metrics are published:

* ``ExternalAPI/*``: count, latency and errors for every call to an
  upstream service (``nexhealth``, ``anthropic``, ``resend``).
* ``Tool/*``: count and latency for every voice-assistant tool call,
  split by tool name and outcome.

Data points are buffered in memory and flushed by a daemon thread every
``FLUSH_INTERVAL_SECONDS``.  Unless ``METRICS_ENABLED=true`` the buffer is
only logged at DEBUG level and never pushed to CloudWatch.

>>> from dental_booking.services.metrics import metrics
>>> metrics.record_success("nexhealth", "GET /appointment_slots", latency_ms=210.0)
>>> metrics.record_tool_call("checkAvailableSlots", success=True, latency_ms=640.0)
"""

from __future__ import annotations

import atexit
import logging
import os
import threading
import time
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

NAMESPACE = "DentalBooking"
FLUSH_INTERVAL_SECONDS = 60
MAX_BATCH_SIZE = 1_000  # CloudWatch API limit per PutMetricData call


def _dims(**pairs: str) -> list[dict[str, str]]:
    return [{"Name": name, "Value": value} for name, value in pairs.items()]


class MetricsClient:
    """Batched CloudWatch metrics publisher."""

    def __init__(self) -> None:
        self._enabled = os.getenv("METRICS_ENABLED", "false").lower() == "true"
        self._buffer: list[dict[str, Any]] = []
        self._lock = threading.Lock()
        self._cw_client = None  # lazy-init

        if self._enabled:
            self._start_flush_thread()

    def _get_cw_client(self):
        if self._cw_client is None:
            import boto3

            self._cw_client = boto3.client("cloudwatch")
        return self._cw_client

    # ── Public API ────────────────────────────────────────────────────

    def record_success(self, service: str, operation: str, latency_ms: float) -> None:
        """Record a successful upstream call."""
        now = datetime.now(UTC)
        self._datum(
            "ExternalAPI/RequestCount",
            _dims(Service=service, Status="success"), 1, "Count", now,
        )
        self._datum(
            "ExternalAPI/Latency",
            _dims(Service=service, Operation=operation), latency_ms, "Milliseconds", now,
        )
        logger.debug("Metric: %s %s ok %.1fms", service, operation, latency_ms)

    def record_failure(
        self,
        service: str,
        operation: str,
        error_type: str,
        latency_ms: float = 0,
    ) -> None:
        """Record a failed upstream call."""
        now = datetime.now(UTC)
        self._datum(
            "ExternalAPI/RequestCount",
            _dims(Service=service, Status="failure"), 1, "Count", now,
        )
        self._datum(
            "ExternalAPI/ErrorCount",
            _dims(Service=service, ErrorType=error_type), 1, "Count", now,
        )
        if latency_ms > 0:
            self._datum(
                "ExternalAPI/Latency",
                _dims(Service=service, Operation=operation),
                latency_ms, "Milliseconds", now,
            )
        logger.debug(
            "Metric: %s %s failed (%s) %.1fms", service, operation, error_type, latency_ms,
        )

    def record_tool_call(self, tool_name: str, *, success: bool, latency_ms: float) -> None:
        """Record one voice-assistant tool invocation."""
        now = datetime.now(UTC)
        status = "success" if success else "failure"
        self._datum(
            "Tool/InvocationCount", _dims(Tool=tool_name, Status=status), 1, "Count", now,
        )
        self._datum(
            "Tool/Latency", _dims(Tool=tool_name), latency_ms, "Milliseconds", now,
        )

    def flush(self) -> int:
        """Send buffered metrics to CloudWatch.  Returns count sent."""
        with self._lock:
            if not self._buffer:
                return 0
            batch = self._buffer[:]
            self._buffer.clear()

        if not self._enabled:
            logger.debug("Metrics flush skipped (not enabled): %d items", len(batch))
            return 0

        sent = 0
        try:
            cw = self._get_cw_client()
            for i in range(0, len(batch), MAX_BATCH_SIZE):
                chunk = batch[i : i + MAX_BATCH_SIZE]
                cw.put_metric_data(Namespace=NAMESPACE, MetricData=chunk)
                sent += len(chunk)
            logger.info("Flushed %d metrics to CloudWatch", sent)
        except Exception:
            logger.exception("Failed to flush metrics to CloudWatch")
        return sent

    # ── Internal ──────────────────────────────────────────────────────

    def _datum(
        self,
        name: str,
        dimensions: list[dict[str, str]],
        value: float,
        unit: str,
        timestamp: datetime,
    ) -> None:
        with self._lock:
            self._buffer.append({
                "MetricName": name,
                "Dimensions": dimensions,
                "Timestamp": timestamp,
                "Value": value,
                "Unit": unit,
            })

    def _start_flush_thread(self) -> None:
        def _loop():
            while True:
                time.sleep(FLUSH_INTERVAL_SECONDS)
                try:
                    self.flush()
                except Exception:
                    logger.exception("Metrics flush thread error")

        t = threading.Thread(target=_loop, daemon=True, name="metrics-flush")
        t.start()
        atexit.register(self.flush)
        logger.info("Metrics flush thread started (interval=%ds)", FLUSH_INTERVAL_SECONDS)


# ── Module-level singleton ──────────────────────────────────────────
metrics = MetricsClient()
