"""Latency telemetry with optional CloudWatch publishing.

Records how long the expensive stages of a turn take (index builds, searches,
generation calls and whole HTTP requests) plus per-call outcomes for the
external services the agent talks to (Anthropic, Twilio).

Design
------
* Every latency sample updates an in-process aggregate (count, total, max,
  last) per stage, readable through :meth:`MetricsClient.snapshot` and the
  ``/api/metrics`` endpoint.
* Data points are also collected in a thread-safe buffer.  A daemon thread
  flushes the buffer to CloudWatch every ``FLUSH_INTERVAL_SECONDS`` when
  ``METRICS_ENABLED=true``; locally the buffer is only logged at DEBUG.
* Each ``put_metric_data`` call sends up to 1 000 metric data points
  (the CloudWatch API limit per request).

Usage
-----
>>> from outreach_agent.services.metrics import metrics
>>> metrics.record_latency("search", 3.2)
>>> metrics.record_failure("twilio", "send_sms", error_type="TelephonyError")
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

NAMESPACE = "OutreachAgent"
FLUSH_INTERVAL_SECONDS = 60
MAX_BATCH_SIZE = 1_000  # CloudWatch API limit per PutMetricData call

STAGES = ("index_build", "search", "generation", "request")


class MetricsClient:
    """Stage latency aggregator and batched CloudWatch publisher."""

    def __init__(self) -> None:
        self._enabled = os.getenv("METRICS_ENABLED", "false").lower() == "true"
        self._buffer: list[dict[str, Any]] = []
        self._stats: dict[str, dict[str, float]] = {}
        self._lock = threading.Lock()
        self._cw_client = None  # lazy-init

        if self._enabled:
            self._start_flush_thread()

    # ── Lazy CloudWatch client ────────────────────────────────────────

    def _get_cw_client(self):
        """Create the boto3 CloudWatch client on first use."""
        if self._cw_client is None:
            import boto3

            self._cw_client = boto3.client("cloudwatch")
        return self._cw_client

    # ── Public API ────────────────────────────────────────────────────

    def record_latency(self, stage: str, latency_ms: float) -> None:
        """Record how long one internal stage took."""
        with self._lock:
            stats = self._stats.setdefault(
                stage, {"count": 0, "total_ms": 0.0, "max_ms": 0.0, "last_ms": 0.0},
            )
            stats["count"] += 1
            stats["total_ms"] += latency_ms
            stats["max_ms"] = max(stats["max_ms"], latency_ms)
            stats["last_ms"] = latency_ms

        self._append(
            {
                "MetricName": "Stage/Latency",
                "Dimensions": [{"Name": "Stage", "Value": stage}],
                "Timestamp": datetime.now(UTC),
                "Value": latency_ms,
                "Unit": "Milliseconds",
            }
        )
        logger.debug("Metric: stage %s latency=%.1fms", stage, latency_ms)

    def record_success(
        self,
        service: str,
        operation: str,
        latency_ms: float,
    ) -> None:
        """Record a successful external API call."""
        now = datetime.now(UTC)
        dims_base = [
            {"Name": "Service", "Value": service},
        ]

        self._append(
            {
                "MetricName": "ExternalAPI/RequestCount",
                "Dimensions": dims_base + [{"Name": "Status", "Value": "success"}],
                "Timestamp": now,
                "Value": 1,
                "Unit": "Count",
            }
        )
        self._append(
            {
                "MetricName": "ExternalAPI/Latency",
                "Dimensions": dims_base + [{"Name": "Operation", "Value": operation}],
                "Timestamp": now,
                "Value": latency_ms,
                "Unit": "Milliseconds",
            }
        )
        logger.debug(
            "Metric: %s %s success latency=%.1fms", service, operation, latency_ms,
        )

    def record_failure(
        self,
        service: str,
        operation: str,
        error_type: str,
        latency_ms: float = 0,
    ) -> None:
        """Record a failed external API call."""
        now = datetime.now(UTC)
        dims_base = [
            {"Name": "Service", "Value": service},
        ]

        self._append(
            {
                "MetricName": "ExternalAPI/RequestCount",
                "Dimensions": dims_base + [{"Name": "Status", "Value": "failure"}],
                "Timestamp": now,
                "Value": 1,
                "Unit": "Count",
            }
        )
        self._append(
            {
                "MetricName": "ExternalAPI/ErrorCount",
                "Dimensions": dims_base + [{"Name": "ErrorType", "Value": error_type}],
                "Timestamp": now,
                "Value": 1,
                "Unit": "Count",
            }
        )
        if latency_ms > 0:
            self._append(
                {
                    "MetricName": "ExternalAPI/Latency",
                    "Dimensions": dims_base + [{"Name": "Operation", "Value": operation}],
                    "Timestamp": now,
                    "Value": latency_ms,
                    "Unit": "Milliseconds",
                }
            )
        logger.debug(
            "Metric: %s %s failure error=%s latency=%.1fms",
            service, operation, error_type, latency_ms,
        )

    def snapshot(self) -> dict[str, dict[str, float]]:
        """Return per-stage aggregates, including the mean latency.

        The well-known ``STAGES`` are always present, zeroed until their
        first sample arrives.
        """
        empty = {"count": 0, "total_ms": 0.0, "max_ms": 0.0, "last_ms": 0.0}
        with self._lock:
            result = {}
            for stage in (*STAGES, *(s for s in self._stats if s not in STAGES)):
                stats = self._stats.get(stage, empty)
                entry = dict(stats)
                entry["avg_ms"] = stats["total_ms"] / stats["count"] if stats["count"] else 0.0
                result[stage] = entry
            return result

    def reset(self) -> None:
        """Drop aggregates and buffered data points."""
        with self._lock:
            self._stats.clear()
            self._buffer.clear()

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

    def _append(self, metric_data: dict[str, Any]) -> None:
        with self._lock:
            self._buffer.append(metric_data)

    def _start_flush_thread(self) -> None:
        """Start a daemon thread that flushes metrics periodically."""

        def _loop():
            while True:
                time.sleep(FLUSH_INTERVAL_SECONDS)
                try:
                    self.flush()
                except Exception:
                    logger.exception("Metrics flush thread error")

        t = threading.Thread(target=_loop, daemon=True, name="metrics-flush")
        t.start()
        atexit.register(self.flush)  # flush on process exit
        logger.info(
            "Metrics flush thread started (interval=%ds)", FLUSH_INTERVAL_SECONDS,
        )


# ── Module-level singleton ──────────────────────────────────────────
metrics = MetricsClient()
