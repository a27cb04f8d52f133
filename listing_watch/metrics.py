"""Metrics for listing-watch.

Two layers live here:

- Prometheus collectors, module-level like any prometheus_client user,
  exposed over HTTP when ``settings.metrics_port`` is set.
- ``MetricsAggregator``, the in-process snapshot (counters, per-endpoint
  latency and a rolling latency window) that is periodically dumped to JSON.
  Every aggregator call is mirrored into the Prometheus collectors.
"""

import copy
import json
import logging
import os
import threading
import time
from collections import deque
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import psutil
from prometheus_client import Counter, Gauge, Histogram, Info

from listing_watch.config import settings

logger = logging.getLogger(__name__)

# Application info
app_info = Info("listing_watch", "listing-watch application info")
app_info.info({"version": "0.1.0", "name": "listing-watch"})

# Upstream calls
api_calls_total = Counter(
    "api_calls_total",
    "Total number of marketplace calls",
    ["endpoint", "status"],
)

api_call_duration_seconds = Histogram(
    "api_call_duration_seconds",
    "Time spent in marketplace calls",
    ["endpoint"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0],
)

errors_total = Counter(
    "errors_total",
    "Total number of recorded errors",
    ["kind"],
)

# Watch processing
watch_checks_total = Counter(
    "watch_checks_total",
    "Total number of watch checks",
)

items_found_total = Counter(
    "items_found_total",
    "Total number of listed items returned to watch checks",
)

notifications_sent_total = Counter(
    "notifications_sent_total",
    "Total number of notifications delivered",
)

sweeps_total = Counter(
    "sweeps_total",
    "Total number of scheduler sweeps",
    ["status"],
)

sweep_duration_seconds = Histogram(
    "sweep_duration_seconds",
    "Wall time of a full sweep",
    buckets=[1.0, 5.0, 15.0, 30.0, 60.0, 120.0, 300.0],
)

active_watches = Gauge(
    "active_watches",
    "Number of active watches at the last sweep",
)

cache_entries = Gauge(
    "response_cache_entries",
    "Number of entries in the response cache after the last sweep",
)


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class MetricsAggregator:
    """
    Thread-safe accumulator for the process metrics snapshot.

    Counters only grow until the process restarts. Latency samples are kept
    in a bounded window; the rolling average is maintained incrementally by
    adding each new sample and subtracting the one that falls out.
    """

    def __init__(
        self,
        window_size: Optional[int] = None,
        snapshot_path: Optional[str | Path] = None,
    ):
        self.window_size = window_size or settings.metrics_window_size
        self.snapshot_path = Path(snapshot_path or settings.metrics_file)
        self._lock = threading.Lock()
        self._started = time.monotonic()
        self._samples: deque[float] = deque()
        self._metrics: dict[str, Any] = {
            "started_at": _utcnow_iso(),
            "api_calls": {
                "total": 0,
                "success": 0,
                "failed": 0,
                "by_endpoint": {},
            },
            "watches": {
                "total": 0,
                "active": 0,
                "checks": 0,
                "items_found": 0,
                "notifications_sent": 0,
            },
            "sweeps": {
                "completed": 0,
                "skipped": 0,
                "last_duration_seconds": None,
            },
            "errors": {
                "total": 0,
                "by_kind": {},
            },
            "performance": {
                "average_response_time_ms": 0.0,
                "total_response_time_ms": 0.0,
                "samples": 0,
            },
            "users": {
                "total": 0,
                "active": 0,
            },
            "system": {
                "memory_mb": {},
                "uptime_seconds": 0,
            },
        }

    def record_call(self, endpoint: str, success: bool, latency_ms: Optional[float]) -> None:
        """Record one upstream call and its latency."""
        with self._lock:
            calls = self._metrics["api_calls"]
            calls["total"] += 1
            calls["success" if success else "failed"] += 1

            per_endpoint = calls["by_endpoint"].setdefault(
                endpoint,
                {
                    "total": 0,
                    "success": 0,
                    "failed": 0,
                    "average_response_time_ms": 0.0,
                    "total_response_time_ms": 0.0,
                },
            )
            per_endpoint["total"] += 1
            per_endpoint["success" if success else "failed"] += 1

            if latency_ms is not None:
                perf = self._metrics["performance"]
                self._samples.append(latency_ms)
                perf["total_response_time_ms"] += latency_ms
                if len(self._samples) > self.window_size:
                    perf["total_response_time_ms"] -= self._samples.popleft()
                perf["samples"] = len(self._samples)
                perf["average_response_time_ms"] = (
                    perf["total_response_time_ms"] / len(self._samples)
                )

                per_endpoint["total_response_time_ms"] += latency_ms
                per_endpoint["average_response_time_ms"] = (
                    per_endpoint["total_response_time_ms"] / per_endpoint["total"]
                )

        status = "success" if success else "error"
        api_calls_total.labels(endpoint=endpoint, status=status).inc()
        if latency_ms is not None:
            api_call_duration_seconds.labels(endpoint=endpoint).observe(latency_ms / 1000.0)

    def record_error(self, kind: str, message: str) -> None:
        """Count an error; only the latest message per kind is kept."""
        kind = getattr(kind, "value", kind)
        with self._lock:
            errors = self._metrics["errors"]
            errors["total"] += 1
            entry = errors["by_kind"].setdefault(
                kind, {"count": 0, "last_message": "", "last_time": None}
            )
            entry["count"] += 1
            entry["last_message"] = message
            entry["last_time"] = _utcnow_iso()
        errors_total.labels(kind=kind).inc()

    def record_watch_check(self, items_found: int = 0) -> None:
        with self._lock:
            self._metrics["watches"]["checks"] += 1
            self._metrics["watches"]["items_found"] += items_found
        watch_checks_total.inc()
        if items_found:
            items_found_total.inc(items_found)

    def record_notification_sent(self) -> None:
        with self._lock:
            self._metrics["watches"]["notifications_sent"] += 1
        notifications_sent_total.inc()

    def record_sweep(self, duration_seconds: Optional[float] = None, skipped: bool = False) -> None:
        """Record a completed or skipped sweep."""
        with self._lock:
            sweeps = self._metrics["sweeps"]
            if skipped:
                sweeps["skipped"] += 1
            else:
                sweeps["completed"] += 1
                sweeps["last_duration_seconds"] = duration_seconds
        sweeps_total.labels(status="skipped" if skipped else "completed").inc()
        if not skipped and duration_seconds is not None:
            sweep_duration_seconds.observe(duration_seconds)

    def update_watch_counts(self, total: int, active: int) -> None:
        with self._lock:
            self._metrics["watches"]["total"] = total
            self._metrics["watches"]["active"] = active
        active_watches.set(active)

    def set_active_watches(self, active: int) -> None:
        """Update only the active count, as seen by the latest sweep."""
        with self._lock:
            self._metrics["watches"]["active"] = active
        active_watches.set(active)

    def update_user_counts(self, total: int, active: int) -> None:
        with self._lock:
            self._metrics["users"]["total"] = total
            self._metrics["users"]["active"] = active

    def update_system_metrics(self) -> None:
        """Refresh uptime and process memory gauges."""
        memory = psutil.Process(os.getpid()).memory_info()
        with self._lock:
            self._metrics["system"]["memory_mb"] = {
                "rss": round(memory.rss / 1024 / 1024, 2),
                "vms": round(memory.vms / 1024 / 1024, 2),
            }
            self._metrics["system"]["uptime_seconds"] = int(time.monotonic() - self._started)

    def get_metrics(self) -> dict[str, Any]:
        """Return a current copy of the snapshot."""
        self.update_system_metrics()
        with self._lock:
            return copy.deepcopy(self._metrics)

    @property
    def average_response_time_ms(self) -> float:
        with self._lock:
            return self._metrics["performance"]["average_response_time_ms"]

    def save_snapshot(self, path: Optional[str | Path] = None) -> Optional[Path]:
        """
        Write the current snapshot to disk as JSON.

        The file is written next to its destination and renamed into place,
        so readers never observe a partial dump.

        Returns:
            The written path, or None if writing failed
        """
        target = Path(path) if path else self.snapshot_path
        try:
            snapshot = self.get_metrics()
            target.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = target.with_suffix(target.suffix + ".tmp")
            tmp_path.write_text(json.dumps(snapshot, indent=2), encoding="utf-8")
            os.replace(tmp_path, target)
            logger.debug(f"Metrics saved to {target}")
            return target
        except OSError as e:
            logger.error(f"Failed to save metrics: {e}")
            return None


def update_cache_entries(count: int) -> None:
    """Set the response cache size gauge."""
    cache_entries.set(count)
