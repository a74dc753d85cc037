"""Prometheus-style pipeline metrics. Thread-safe, in-memory. No real Prometheus dependency."""

import threading
from typing import Any


class MetricsCollector:
    """
    In-memory counters and latency histograms for the audit pipeline.
    Counters can carry one label: the entity they concern or a free-form category.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[str, float] = {}
        self._counters_by_labels: dict[str, dict[str, float]] = {}
        # name -> running {"count", "sum"}; samples are not retained.
        self._histograms: dict[str, dict[str, float]] = {}

    def increment(
        self,
        name: str,
        value: float = 1.0,
        *,
        entity: str | None = None,
        category: str | None = None,
    ) -> None:
        """Increment a counter. Labelled counters are tracked separately from the bare one."""
        with self._lock:
            if entity is not None:
                label = f"{name}:entity={entity}"
            elif category is not None:
                label = f"{name}:category={category}"
            else:
                self._counters[name] = self._counters.get(name, 0) + value
                return
            bucket = self._counters_by_labels.setdefault(name, {})
            bucket[label] = bucket.get(label, 0) + value

    def observe_latency(self, name: str, latency_ms: float) -> None:
        with self._lock:
            histogram = self._histograms.setdefault(name, {"count": 0, "sum": 0.0})
            histogram["count"] += 1
            histogram["sum"] += latency_ms

    def counter(self, name: str) -> float:
        """Total of a counter across its bare and labelled values."""
        with self._lock:
            total = self._counters.get(name, 0)
            total += sum(self._counters_by_labels.get(name, {}).values())
            return total

    def export_metrics(self) -> dict[str, Any]:
        """Export all metrics as a dict (simulated Prometheus-style)."""
        with self._lock:
            return {
                "counters": dict(self._counters),
                "counters_by_labels": {
                    k: dict(v) for k, v in self._counters_by_labels.items()
                },
                "histograms": {
                    k: dict(v)
                    for k, v in self._histograms.items()
                },
            }

    def reset(self) -> None:
        """Reset all metrics (for tests)."""
        with self._lock:
            self._counters.clear()
            self._counters_by_labels.clear()
            self._histograms.clear()
