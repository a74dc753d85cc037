"""Observability layer: in-process metrics for the audit pipeline."""

from audit_stream.observability.metrics import MetricsCollector

__all__ = [
    "MetricsCollector",
]
