"""Prometheus metrics for stackdeploy.

Collectors live in the default registry; a long-running caller can expose
them with ``prometheus_client.start_http_server``.
"""

from __future__ import annotations

from prometheus_client import Counter, Histogram

resource_transitions_total = Counter(
    "stackdeploy_resource_transitions_total",
    "Resource state machine transitions.",
    labelnames=("kind", "phase"),
)

probe_duration_seconds = Histogram(
    "stackdeploy_probe_duration_seconds",
    "Time spent waiting for a resource to become ready.",
    labelnames=("outcome",),
    buckets=(1.0, 5.0, 15.0, 30.0, 60.0, 120.0, 300.0, 600.0),
)

operations_total = Counter(
    "stackdeploy_operations_total",
    "Orchestrator operations by outcome.",
    labelnames=("operation", "outcome"),
)
