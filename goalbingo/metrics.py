"""Prometheus metrics collection and export.

This module provides Prometheus instrumentation for the goal engine,
event outbox, feed assembly and AI inference calls.

Metric Types:
    Counters (always increase):
        - goal_transitions_total: Goal state changes by transition
        - events_appended_total: Events written to the log by kind
        - events_skipped_total: Appends dropped because the actor is not opted in
        - events_voided_total: Events retracted by uncompletion
        - outbox_entries_total: Outbox entries dispatched by operation and status
        - feed_requests_total: Feed reads by scope
        - inference_requests_total: AI requests by operation and status
        - errors_total: Errors by type and component

    Gauges (can go up or down):
        - outbox_pending: Outbox entries waiting for dispatch

    Histograms (track distributions):
        - feed_assembly_duration_seconds: Feed assembly latency by scope
        - inference_request_duration_seconds: AI request latency by operation

Usage:
    ```python
    from goalbingo.metrics import feed_requests_total, generate_metrics_output

    feed_requests_total.labels(scope="public").inc()
    print(generate_metrics_output().decode())
    ```

References:
    - Prometheus Python Client: https://github.com/prometheus/client_python
    - Metric Types: https://prometheus.io/docs/tutorials/understanding_metric_types/
"""

from __future__ import annotations

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

# Custom registry so only the metrics below are exported
registry = CollectorRegistry()

# Latency bucket definitions (in seconds)
FEED_LATENCY_BUCKETS = (
    0.001,  # 1ms
    0.005,  # 5ms
    0.01,   # 10ms
    0.025,  # 25ms
    0.05,   # 50ms
    0.1,    # 100ms
    0.25,   # 250ms
    0.5,    # 500ms
    1.0,    # 1s
)

INFERENCE_LATENCY_BUCKETS = (
    0.1,    # 100ms
    0.5,    # 500ms
    1.0,    # 1s
    2.5,    # 2.5s
    5.0,    # 5s
    10.0,   # 10s
    30.0,   # 30s
    60.0,   # 60s
)


# ========== COUNTER METRICS (always increase) ==========

goal_transitions_total = Counter(
    "goal_transitions_total",
    "Total number of goal state transitions",
    labelnames=["transition"],
    registry=registry,
)
"""Counter for goal transitions.

Labels:
    transition: e.g. "completed", "uncompleted", "streak_started",
        "streak_reset", "progress_completed"
"""

events_appended_total = Counter(
    "events_appended_total",
    "Total number of events appended to the log",
    labelnames=["kind"],
    registry=registry,
)

events_skipped_total = Counter(
    "events_skipped_total",
    "Total number of appends skipped because the actor is not opted in",
    labelnames=["kind"],
    registry=registry,
)

events_voided_total = Counter(
    "events_voided_total",
    "Total number of events voided",
    labelnames=["kind"],
    registry=registry,
)

outbox_entries_total = Counter(
    "outbox_entries_total",
    "Total number of outbox entries dispatched",
    labelnames=["operation", "status"],
    registry=registry,
)
"""Counter for outbox dispatch results.

Labels:
    operation: "append" or "void"
    status: "success" or "error"
"""

feed_requests_total = Counter(
    "feed_requests_total",
    "Total number of feed reads",
    labelnames=["scope"],
    registry=registry,
)

inference_requests_total = Counter(
    "inference_requests_total",
    "Total number of AI inference requests",
    labelnames=["operation", "status"],
    registry=registry,
)
"""Counter for AI requests.

Labels:
    operation: "rank_difficulty" or "extract_goals"
    status: "success", "unavailable" or "not_configured"
"""

errors_total = Counter(
    "errors_total",
    "Total number of errors encountered",
    labelnames=["error_type", "component"],
    registry=registry,
)
"""Counter for errors by type and component.

Labels:
    error_type: Error code (e.g., "not_found", "precondition_failed", "network")
    component: Component where the error occurred (e.g., "goals", "outbox", "inference")
"""


# ========== GAUGE METRICS (can go up or down) ==========

outbox_pending = Gauge(
    "outbox_pending",
    "Number of outbox entries waiting for dispatch",
    registry=registry,
)


# ========== HISTOGRAM METRICS (track distributions) ==========

feed_assembly_duration_seconds = Histogram(
    "feed_assembly_duration_seconds",
    "Duration of feed assembly in seconds",
    labelnames=["scope"],
    buckets=FEED_LATENCY_BUCKETS,
    registry=registry,
)

inference_request_duration_seconds = Histogram(
    "inference_request_duration_seconds",
    "Duration of AI inference requests in seconds",
    labelnames=["operation"],
    buckets=INFERENCE_LATENCY_BUCKETS,
    registry=registry,
)


def generate_metrics_output() -> bytes:
    """Generate Prometheus text exposition output for the custom registry.

    Returns:
        Metrics in Prometheus text format (bytes)
    """
    return generate_latest(registry)


__all__ = [
    "registry",
    "goal_transitions_total",
    "events_appended_total",
    "events_skipped_total",
    "events_voided_total",
    "outbox_entries_total",
    "feed_requests_total",
    "inference_requests_total",
    "errors_total",
    "outbox_pending",
    "feed_assembly_duration_seconds",
    "inference_request_duration_seconds",
    "generate_metrics_output",
    "FEED_LATENCY_BUCKETS",
    "INFERENCE_LATENCY_BUCKETS",
]
