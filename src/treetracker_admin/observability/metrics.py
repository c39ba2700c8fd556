"""Prometheus metrics.

Tracks tree updates and the verification event pipeline. Events stuck in
``raised`` show up as ``raised`` minus ``sent`` on a dashboard.
Exposed on the API's ``/metrics`` route.
"""

from __future__ import annotations

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Histogram,
    Info,
    generate_latest,
)

SYSTEM_INFO = Info("treetracker_admin", "Admin API information")

TREE_UPDATES_TOTAL = Counter(
    "treetracker_tree_updates_total",
    "Tree update workflow runs",
    ["outcome"],  # committed | failed
)

TREE_UPDATE_LATENCY = Histogram(
    "treetracker_tree_update_latency_seconds",
    "Duration of the update transaction, begin to commit",
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0],
)

EVENTS_RAISED_TOTAL = Counter(
    "treetracker_domain_events_raised_total",
    "Domain events written in raised state",
    ["event_type"],
)

EVENTS_PUBLISHED_TOTAL = Counter(
    "treetracker_domain_events_published_total",
    "Post-commit publish attempts by result",
    ["result"],  # sent | publish_failed | not_acknowledged | status_update_failed
)


def set_system_info(version: str, storage: str, messaging: str) -> None:
    SYSTEM_INFO.info({"version": version, "storage": storage, "messaging": messaging})


def record_tree_update(outcome: str, seconds: float | None = None) -> None:
    """Record one workflow run and, when committed, its transaction time."""
    TREE_UPDATES_TOTAL.labels(outcome=outcome).inc()
    if seconds is not None:
        TREE_UPDATE_LATENCY.observe(seconds)


def record_event_raised(event_type: str) -> None:
    EVENTS_RAISED_TOTAL.labels(event_type=event_type).inc()


def record_publish_result(result: str) -> None:
    EVENTS_PUBLISHED_TOTAL.labels(result=result).inc()


def render_latest() -> tuple[bytes, str]:
    """Current registry in text exposition format, with its content type."""
    return generate_latest(), CONTENT_TYPE_LATEST
