"""Prometheus metrics for the automation engine.

All collectors live in the default registry. ``start_metrics_server`` is
called by the bootstrap when a metrics port is configured.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, start_http_server

events_dispatched_total = Counter(
    "kubeaction_events_dispatched_total",
    "Lifecycle events handed to the dispatcher.",
    ["event"],
)

rule_matches_total = Counter(
    "kubeaction_rule_matches_total",
    "Rules matched by a lifecycle event, by dispatch decision.",
    ["decision"],  # executed | deduplicated
)

action_executions_total = Counter(
    "kubeaction_action_executions_total",
    "Action executions by action type, mode and outcome.",
    ["action_type", "mode", "outcome"],
)

http_attempts_total = Counter(
    "kubeaction_http_attempts_total",
    "Individual HTTP attempts by classified outcome.",
    ["outcome"],  # success | retry_status | retry_network | status_error | network_error
)

status_update_conflicts_total = Counter(
    "kubeaction_status_update_conflicts_total",
    "Optimistic-concurrency conflicts hit while persisting rule status.",
)

interval_tasks_active = Gauge(
    "kubeaction_interval_tasks_active",
    "Interval tasks currently registered.",
)

watched_resource_types = Gauge(
    "kubeaction_watched_resource_types",
    "Resource types with a running watch session.",
)


def start_metrics_server(port: int) -> None:
    """Expose the default registry over HTTP on *port*."""
    start_http_server(port)
