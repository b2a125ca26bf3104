"""Monitoring and metrics instrumentation for Disk Orchestrator.

Exports custom Prometheus metrics for operational monitoring and alerting.
"""

from disk_orchestrator.monitoring.metrics import (
    batch_units_total,
    poll_missed_ticks_total,
    poll_outcomes_total,
    remote_attempts_total,
    remote_operation_seconds,
    remote_retries_total,
)

__all__ = [
    "remote_attempts_total",
    "remote_retries_total",
    "remote_operation_seconds",
    "batch_units_total",
    "poll_outcomes_total",
    "poll_missed_ticks_total",
]
