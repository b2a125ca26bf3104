"""Custom Prometheus metrics for Disk Orchestrator.

Scrape them from a pushgateway or a long-running caller that exposes the
default registry. Alert rules should be configured for:
- remote_retries_total (sustained throttling from the control plane)
- batch_units_total{status="Failed"} (disks left uncaptured or unhydrated)
- poll_outcomes_total{state="TimedOut"} (provisioning stuck beyond deadline)
"""

from prometheus_client import Counter, Histogram

# === Request Metrics ===

remote_attempts_total = Counter(
    "remote_attempts_total",
    "Total remote request attempts by method and outcome",
    ["method", "outcome"],
)
"""
Attempts counter.

Labels:
- method: GET, PUT, PATCH, POST, DELETE
- outcome: success, retryable, fatal, transport_error
"""

remote_retries_total = Counter(
    "remote_retries_total",
    "Total retries scheduled by reason",
    ["reason"],
)
"""
Retries counter.

Labels:
- reason: transport, throttling (429 / throttling vocabulary), server (5xx, 408, 409)
"""

remote_operation_seconds = Histogram(
    "remote_operation_seconds",
    "Wall-clock time of a finalised remote operation including retries",
    ["method", "status"],
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0],
)

# === Batch Metrics ===

batch_units_total = Counter(
    "batch_units_total",
    "Total fan-out units by final status",
    ["status"],
)

# === Polling Metrics ===

poll_outcomes_total = Counter(
    "poll_outcomes_total",
    "Total completed poll loops by terminal state",
    ["state"],
)

poll_missed_ticks_total = Counter(
    "poll_missed_ticks_total",
    "Poll ticks whose status read failed after retries",
)
