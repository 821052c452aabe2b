"""
Operational metrics for fleet sync and bulk update runs.

Exposition is left to the host process (prometheus_client's default registry).
"""

from prometheus_client import Counter, Histogram

# --- Fleet Sync ---
FLEET_SYNC_SITE_OUTCOMES = Counter(
    "wpfleet_sync_site_outcomes_total",
    "Per-site outcome of fleet sync runs",
    ["outcome"],
)

FLEET_SYNC_DURATION = Histogram(
    "wpfleet_sync_duration_seconds",
    "Duration of a fleet sync run",
    buckets=(1, 5, 10, 30, 60, 120, 300, 600),
)

# --- Bulk Updates ---
BULK_UPDATE_RESULTS = Counter(
    "wpfleet_bulk_update_results_total",
    "Outcome of individual plugin/theme update requests",
    ["item_type", "status"],
)

BULK_UPDATE_DURATION = Histogram(
    "wpfleet_bulk_update_duration_seconds",
    "Duration of a bulk update call",
    buckets=(1, 5, 10, 30, 60, 120, 300, 600, 1800),
)

RECONCILIATION_FAILURES = Counter(
    "wpfleet_reconciliation_failures_total",
    "Post-update re-syncs that failed and left the local inventory as-is",
)

# --- Scheduler ---
SCHEDULER_JOB_RUNS = Counter(
    "wpfleet_scheduler_job_runs_total",
    "Total number of scheduled job runs",
    ["job_name", "status"],
)

NOTIFICATIONS_DISPATCHED = Counter(
    "wpfleet_notifications_dispatched_total",
    "Notifications handed to the dispatcher",
    ["type", "status"],
)
