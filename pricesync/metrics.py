"""Prometheus metrics for the price-list sync service."""

from prometheus_client import Counter, Histogram, Info

# Application info
app_info = Info("pricesync", "Price-list sync service info")
app_info.info({"version": "0.1.0", "name": "pricesync"})

# Remote store metrics
remote_requests_total = Counter(
    "remote_requests_total",
    "Total number of remote store requests",
    ["collection", "method", "status"],
)

remote_retries_total = Counter(
    "remote_retries_total",
    "Total number of retried remote store calls",
    ["collection", "operation"],
)

remote_pagination_stops_total = Counter(
    "remote_pagination_stops_total",
    "Paginated fetches by termination reason",
    ["collection", "reason"],
)

# Sync metrics
sync_runs_total = Counter(
    "sync_runs_total",
    "Total number of sync runs",
    ["trigger", "status"],
)

sync_records_written_total = Counter(
    "sync_records_written_total",
    "Records written to the remote store by sync runs",
    ["collection", "action"],
)

sync_item_errors_total = Counter(
    "sync_item_errors_total",
    "Item-level failures captured during sync runs",
    ["phase"],
)

sync_duration_seconds = Histogram(
    "sync_duration_seconds",
    "Time spent in a sync run",
    ["trigger"],
    buckets=[1.0, 5.0, 15.0, 30.0, 60.0, 120.0, 300.0, 600.0, 1800.0],
)
