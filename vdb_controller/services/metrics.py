"""
Prometheus metrics for the work queue and the reconciler.

Provides observability into reconcile passes and RDS/endpoint side effects.
"""
from prometheus_client import Counter, Gauge, Histogram

# Reconcile metrics
reconcile_total = Counter(
    "vdb_reconcile_total",
    "Total number of VirtualDatabase reconcile passes",
    ["result"],
)

reconcile_duration_seconds = Histogram(
    "vdb_reconcile_duration_seconds",
    "Time spent in a single reconcile pass",
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30, 60),
)

reconcile_errors_total = Counter(
    "vdb_reconcile_errors_total",
    "Total number of reconcile passes that returned an error",
    ["error_type"],
)

# Queue metrics
workqueue_depth = Gauge(
    "vdb_workqueue_depth",
    "Number of keys waiting in the work queue",
)

workqueue_adds_total = Counter(
    "vdb_workqueue_adds_total",
    "Total number of keys added to the work queue",
)

workqueue_retries_total = Counter(
    "vdb_workqueue_retries_total",
    "Total number of rate-limited re-adds",
)

# Side effects
rds_instance_create_total = Counter(
    "vdb_rds_instance_create_total",
    "Total number of CreateDBInstance calls",
    ["result"],
)

endpoint_writes_total = Counter(
    "vdb_endpoint_writes_total",
    "Total number of DatabaseEndpoint writes",
    ["op", "result"],
)

# Worker metrics
workers_busy = Gauge(
    "vdb_workers_busy",
    "Number of reconcile workers currently processing a key",
)

leader = Gauge(
    "vdb_leader",
    "Whether this instance currently holds the leader lease",
)
