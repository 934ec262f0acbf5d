from __future__ import annotations

from prometheus_client import Counter, Gauge

JOBS_RECEIVED = Counter(
    "pod_publisher_jobs_received_total",
    "Job notifications received from the protocol by phase",
    labelnames=("phase",),
)
JOBS_REJECTED = Counter(
    "pod_publisher_jobs_rejected_total",
    "Jobs rejected by reason class",
    labelnames=("reason",),
)
DUPLICATES_IGNORED = Counter(
    "pod_publisher_duplicates_ignored_total",
    "Notifications dropped because the item was busy or already minted",
)
PODS_MINTED = Counter(
    "pod_publisher_pods_minted_total",
    "Successful on-chain pod mints",
)
PUBLISH_RESULTS = Counter(
    "pod_publisher_publish_results_total",
    "Catalog metadata submissions by outcome",
    labelnames=("outcome",),
)
JOBS_DELIVERED = Counter(
    "pod_publisher_jobs_delivered_total",
    "Jobs delivered back to the protocol",
    labelnames=("partial",),
)
JOB_ERRORS = Counter(
    "pod_publisher_job_errors_total",
    "Pipeline failures recorded on the work log",
)
RECOVERY_OUTCOMES = Counter(
    "pod_publisher_recovery_outcomes_total",
    "Startup recovery outcomes per work log entry",
    labelnames=("outcome",),
)
PENDING_JOBS = Gauge(
    "pod_publisher_pending_jobs",
    "Work log entries not yet completed",
)
PERSISTENCE_FAILURES = Counter(
    "pod_publisher_persistence_failures_total",
    "Durable writes that gave up after lock retries",
    labelnames=("store",),
)
