from prometheus_client import Counter, Histogram, Gauge
# Prometheus metrics definitions

# Submission pipeline
submissions_total = Counter(
    "submissions_total", "Total report submissions", ["outcome"]
)

# buckets cover the full classifier retry window
_submission_latency_buckets = (
    0.5,
    1.0,
    2.0,
    4.0,
    8.0,
    16.0,
    32.0,
)

submission_latency_seconds = Histogram(
    "submission_latency_seconds",
    "End-to-end submission latency",
    buckets=_submission_latency_buckets,
)

# Classifier gateway
classifier_retry_total = Counter(
    "classifier_retry_total", "Number of retried classifier calls"
)

# Incremented whenever a submission falls back to the unknown label
classifier_degraded_total = Counter(
    "classifier_degraded_total", "Number of degraded classifications", ["reason"]
)

# Points ledger
points_awarded_total = Counter(
    "points_awarded_total", "Total points credited to users"
)

# Ledger update failed after the report was committed
ledger_inconsistency_total = Counter(
    "ledger_inconsistency_total", "Awards left for reconciliation"
)

ledger_reconciled_total = Counter(
    "ledger_reconciled_total", "Awards applied by reconciliation"
)

# Gauge for reports awaiting moderation
reports_pending = Gauge(
    "reports_pending", "Number of reports in pending status"
)

__all__ = [
    "submissions_total",
    "submission_latency_seconds",
    "classifier_retry_total",
    "classifier_degraded_total",
    "points_awarded_total",
    "ledger_inconsistency_total",
    "ledger_reconciled_total",
    "reports_pending",
]
