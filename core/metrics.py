"""Prometheus metrics for monitoring."""

from prometheus_client import Counter, Histogram

# Response time metrics
api_request_duration = Histogram(
    "api_request_duration_seconds", "API request duration in seconds", ["method", "endpoint", "status"]
)

# Reports
reports_submitted_total = Counter("reports_submitted_total", "Total number of cheater reports submitted")

reports_resolved_total = Counter("reports_resolved_total", "Total number of reports resolved", ["action"])

duplicate_reports_cleaned_total = Counter(
    "duplicate_reports_cleaned_total", "Total number of duplicate pending reports deleted on accept"
)

cheaters_moved_to_pending_total = Counter(
    "cheaters_moved_to_pending_total", "Total number of cheaters moved back to the pending queue"
)

# Appeals
appeals_submitted_total = Counter("appeals_submitted_total", "Total number of appeals submitted")

appeals_resolved_total = Counter("appeals_resolved_total", "Total number of appeals resolved", ["decision"])

# Verification
verification_attempts_total = Counter(
    "verification_attempts_total", "Ownership verification attempts", ["result"]
)

# Codeforces API
codeforces_requests_total = Counter(
    "codeforces_requests_total", "Requests made to the Codeforces API", ["method", "outcome"]
)

# Batch jobs
rating_refresh_changes_total = Counter(
    "rating_refresh_changes_total", "Cheater records changed by the rating refresh job", ["kind"]
)

snapshot_exports_total = Counter("snapshot_exports_total", "Snapshot export runs", ["outcome"])

tombstones_purged_total = Counter("tombstones_purged_total", "Tombstoned cheater records hard-deleted")

moderation_latency_seconds = Histogram(
    "moderation_latency_seconds", "Time spent in a moderation operation", ["operation"]
)

automated_reports_total = Counter(
    "automated_reports_total", "Pending reports filed by the language switch detector"
)
