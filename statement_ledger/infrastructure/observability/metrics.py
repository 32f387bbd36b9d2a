"""Prometheus metrics for monitoring statement ingestion, card detection and job submission"""

from prometheus_client import Counter, Histogram

# Ingestion metrics
files_processed_counter = Counter(
    "statement_files_processed_total",
    "Statement files processed",
    ["parser", "outcome"],  # completed | failed
)

transactions_counter = Counter(
    "statement_transactions_total",
    "Statement transactions ingested",
    ["outcome"],  # new | updated | duplicate | failed
)

card_detection_counter = Counter(
    "card_detection_total",
    "Card detection results",
    ["status", "tier"],
)

installment_collision_counter = Counter(
    "installment_collisions_total",
    "Twin installment purchases resolved by collision escape",
)

batch_duration_histogram = Histogram(
    "batch_duration_seconds",
    "Upload batch processing time",
    buckets=[0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0],
)

# Job metrics
job_latency_histogram = Histogram(
    "job_submission_latency_seconds",
    "Job webhook response time",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

job_submission_failures_counter = Counter(
    "job_submission_failures_total",
    "Failed job submissions",
)

# Exchange rate API metrics
exchange_rate_failures_counter = Counter(
    "exchange_rate_fetch_failures_total",
    "Failed exchange rate API calls",
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_file(parser: str, completed: bool) -> None:
    files_processed_counter.labels(parser=parser, outcome="completed" if completed else "failed").inc()


def record_transactions(new: int = 0, updated: int = 0, duplicate: int = 0, failed: int = 0) -> None:
    """Record per-file transaction outcomes"""
    for outcome, count in (("new", new), ("updated", updated), ("duplicate", duplicate), ("failed", failed)):
        if count:
            transactions_counter.labels(outcome=outcome).inc(count)


def record_detection(status: str, tier: str) -> None:
    card_detection_counter.labels(status=status, tier=tier).inc()
