"""Prometheus metrics for monitoring payment submissions, exports, and backend health"""

from typing import Iterable

from prometheus_client import Counter, Histogram

# Submission metrics
submission_counter = Counter(
    "billpay_submissions_total",
    "Batch payment submissions",
    ["outcome"],  # all_succeeded | partial | all_failed | transport_failed
)

payment_result_counter = Counter(
    "billpay_payment_results_total",
    "Per-bill payment results",
    ["status"],  # success | failure
)

submission_latency_histogram = Histogram(
    "billpay_submission_latency_seconds",
    "Batch payment round-trip time",
    buckets=[0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

# Export metrics
export_attempt_counter = Counter(
    "billpay_export_attempts_total",
    "Bank payment file export actions",
    ["outcome"],  # completed | conversion_required | failed
)

conversion_prompt_counter = Counter(
    "billpay_conversion_prompts_total",
    "Exports that required currency conversion consent",
)

# Backend metrics
finance_api_failures_counter = Counter(
    "billpay_finance_api_failures_total",
    "Failed finance backend calls",
    ["reason"],  # timeout | network | session | http | invalid_json
)

payment_source_failures_counter = Counter(
    "billpay_payment_source_failures_total",
    "Payment source listings that could not be loaded",
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_submission(successes: Iterable[bool], transport_failed: bool) -> None:
    """Record one submission and its per-bill results"""
    flags = list(successes)
    for ok in flags:
        payment_result_counter.labels(status="success" if ok else "failure").inc()

    if transport_failed:
        outcome = "transport_failed"
    elif flags and all(flags):
        outcome = "all_succeeded"
    elif any(flags):
        outcome = "partial"
    else:
        outcome = "all_failed"

    submission_counter.labels(outcome=outcome).inc()
