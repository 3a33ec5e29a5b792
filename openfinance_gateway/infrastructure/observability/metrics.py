"""Prometheus metrics for monitoring connection outcomes, quota spend and backend health"""

from prometheus_client import Counter, Histogram

# Connection metrics
connection_outcome_counter = Counter(
    "openfinance_connection_total",
    "Connection sessions reaching a terminal or manage phase",
    ["outcome"],  # success | error | manage
)

provider_error_counter = Counter(
    "openfinance_provider_errors_total",
    "Widget/provider errors by classified category",
    ["category"],  # retryable | fatal | duplicate
)

# Quota metrics
credits_consumed_counter = Counter(
    "openfinance_credits_consumed_total",
    "Aggregator credits consumed",
    ["operation"],  # connect | refresh
)

quota_rejection_counter = Counter(
    "openfinance_quota_rejections_total",
    "Operations rejected because the daily quota was exhausted",
)

# Sync metrics
sync_latency_histogram = Histogram(
    "openfinance_sync_latency_seconds",
    "Full item sync duration (backend call + normalization)",
    buckets=[0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
)

accounts_dropped_counter = Counter(
    "openfinance_accounts_dropped_total",
    "Synced accounts dropped for having a non-finite balance",
)

# Backend API metrics
backend_failures_counter = Counter(
    "openfinance_backend_failures_total",
    "Failed calls to the application backend",
    ["endpoint"],
)

items_fallback_counter = Counter(
    "openfinance_items_fallback_total",
    "Linked-item listings served from the local database mirror",
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)
