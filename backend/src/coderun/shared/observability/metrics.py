"""Prometheus metrics for the code execution service."""

from __future__ import annotations

from prometheus_client import Counter, Histogram


# ── HTTP metrics ─────────────────────────────────────────────
HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

HTTP_REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ── Execution metrics ────────────────────────────────────────
EXECUTIONS_TOTAL = Counter(
    "code_executions_total",
    "Execution requests by terminal status",
    ["language", "status"],
)

OUTPUT_TRUNCATIONS = Counter(
    "code_execution_output_truncations_total",
    "Results whose stdout or stderr hit the output cap",
    ["stream"],
)

# ── Provider metrics ─────────────────────────────────────────
PROVIDER_ATTEMPTS = Counter(
    "execution_provider_attempts_total",
    "Provider attempts during fallback, by outcome",
    ["provider", "outcome"],
)

PROVIDER_LATENCY = Histogram(
    "execution_provider_latency_seconds",
    "Latency of provider invocations, successful or not",
    ["provider"],
    buckets=(0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0),
)
