"""Prometheus metric definitions for tenantflags."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

EVALUATIONS_TOTAL = Counter(
    "tenantflags_evaluations_total",
    "Flag evaluations by resolution reason",
    ["reason"],
)

CACHE_LOOKUPS = Counter(
    "tenantflags_cache_lookups_total",
    "Evaluation cache lookups",
    ["result"],
)

STORE_READ_SECONDS = Histogram(
    "tenantflags_store_read_seconds",
    "Evaluation-path read latency, cache included",
    buckets=[0.0005, 0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0],
)

ADMIN_MUTATIONS_TOTAL = Counter(
    "tenantflags_admin_mutations_total",
    "Recorded flag state changes",
    ["change_type"],
)

REQUEST_DURATION = Histogram(
    "tenantflags_request_duration_seconds",
    "HTTP request duration",
    ["method", "route", "status"],
)
