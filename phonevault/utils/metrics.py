"""Prometheus Metrics - Observability for PhoneVault

Self-Explanatory: Counters and histograms for key-service calls and record traffic.
How: prometheus_client exports the /metrics endpoint.

Metrics Categories:
1. Key service: kms_operations_total, kms_call_duration_seconds
2. Records: records_created_total, records_fetched_total
3. HTTP: http_requests_total, http_request_duration_seconds
"""

import time
from functools import wraps
from typing import Callable

import structlog
from prometheus_client import (
    Counter,
    Histogram,
    Info,
    generate_latest,
    REGISTRY,
)

logger = structlog.get_logger()

# ============================================================================
# KEY SERVICE METRICS
# ============================================================================

kms_operations_total = Counter(
    "phonevault_kms_operations_total",
    "Total encrypt/decrypt calls against the key service",
    ["purpose", "operation", "outcome"],  # outcome: success, failure
)

kms_call_duration_seconds = Histogram(
    "phonevault_kms_call_duration_seconds",
    "Key service call latency",
    ["operation"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5],
)

# ============================================================================
# RECORD METRICS
# ============================================================================

records_created_total = Counter(
    "phonevault_records_created_total",
    "Total encrypted records persisted",
)

records_fetched_total = Counter(
    "phonevault_records_fetched_total",
    "Total record fetches",
    ["outcome"],  # found, not_found, error
)

db_query_duration_seconds = Histogram(
    "phonevault_db_query_duration_seconds",
    "Record store query latency",
    ["query_type"],
    buckets=[0.001, 0.01, 0.1, 0.5, 1, 5],
)

# ============================================================================
# HTTP METRICS
# ============================================================================

http_requests_total = Counter(
    "phonevault_http_requests_total",
    "Total HTTP requests",
    ["method", "route", "status"],
)

http_request_duration_seconds = Histogram(
    "phonevault_http_request_duration_seconds",
    "HTTP request latency",
    ["method", "route"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10],
)

# ============================================================================
# SYSTEM INFO
# ============================================================================

system_info = Info(
    "phonevault_system",
    "PhoneVault system information",
)

system_info.info({
    "version": "1.0.0",
})

# ============================================================================
# DECORATOR UTILITIES
# ============================================================================


def track_kms_call(operation: str):
    """Decorator to track key service call duration"""
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            start_time = time.time()
            try:
                return func(*args, **kwargs)
            finally:
                kms_call_duration_seconds.labels(operation=operation).observe(time.time() - start_time)
        return wrapper
    return decorator


def track_db_query(query_type: str):
    """Decorator to track database query duration"""
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            start_time = time.time()
            try:
                return func(*args, **kwargs)
            finally:
                db_query_duration_seconds.labels(query_type=query_type).observe(time.time() - start_time)
        return wrapper
    return decorator


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================


def record_kms_operation(purpose: str, operation: str, success: bool):
    """Record one encrypt/decrypt outcome"""
    kms_operations_total.labels(
        purpose=purpose,
        operation=operation,
        outcome="success" if success else "failure",
    ).inc()


def record_fetch(outcome: str):
    records_fetched_total.labels(outcome=outcome).inc()


def record_http_request(method: str, route: str, status: int, duration: float):
    http_requests_total.labels(method=method, route=route, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, route=route).observe(duration)


def get_metrics_text() -> bytes:
    """Get Prometheus metrics in text format

    Returns:
        Metrics in Prometheus exposition format
    """
    return generate_latest(REGISTRY)
