"""Prometheus metrics for the catalog sync pipeline."""

import time

from prometheus_client import Counter, Gauge, Histogram, Info

from catalog_sync import __version__

# Application info
app_info = Info("catalog_sync", "Catalog sync application info")
app_info.info({"version": __version__, "name": "catalog-sync"})

# Supplier API metrics
supplier_requests_total = Counter(
    "supplier_requests_total",
    "Total number of supplier API requests",
    ["endpoint", "status"],
)

supplier_retries_total = Counter(
    "supplier_retries_total",
    "Total number of supplier lookup retries",
    ["reason"],
)

supplier_fetch_duration_seconds = Histogram(
    "supplier_fetch_duration_seconds",
    "Time spent on one product lookup, retries included",
    buckets=[0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0],
)

throttle_queue_depth = Gauge(
    "throttle_queue_depth",
    "Number of tasks waiting in the request throttle",
)

# Sync metrics
sync_items_total = Counter(
    "sync_items_total",
    "Total number of products processed by sync",
    ["result"],
)

price_changes_total = Counter(
    "price_changes_total",
    "Total number of supplier price changes detected",
    ["direction"],
)

sync_sessions_total = Counter(
    "sync_sessions_total",
    "Total number of sync sessions by terminal status",
    ["status"],
)

sync_sessions_active = Gauge(
    "sync_sessions_active",
    "Number of sync sessions currently running in this process",
)

sync_session_duration_seconds = Histogram(
    "sync_session_duration_seconds",
    "Wall-clock duration of sync sessions",
    buckets=[10, 30, 60, 300, 600, 1800, 3600, 7200],
)

scheduler_runs_total = Counter(
    "scheduler_runs_total",
    "Total number of scheduler runs",
    ["job_type", "status"],
)

scheduler_last_run_timestamp = Gauge(
    "scheduler_last_run_timestamp",
    "Timestamp of last scheduler run",
    ["job_type"],
)


def record_supplier_request(endpoint: str, status: str):
    """Record one HTTP call to the supplier API."""
    supplier_requests_total.labels(endpoint=endpoint, status=status).inc()


def record_item_result(result: str):
    """Record a per-product sync outcome (updated, failed, deactivated)."""
    sync_items_total.labels(result=result).inc()


def record_price_change(old_price: float, new_price: float):
    """Record a price change."""
    direction = "up" if new_price > old_price else "down"
    price_changes_total.labels(direction=direction).inc()


def record_session_finished(status: str, duration: float):
    """Record a sync session reaching a terminal status."""
    sync_sessions_total.labels(status=status).inc()
    sync_session_duration_seconds.observe(duration)


def record_scheduler_run(job_type: str, success: bool):
    """Record a scheduler job run."""
    status = "success" if success else "error"
    scheduler_runs_total.labels(job_type=job_type, status=status).inc()
    scheduler_last_run_timestamp.labels(job_type=job_type).set(time.time())
