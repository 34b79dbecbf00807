"""
Prometheus metrics for ScoreFusion.
Wraps prometheus_client with async-safe patterns.
"""
from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

from prometheus_client import Counter, Gauge, Histogram, start_http_server

from shared.config import get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)

# ── Counters ────────────────────────────────────────────────────────────
PROVIDER_REQUESTS = Counter(
    "sf_provider_requests_total",
    "Total provider HTTP requests",
    ["provider", "status"],
)
PROVIDER_CALLS = Counter(
    "sf_provider_calls_total",
    "Adapter calls issued by the aggregator",
    ["provider", "operation", "outcome"],
)
MALFORMED_RECORDS = Counter(
    "sf_malformed_records_total",
    "Provider records skipped because they could not be converted",
    ["provider"],
)
DEDUP_MERGES = Counter(
    "sf_dedup_merges_total",
    "Duplicate matches merged during normalization",
    ["winner"],
)
SCHEDULER_PASSES = Counter(
    "sf_scheduler_passes_total",
    "Live refresh passes by result",
    ["result"],
)
MATCHES_UPSERTED = Counter(
    "sf_matches_upserted_total",
    "Matches written by the live refresh",
    ["sport"],
)
FACADE_QUERIES = Counter(
    "sf_facade_queries_total",
    "Queries served by the facade",
    ["operation", "source"],
)

# ── Histograms ──────────────────────────────────────────────────────────
PROVIDER_LATENCY = Histogram(
    "sf_provider_latency_seconds",
    "Provider request latency in seconds",
    ["provider"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)
SCHEDULER_PASS_DURATION = Histogram(
    "sf_scheduler_pass_seconds",
    "Duration of a full live refresh pass",
    buckets=(0.5, 1, 2.5, 5, 10, 20, 30, 60),
)

# ── Gauges ──────────────────────────────────────────────────────────────
PROVIDER_HEALTH_STATE = Gauge(
    "sf_provider_health_state",
    "Provider health: 0 healthy, 1 degraded, 2 down",
    ["provider"],
)
LIVE_MATCHES = Gauge(
    "sf_live_matches",
    "Live matches seen in the last refresh pass",
    ["sport"],
)


@asynccontextmanager
async def atrack_latency(histogram: Histogram, **labels: str) -> AsyncIterator[None]:
    """Async context manager to track operation latency."""
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed = time.perf_counter() - start
        if labels:
            histogram.labels(**labels).observe(elapsed)
        else:
            histogram.observe(elapsed)


def start_metrics_server(port: int | None = None) -> None:
    """Start the Prometheus metrics HTTP server."""
    settings = get_settings()
    if not settings.metrics_enabled:
        return
    metrics_port = port or settings.metrics_port
    try:
        start_http_server(metrics_port)
        logger.info("metrics_server_started", port=metrics_port)
    except OSError as exc:
        logger.warning("metrics_server_failed", error=str(exc), port=metrics_port)
