"""Prometheus metrics definitions for the video sync agent.

Defines counters, gauges, and histograms for monitoring:
- Sync cycle outcomes and duration
- Item download throughput and latency
- Catalog paging
- Notification delivery
- Scheduler state and checkpoint position

Usage:
    from src.observability.metrics import SYNC_CYCLES, CYCLE_DURATION

    # Increment counter
    SYNC_CYCLES.labels(status="completed").inc()

    # Track histogram
    with CYCLE_DURATION.time():
        run_cycle()

Metrics are exposed over HTTP by ``python -m src.cli run --metrics-port``.
"""

from typing import Any, Optional
from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    CollectorRegistry,
    start_http_server,
)

# Custom registry to avoid conflicts with default registry
# Allows clean testing and multiple instances
REGISTRY = CollectorRegistry(auto_describe=True)

# =============================================================================
# COUNTERS - Monotonically increasing values
# =============================================================================

SYNC_CYCLES = Counter(
    name="videosync_cycles_total",
    documentation="Total sync cycles by outcome",
    labelnames=["status"],  # completed, failed, skipped
    registry=REGISTRY,
)

SYNC_ITEMS = Counter(
    name="videosync_items_total",
    documentation="Catalog items handled by outcome",
    labelnames=["status"],  # downloaded, failed, skipped
    registry=REGISTRY,
)

CATALOG_PAGES = Counter(
    name="videosync_catalog_pages_total",
    documentation="Catalog pages requested",
    labelnames=["status"],  # success, failed
    registry=REGISTRY,
)

EVENTS_PUBLISHED = Counter(
    name="videosync_events_published_total",
    documentation="Lifecycle events published to the notification hub",
    labelnames=["event_type"],  # cycle.skipped, cycle.completed, cycle.error
    registry=REGISTRY,
)

OBSERVER_FAILURES = Counter(
    name="videosync_observer_failures_total",
    documentation="Exceptions raised by notification observers",
    registry=REGISTRY,
)

# =============================================================================
# GAUGES - Values that can go up and down
# =============================================================================

SCHEDULER_JOBS = Gauge(
    name="videosync_scheduler_jobs",
    documentation="Scheduler job state",
    labelnames=["status"],  # pending, running
    registry=REGISTRY,
)

CHECKPOINT_TIMESTAMP = Gauge(
    name="videosync_checkpoint_timestamp_seconds",
    documentation="Unix time of the last persisted checkpoint",
    registry=REGISTRY,
)

# =============================================================================
# HISTOGRAMS - Distribution of values
# =============================================================================

CYCLE_DURATION = Histogram(
    name="videosync_cycle_duration_seconds",
    documentation="Sync cycle duration in seconds",
    buckets=(0.1, 0.5, 1, 5, 10, 30, 60, 300, 900, 3600, float("inf")),
    registry=REGISTRY,
)

DOWNLOAD_DURATION = Histogram(
    name="videosync_download_duration_seconds",
    documentation="Single item download duration in seconds",
    buckets=(0.5, 1, 5, 10, 30, 60, 300, 900, float("inf")),
    registry=REGISTRY,
)

# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def start_metrics_server(port: int, addr: str = "0.0.0.0") -> None:
    """Serve /metrics for this registry on a background thread."""
    start_http_server(port, addr=addr, registry=REGISTRY)


class MetricsContext:
    """Context manager for timing operations and updating metrics.

    Combines histogram timing with counter updates for common patterns.

    Example:
        with MetricsContext(
            histogram=DOWNLOAD_DURATION,
            success_counter=SYNC_ITEMS.labels(status="downloaded"),
            failure_counter=SYNC_ITEMS.labels(status="failed"),
        ) as ctx:
            if await downloader.fetch(locator, folder, item_id):
                ctx.mark_success()

        # Records duration and increments the matching counter
    """

    def __init__(
        self,
        histogram: Optional[Histogram] = None,
        success_counter: Optional[Counter] = None,
        failure_counter: Optional[Counter] = None,
    ):
        """Initialize metrics context.

        Args:
            histogram: Optional histogram to record duration
            success_counter: Counter to increment on success
            failure_counter: Counter to increment on failure
        """
        self._histogram = histogram
        self._success_counter = success_counter
        self._failure_counter = failure_counter
        self._timer: Any = None
        self._success = False

    def __enter__(self) -> "MetricsContext":
        """Start timing."""
        if self._histogram:
            self._timer = self._histogram.time()
            self._timer.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Stop timing and update counters."""
        if self._timer:
            self._timer.__exit__(exc_type, exc_val, exc_tb)

        # No exception but not marked success - treat as failure
        if exc_type is None and self._success:
            if self._success_counter:
                self._success_counter.inc()
        elif self._failure_counter:
            self._failure_counter.inc()

    def mark_success(self) -> None:
        """Mark the operation as successful.

        Must be called before exiting the context to register success.
        """
        self._success = True
