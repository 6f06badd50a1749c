"""Observability for the video sync agent.

Provides:
- Correlation ID context management for per-cycle tracing
- Structured logging with context propagation
- Prometheus metrics for monitoring and alerting

Usage:
    from src.observability import configure_logging, SYNC_CYCLES

    configure_logging(level="INFO")
    SYNC_CYCLES.labels(status="completed").inc()
"""

from src.observability.context import (
    get_correlation_id,
    correlation_id_context,
)
from src.observability.logging import (
    configure_logging,
    add_correlation_id_processor,
)
from src.observability.metrics import (
    # Counters
    SYNC_CYCLES,
    SYNC_ITEMS,
    CATALOG_PAGES,
    EVENTS_PUBLISHED,
    OBSERVER_FAILURES,
    # Gauges
    SCHEDULER_JOBS,
    CHECKPOINT_TIMESTAMP,
    # Histograms
    CYCLE_DURATION,
    DOWNLOAD_DURATION,
    # Registry and utilities
    REGISTRY,
    MetricsContext,
    start_metrics_server,
)

__all__ = [
    # Context
    "get_correlation_id",
    "correlation_id_context",
    # Logging
    "configure_logging",
    "add_correlation_id_processor",
    # Counters
    "SYNC_CYCLES",
    "SYNC_ITEMS",
    "CATALOG_PAGES",
    "EVENTS_PUBLISHED",
    "OBSERVER_FAILURES",
    # Gauges
    "SCHEDULER_JOBS",
    "CHECKPOINT_TIMESTAMP",
    # Histograms
    "CYCLE_DURATION",
    "DOWNLOAD_DURATION",
    # Utilities
    "REGISTRY",
    "MetricsContext",
    "start_metrics_server",
]
