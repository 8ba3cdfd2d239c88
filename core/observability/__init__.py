"""
Observability Module for the Integration Hub

Provides:
- Structured logging with correlation IDs
- Metrics collection (sync jobs, webhook deliveries, processing times)
"""

from core.observability.metrics import (
    MetricsCollector,
    get_metrics,
    record_sync_started,
    record_sync_completed,
    record_sync_failed,
    record_delivery_scheduled,
    record_delivery_attempt,
    record_processing_time,
)

from core.observability.logging import (
    get_logger,
    configure_logging,
    CorrelationContext,
    with_correlation,
)

__all__ = [
    # Metrics
    "MetricsCollector",
    "get_metrics",
    "record_sync_started",
    "record_sync_completed",
    "record_sync_failed",
    "record_delivery_scheduled",
    "record_delivery_attempt",
    "record_processing_time",
    # Logging
    "get_logger",
    "configure_logging",
    "CorrelationContext",
    "with_correlation",
]
