"""
Metrics Collection for the Integration Hub

Collects and exposes metrics for:
- Sync jobs (started, completed, failed) by job type
- Webhook deliveries (attempted, delivered, retried, exhausted) by event
- Processing times (average, p95)
- Delivery queue backlog

Metrics live in memory only; they reset when the process restarts.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Dict, List, Optional, Any
import statistics


# =============================================================================
# Metric Data Classes
# =============================================================================

@dataclass
class SyncMetrics:
    """Metrics for sync job execution."""
    started: int = 0
    completed: int = 0
    failed: int = 0
    in_progress: int = 0
    records: int = 0

    by_job_type: Dict[str, Dict[str, int]] = field(default_factory=lambda: defaultdict(lambda: {"started": 0, "completed": 0, "failed": 0}))


@dataclass
class DeliveryMetrics:
    """Metrics for webhook deliveries."""
    scheduled: int = 0
    attempted: int = 0
    delivered: int = 0
    retried: int = 0
    exhausted: int = 0

    by_event: Dict[str, Dict[str, int]] = field(default_factory=lambda: defaultdict(lambda: {"attempted": 0, "delivered": 0, "retried": 0, "exhausted": 0}))


@dataclass
class TimingMetrics:
    """Processing time metrics."""
    # Raw timing samples (keep last N for percentile calculations)
    samples: List[float] = field(default_factory=list)
    max_samples: int = 1000

    by_stage: Dict[str, List[float]] = field(default_factory=lambda: defaultdict(list))

    def add_sample(self, duration_ms: float, stage: str = None):
        """Add a timing sample."""
        self.samples.append(duration_ms)
        if len(self.samples) > self.max_samples:
            self.samples = self.samples[-self.max_samples:]

        if stage:
            self.by_stage[stage].append(duration_ms)
            if len(self.by_stage[stage]) > self.max_samples:
                self.by_stage[stage] = self.by_stage[stage][-self.max_samples:]

    def get_average(self, stage: str = None) -> float:
        """Get average processing time."""
        samples = self.by_stage.get(stage, []) if stage else self.samples
        return statistics.mean(samples) if samples else 0.0

    def get_p95(self, stage: str = None) -> float:
        """Get 95th percentile processing time."""
        samples = self.by_stage.get(stage, []) if stage else self.samples
        if not samples:
            return 0.0
        sorted_samples = sorted(samples)
        idx = int(len(sorted_samples) * 0.95)
        return sorted_samples[min(idx, len(sorted_samples) - 1)]


@dataclass
class QueueMetrics:
    """Delivery queue metrics."""
    # Due deliveries seen by the last poll, per queue
    backlog: Dict[str, int] = field(default_factory=dict)
    last_poll: Dict[str, datetime] = field(default_factory=dict)


# =============================================================================
# Metrics Collector (Singleton)
# =============================================================================

class MetricsCollector:
    """
    Thread-safe metrics collector for the integration hub.

    Usage:
        metrics = MetricsCollector.instance()
        metrics.record_sync_started("sync_customers")
        metrics.record_delivery_attempt("order.created", delivered=True, duration_ms=120)
    """

    _instance: Optional["MetricsCollector"] = None
    _lock = Lock()

    def __init__(self):
        self.syncs = SyncMetrics()
        self.deliveries = DeliveryMetrics()
        self.timings = TimingMetrics()
        self.queues = QueueMetrics()
        self._lock = Lock()

    @classmethod
    def instance(cls) -> "MetricsCollector":
        """Get singleton instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    # =========================================================================
    # Sync Job Metrics
    # =========================================================================

    def record_sync_started(self, job_type: str):
        """Record a sync job start."""
        with self._lock:
            self.syncs.started += 1
            self.syncs.in_progress += 1
            self.syncs.by_job_type[job_type]["started"] += 1

    def record_sync_completed(self, job_type: str, total_records: int = 0, duration_ms: float = None):
        """Record a sync job completion."""
        with self._lock:
            self.syncs.completed += 1
            self.syncs.records += total_records
            self.syncs.in_progress = max(0, self.syncs.in_progress - 1)
            self.syncs.by_job_type[job_type]["completed"] += 1

            if duration_ms:
                self.timings.add_sample(duration_ms, f"sync.{job_type}")

    def record_sync_failed(self, job_type: str):
        """Record a sync job failure."""
        with self._lock:
            self.syncs.failed += 1
            self.syncs.in_progress = max(0, self.syncs.in_progress - 1)
            self.syncs.by_job_type[job_type]["failed"] += 1

    # =========================================================================
    # Delivery Metrics
    # =========================================================================

    def record_delivery_scheduled(self, count: int = 1):
        with self._lock:
            self.deliveries.scheduled += count

    def record_delivery_attempt(
        self,
        event_type: str,
        delivered: bool,
        exhausted: bool = False,
        duration_ms: float = None,
    ):
        """Record the outcome of one delivery attempt."""
        with self._lock:
            self.deliveries.attempted += 1
            by_event = self.deliveries.by_event[event_type]
            by_event["attempted"] += 1
            if delivered:
                self.deliveries.delivered += 1
                by_event["delivered"] += 1
            elif exhausted:
                self.deliveries.exhausted += 1
                by_event["exhausted"] += 1
            else:
                self.deliveries.retried += 1
                by_event["retried"] += 1

            if duration_ms:
                self.timings.add_sample(duration_ms, "webhook.delivery")

    # =========================================================================
    # Timing Metrics
    # =========================================================================

    def record_processing_time(self, stage: str, duration_ms: float):
        """Record a processing time sample."""
        with self._lock:
            self.timings.add_sample(duration_ms, stage)

    def get_timing_stats(self, stage: str = None) -> Dict[str, float]:
        """Get timing statistics for a stage."""
        with self._lock:
            return {
                "average_ms": self.timings.get_average(stage),
                "p95_ms": self.timings.get_p95(stage),
                "sample_count": len(self.timings.by_stage.get(stage, []) if stage else self.timings.samples),
            }

    # =========================================================================
    # Queue Metrics
    # =========================================================================

    def update_queue_backlog(self, queue_name: str, backlog: int):
        """Update the backlog count for a queue."""
        with self._lock:
            self.queues.backlog[queue_name] = backlog
            self.queues.last_poll[queue_name] = datetime.now(timezone.utc)

    def get_queue_backlog(self, queue_name: str = None) -> Dict[str, int]:
        """Get backlog for queues."""
        with self._lock:
            if queue_name:
                return {queue_name: self.queues.backlog.get(queue_name, 0)}
            return dict(self.queues.backlog)

    # =========================================================================
    # Summary
    # =========================================================================

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of all metrics."""
        with self._lock:
            return {
                "sync_jobs": {
                    "started": self.syncs.started,
                    "completed": self.syncs.completed,
                    "failed": self.syncs.failed,
                    "in_progress": self.syncs.in_progress,
                    "records": self.syncs.records,
                    "by_job_type": {k: dict(v) for k, v in self.syncs.by_job_type.items()},
                },
                "deliveries": {
                    "scheduled": self.deliveries.scheduled,
                    "attempted": self.deliveries.attempted,
                    "delivered": self.deliveries.delivered,
                    "retried": self.deliveries.retried,
                    "exhausted": self.deliveries.exhausted,
                    "by_event": {k: dict(v) for k, v in self.deliveries.by_event.items()},
                },
                "timings": {
                    "overall": {
                        "average_ms": self.timings.get_average(),
                        "p95_ms": self.timings.get_p95(),
                    },
                    "by_stage": {
                        stage: {
                            "average_ms": self.timings.get_average(stage),
                            "p95_ms": self.timings.get_p95(stage),
                        }
                        for stage in self.timings.by_stage.keys()
                    },
                },
                "queues": {
                    "backlog": dict(self.queues.backlog),
                    "last_poll": {k: v.isoformat() for k, v in self.queues.last_poll.items()},
                },
            }


# =============================================================================
# Module-level convenience functions
# =============================================================================

def get_metrics() -> MetricsCollector:
    """Get the global metrics collector."""
    return MetricsCollector.instance()


def record_sync_started(job_type: str):
    get_metrics().record_sync_started(job_type)


def record_sync_completed(job_type: str, total_records: int = 0, duration_ms: float = None):
    get_metrics().record_sync_completed(job_type, total_records, duration_ms)


def record_sync_failed(job_type: str):
    get_metrics().record_sync_failed(job_type)


def record_delivery_scheduled(count: int = 1):
    get_metrics().record_delivery_scheduled(count)


def record_delivery_attempt(event_type: str, delivered: bool, exhausted: bool = False, duration_ms: float = None):
    get_metrics().record_delivery_attempt(event_type, delivered, exhausted, duration_ms)


def record_processing_time(stage: str, duration_ms: float):
    """Record a processing time sample."""
    get_metrics().record_processing_time(stage, duration_ms)
