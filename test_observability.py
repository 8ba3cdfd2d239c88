"""
Observability Tests

Validates the observability stack:
1. Metrics collection (sync jobs, webhook deliveries, timings, queue backlog)
2. Structured logging with correlation IDs
3. Managers emit correlated logs and metrics for real operations
"""

import asyncio
import json
import logging
from datetime import datetime

import pytest

from core.errors import ConnectorError


def test_observability_imports():
    """Verify all observability modules import correctly."""
    from core.observability import (
        MetricsCollector, get_metrics,
        record_sync_started, record_sync_completed, record_sync_failed,
        record_delivery_scheduled, record_delivery_attempt,
        record_processing_time,
        get_logger, configure_logging, CorrelationContext, with_correlation,
    )
    assert MetricsCollector is not None
    assert get_metrics is not None
    assert CorrelationContext is not None


class TestMetricsCollector:
    """Test the metrics collection system."""

    def test_singleton_instance(self):
        """MetricsCollector returns same instance."""
        from core.observability.metrics import MetricsCollector
        assert MetricsCollector.instance() is MetricsCollector.instance()

    def test_sync_metrics_tracking(self):
        """Track sync started/completed/failed counts."""
        from core.observability.metrics import MetricsCollector
        mc = MetricsCollector.instance()

        baseline = mc.get_summary()["sync_jobs"]

        mc.record_sync_started("test_sync")
        mc.record_sync_started("test_sync")
        mc.record_sync_completed("test_sync", total_records=12, duration_ms=40)
        mc.record_sync_failed("test_sync")

        summary = mc.get_summary()["sync_jobs"]
        assert summary["started"] == baseline["started"] + 2
        assert summary["completed"] == baseline["completed"] + 1
        assert summary["failed"] == baseline["failed"] + 1
        assert summary["records"] == baseline["records"] + 12
        assert summary["by_job_type"]["test_sync"]["started"] >= 2

    def test_delivery_outcomes(self):
        """Delivered, retried and exhausted attempts are counted separately."""
        from core.observability.metrics import MetricsCollector
        mc = MetricsCollector.instance()
        event = f"test.event.{datetime.now().timestamp()}"

        mc.record_delivery_attempt(event, delivered=False)
        mc.record_delivery_attempt(event, delivered=False, exhausted=True)
        mc.record_delivery_attempt(event, delivered=True, duration_ms=15)

        by_event = mc.get_summary()["deliveries"]["by_event"][event]
        assert by_event == {"attempted": 3, "delivered": 1, "retried": 1, "exhausted": 1}

    def test_timing_percentile_calculation(self):
        """Calculate p95 timing correctly."""
        from core.observability.metrics import MetricsCollector
        mc = MetricsCollector.instance()

        test_stage = f"test_stage_{datetime.now().timestamp()}"
        for i in range(1, 101):
            mc.record_processing_time(test_stage, i)

        stats = mc.get_timing_stats(test_stage)

        assert 49 <= stats["average_ms"] <= 52
        assert 93 <= stats["p95_ms"] <= 97
        assert stats["sample_count"] == 100

    def test_queue_backlog(self):
        from core.observability.metrics import MetricsCollector
        mc = MetricsCollector.instance()

        mc.update_queue_backlog("test-queue", 4)
        assert mc.get_queue_backlog("test-queue") == {"test-queue": 4}
        assert "test-queue" in mc.get_summary()["queues"]["last_poll"]


class TestCorrelatedLogging:
    """Test structured logging with correlation IDs."""

    def test_context_nesting(self):
        """Nested contexts merge and unwind in order."""
        from core.observability.logging import get_correlation_context, with_correlation

        assert get_correlation_context().webhook_id is None

        with with_correlation(webhook_id=3):
            with with_correlation(delivery_id=19):
                ctx = get_correlation_context()
                assert (ctx.webhook_id, ctx.delivery_id) == (3, 19)
            assert get_correlation_context().delivery_id is None

        assert get_correlation_context().webhook_id is None

    def test_none_values_do_not_clear(self):
        from core.observability.logging import get_correlation_context, with_correlation

        with with_correlation(integration_id=7):
            with with_correlation(integration_id=None, job_id=1):
                assert get_correlation_context().integration_id == 7

    def test_context_isolated_per_task(self):
        from core.observability.logging import get_correlation_context, with_correlation

        async def worker(webhook_id):
            with with_correlation(webhook_id=webhook_id):
                await asyncio.sleep(0.01)
                return get_correlation_context().webhook_id

        async def scenario():
            return await asyncio.gather(worker(1), worker(2))

        assert asyncio.run(scenario()) == [1, 2]

    def test_structured_formatter_json_output(self):
        """StructuredFormatter outputs valid JSON with correlation and extra fields."""
        from core.observability.logging import StructuredFormatter, with_correlation

        formatter = StructuredFormatter()

        with with_correlation(integration_id=7, job_id=42):
            record = logging.LogRecord(
                name="test",
                level=logging.INFO,
                pathname="test.py",
                lineno=10,
                msg="Sync started",
                args=(),
                exc_info=None,
            )
            record.extra_fields = {"total_records": 7}

            data = json.loads(formatter.format(record))

        assert data["message"] == "Sync started"
        assert data["integration_id"] == 7
        assert data["job_id"] == 42
        assert data["total_records"] == 7

    def test_human_readable_prefixes(self):
        from core.observability.logging import HumanReadableFormatter, with_correlation

        formatter = HumanReadableFormatter()
        record = logging.LogRecord("webhooks.manager", logging.INFO, "x.py", 1, "Delivery succeeded", (), None)

        with with_correlation(webhook_id=3, delivery_id=19):
            line = formatter.format(record)

        assert "[wh:3/dlv:19]" in line
        assert line.endswith("Delivery succeeded")

    def test_correlated_logger_exc_info(self, caplog):
        from core.observability.logging import get_logger

        logger = get_logger("tests.observability")
        with caplog.at_level(logging.ERROR):
            try:
                raise RuntimeError("boom")
            except RuntimeError:
                logger.exception("Failed")

        record = caplog.records[-1]
        assert record.exc_info[0] is RuntimeError
        assert record.extra_fields == {}


class TestManagerInstrumentation:
    """Managers emit correlated logs and metrics."""

    def test_sync_job_completion_logged(self, hub, integration_id, caplog):
        with caplog.at_level(logging.INFO):
            asyncio.run(hub.integrations.run_sync_job(integration_id, "sync_customers"))

        completed = [r for r in caplog.records if r.getMessage().startswith("Sync job completed")]
        assert completed
        assert completed[0].extra_fields["total_records"] == 7

    def test_sync_metrics_recorded(self, hub, integration_id, connector):
        from core.observability.metrics import get_metrics
        before = get_metrics().get_summary()["sync_jobs"]

        asyncio.run(hub.integrations.run_sync_job(integration_id, "sync_customers"))
        connector.error = RuntimeError("down")
        with pytest.raises(ConnectorError):
            asyncio.run(hub.integrations.run_sync_job(integration_id, "sync_orders"))

        after = get_metrics().get_summary()["sync_jobs"]
        assert after["completed"] == before["completed"] + 1
        assert after["failed"] == before["failed"] + 1

    def test_delivery_metrics_and_backlog(self, hub, sender):
        from core.observability.metrics import get_metrics
        hub.webhooks.create({"name": "w", "url": "https://example.com/h", "events": ["*"]})
        before = get_metrics().get_summary()["deliveries"]

        sender.queue(500)
        hub.webhooks.trigger_event("metrics.test", {})
        asyncio.run(hub.webhooks.process_due_queue())

        after = get_metrics().get_summary()["deliveries"]
        assert after["scheduled"] == before["scheduled"] + 1
        assert after["retried"] == before["retried"] + 1
        assert get_metrics().get_queue_backlog("webhooks") == {"webhooks": 0}
