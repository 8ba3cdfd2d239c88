"""In-process delivery poller.

Single-process alternative to the Temporal delivery workflow: an asyncio loop
that drains the webhook delivery queue every poll interval, wakes early when
a delivery is scheduled, and applies retention once a day.
"""

import asyncio
import time
from typing import Optional

from core.observability.logging import get_logger
from integrations.manager import IntegrationManager
from webhooks.manager import WebhookManager
from webhooks.models import DeliveryBatchResult


logger = get_logger(__name__)


class DeliveryPoller:
    """
    Usage:
        poller = DeliveryPoller(hub.webhooks, hub.integrations, poll_interval=60)
        await poller.run()       # until poller.stop()
    """

    def __init__(
        self,
        webhooks: WebhookManager,
        integrations: Optional[IntegrationManager] = None,
        poll_interval: float = 60,
        batch_size: int = 10,
        cleanup_interval: float = 24 * 3600,
    ):
        self.webhooks = webhooks
        self.integrations = integrations
        self.poll_interval = poll_interval
        self.batch_size = batch_size
        self.cleanup_interval = cleanup_interval
        self._event = asyncio.Event()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._stopped = False
        self._last_cleanup = 0.0
        webhooks.on_schedule = self.wake

    def wake(self) -> None:
        """Ask for a pass now. Safe to call from other threads."""
        if self._loop is not None and self._loop.is_running():
            self._loop.call_soon_threadsafe(self._event.set)
        else:
            self._event.set()

    def stop(self) -> None:
        self._stopped = True
        self.wake()

    async def run_once(self) -> DeliveryBatchResult:
        """Drain the queue: keep taking batches while they come back full."""
        total = DeliveryBatchResult()
        while True:
            batch = await self.webhooks.process_due_queue(self.batch_size)
            total.processed += batch.processed
            total.delivered += batch.delivered
            total.failed += batch.failed
            total.errors += batch.errors
            total.delivery_ids.extend(batch.delivery_ids)
            if batch.processed < self.batch_size or self._stopped:
                return total

    def cleanup_if_due(self) -> bool:
        now = time.monotonic()
        if self._last_cleanup and now - self._last_cleanup < self.cleanup_interval:
            return False
        self._last_cleanup = now
        self.webhooks.cleanup_old_deliveries()
        if self.integrations is not None:
            self.integrations.cleanup_old_jobs()
        return True

    async def run(self) -> None:
        self._loop = asyncio.get_running_loop()
        logger.info(f"Delivery poller started (interval {self.poll_interval}s, batch {self.batch_size})")
        while not self._stopped:
            self._event.clear()
            try:
                await self.run_once()
                self.cleanup_if_due()
            except Exception:
                logger.exception("Delivery poller pass failed")
            if self._stopped:
                break
            try:
                await asyncio.wait_for(self._event.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Delivery poller stopped")
