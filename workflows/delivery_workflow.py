"""Webhook Delivery Workflow.

Long-running poll loop over the webhook delivery queue. Each iteration runs
the process_due_deliveries activity, then sleeps for the poll interval
unless the batch came back full (more work is waiting) or a `wake` signal
arrives. History is kept bounded with continue-as-new.
"""

import asyncio
from dataclasses import dataclass
from datetime import timedelta
from temporalio import workflow
from temporalio.common import RetryPolicy

with workflow.unsafe.imports_passed_through():
    from activities.orchestration import ProcessDeliveriesInput, process_due_deliveries


DELIVERY_WORKFLOW_ID = "hub-webhook-delivery"


@dataclass
class DeliveryPollInput:
    """Input for WebhookDeliveryWorkflow.

    Attributes:
        poll_interval_seconds: Sleep between passes when the queue is drained
        batch_size: Deliveries per pass
        iterations_before_continue: Passes before continue-as-new
    """
    poll_interval_seconds: int = 60
    batch_size: int = 10
    iterations_before_continue: int = 500


@workflow.defn
class WebhookDeliveryWorkflow:
    """Polls and delivers due webhooks forever."""

    def __init__(self) -> None:
        self._wake_requested = False
        self._total_delivered = 0

    @workflow.signal
    def wake(self) -> None:
        """Run the next pass now instead of waiting out the poll interval."""
        self._wake_requested = True

    @workflow.query
    def total_delivered(self) -> int:
        return self._total_delivered

    @workflow.run
    async def run(self, input: DeliveryPollInput) -> None:
        workflow.logger.info(f"Webhook delivery loop started (interval {input.poll_interval_seconds}s)")

        for _ in range(input.iterations_before_continue):
            self._wake_requested = False
            result = await workflow.execute_activity(
                process_due_deliveries,
                ProcessDeliveriesInput(limit=input.batch_size),
                start_to_close_timeout=timedelta(minutes=15),
                retry_policy=RetryPolicy(
                    initial_interval=timedelta(seconds=5),
                    maximum_interval=timedelta(minutes=1),
                    maximum_attempts=3,
                ),
            )
            self._total_delivered += result["delivered"]

            batch_full = result["processed"] >= input.batch_size
            if batch_full:
                continue

            try:
                await workflow.wait_condition(
                    lambda: self._wake_requested,
                    timeout=timedelta(seconds=input.poll_interval_seconds),
                )
            except asyncio.TimeoutError:
                pass

        workflow.continue_as_new(input)
