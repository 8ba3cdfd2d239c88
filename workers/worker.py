"""Worker for the integration hub.

Two ways to run background processing:

- Temporal (default): polls the hub task queue and executes the delivery,
  sync and cleanup workflows and their activities. Run once with --bootstrap
  to start the long-running delivery loop and the nightly cleanup schedule.
- Local (--local): no Temporal; an in-process asyncio poller drains the
  webhook delivery queue every HUB_POLL_INTERVAL_SECONDS.
"""

import argparse
import asyncio

from temporalio.client import Client
from temporalio.exceptions import WorkflowAlreadyStartedError
from temporalio.worker import Worker

from activities.orchestration import HUB_ACTIVITIES, CleanupInput
from core.config import HubSettings, get_settings
from core.observability.logging import configure_logging, get_logger
from hub import create_hub, set_hub
from temporal_client import get_temporal_client
from workers.poller import DeliveryPoller
from workflows import HUB_WORKFLOWS
from workflows.cleanup_workflow import CLEANUP_CRON, CLEANUP_WORKFLOW_ID, CleanupWorkflow
from workflows.delivery_workflow import DELIVERY_WORKFLOW_ID, DeliveryPollInput, WebhookDeliveryWorkflow


logger = get_logger(__name__)


async def bootstrap_workflows(client: Client, settings: HubSettings) -> None:
    """Start the singleton delivery loop and the cleanup cron if not running."""
    starts = [
        (
            WebhookDeliveryWorkflow.run,
            DeliveryPollInput(
                poll_interval_seconds=settings.poll_interval_seconds,
                batch_size=settings.webhook_batch_size,
            ),
            DELIVERY_WORKFLOW_ID,
            None,
        ),
        (CleanupWorkflow.run, CleanupInput(), CLEANUP_WORKFLOW_ID, CLEANUP_CRON),
    ]
    for run, arg, workflow_id, cron in starts:
        try:
            await client.start_workflow(
                run,
                arg,
                id=workflow_id,
                task_queue=settings.task_queue,
                cron_schedule=cron or "",
            )
            logger.info(f"Started workflow {workflow_id}")
        except WorkflowAlreadyStartedError:
            logger.info(f"Workflow {workflow_id} already running")


async def run_worker(settings: HubSettings, bootstrap: bool = False) -> None:
    """Start a Temporal worker on the hub task queue.

    Raises:
        Exception: If connection to Temporal fails
    """
    hub = create_hub(settings)
    set_hub(hub)
    client = await get_temporal_client()
    logger.info(f"Connected to Temporal namespace: {client.namespace}")

    try:
        if bootstrap:
            await bootstrap_workflows(client, settings)

        worker = Worker(
            client,
            task_queue=settings.task_queue,
            workflows=HUB_WORKFLOWS,
            activities=HUB_ACTIVITIES,
        )
        logger.info(
            f"Worker running on '{settings.task_queue}' "
            f"({len(HUB_WORKFLOWS)} workflows, {len(HUB_ACTIVITIES)} activities)"
        )
        await worker.run()
    finally:
        await hub.close()


async def run_local(settings: HubSettings) -> None:
    """Run the in-process delivery poller until cancelled."""
    hub = create_hub(settings)
    set_hub(hub)
    poller = DeliveryPoller(
        hub.webhooks,
        hub.integrations,
        poll_interval=settings.poll_interval_seconds,
        batch_size=settings.webhook_batch_size,
    )
    try:
        await poller.run()
    finally:
        await hub.close()


def main():
    """Entry point for worker with CLI args."""
    parser = argparse.ArgumentParser(description="Integration hub background worker")
    parser.add_argument(
        "--local",
        action="store_true",
        help="Run the in-process delivery poller instead of a Temporal worker",
    )
    parser.add_argument(
        "--bootstrap",
        action="store_true",
        help="Start the delivery loop and cleanup schedule workflows before polling",
    )
    parser.add_argument(
        "--queue", "-q",
        default=None,
        help="Task queue to poll (default: HUB_TASK_QUEUE or hub-default)",
    )

    args = parser.parse_args()
    settings = get_settings()
    if args.queue:
        settings.task_queue = args.queue
    configure_logging(level=settings.log_level, json_format=settings.log_json)

    try:
        if args.local:
            asyncio.run(run_local(settings))
        else:
            asyncio.run(run_worker(settings, bootstrap=args.bootstrap))
    except KeyboardInterrupt:
        logger.info("Worker interrupted by user")


if __name__ == "__main__":
    main()
