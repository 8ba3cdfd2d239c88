"""
Orchestration Activities

Temporal activities wrapping the hub managers:
- process_due_deliveries: one pass over the webhook delivery queue
- run_sync_job: run a connector sync and record the SyncJob
- trigger_event: fan an event out to subscribed webhooks
- cleanup_history: drop old finished deliveries and sync jobs

Failures that are already recorded in the database (a failed SyncJob) or
that retrying cannot fix are raised as non-retryable ApplicationErrors.
"""

import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, Optional

from temporalio import activity
from temporalio.exceptions import ApplicationError

from core.errors import ConnectorError, InvalidState, NotFound, ValidationError
from core.observability.logging import (
    log_activity_complete,
    log_activity_error,
    log_activity_start,
    with_correlation,
)
from hub import get_hub


# =============================================================================
# Activity Input Models
# =============================================================================

@dataclass
class ProcessDeliveriesInput:
    """Input for process_due_deliveries. limit=None uses HUB_WEBHOOK_BATCH_SIZE."""
    limit: Optional[int] = None


@dataclass
class RunSyncJobInput:
    integration_id: int
    job_type: str
    options: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TriggerEventInput:
    event_type: str
    payload: Any = None
    integration_id: Optional[int] = None


@dataclass
class CleanupInput:
    """Retention windows in days; None uses the configured defaults."""
    delivery_days: Optional[int] = None
    sync_job_days: Optional[int] = None
    stale_job_hours: Optional[int] = None


def _workflow_id() -> Optional[str]:
    return activity.info().workflow_id if activity.in_activity() else None


# =============================================================================
# Activities
# =============================================================================

@activity.defn
async def process_due_deliveries(input: ProcessDeliveriesInput) -> dict:
    """Process one batch of due webhook deliveries."""
    hub = get_hub()
    with with_correlation(workflow_id=_workflow_id(), activity_name="process_due_deliveries"):
        log_activity_start("process_due_deliveries", limit=input.limit)
        started = time.monotonic()
        result = await hub.webhooks.process_due_queue(input.limit)
        log_activity_complete(
            "process_due_deliveries",
            duration_ms=(time.monotonic() - started) * 1000,
            processed=result.processed,
            delivered=result.delivered,
        )
        return result.to_dict()


@activity.defn
async def run_sync_job(input: RunSyncJobInput) -> dict:
    """Run a sync job and return the finished SyncJob row."""
    hub = get_hub()
    with with_correlation(
        workflow_id=_workflow_id(),
        activity_name="run_sync_job",
        integration_id=input.integration_id,
        job_type=input.job_type,
    ):
        log_activity_start("run_sync_job")
        started = time.monotonic()
        try:
            job_id = await hub.integrations.run_sync_job(input.integration_id, input.job_type, input.options)
        except ConnectorError as e:
            log_activity_error("run_sync_job", e.message, job_id=e.job_id)
            raise ApplicationError(e.message, {"job_id": e.job_id}, type="ConnectorError", non_retryable=True)
        except (InvalidState, ValidationError, NotFound) as e:
            log_activity_error("run_sync_job", e.message)
            raise ApplicationError(e.message, type=type(e).__name__, non_retryable=True)

        log_activity_complete("run_sync_job", duration_ms=(time.monotonic() - started) * 1000, job_id=job_id)
        return hub.integrations.job_status(job_id).to_dict()


@activity.defn
async def trigger_event(input: TriggerEventInput) -> list:
    """Schedule deliveries for an event. Returns the new delivery ids."""
    hub = get_hub()
    with with_correlation(workflow_id=_workflow_id(), activity_name="trigger_event", event_type=input.event_type):
        try:
            return hub.webhooks.trigger_event(input.event_type, input.payload, input.integration_id)
        except ValidationError as e:
            raise ApplicationError(e.message, type="ValidationError", non_retryable=True)


@activity.defn
async def cleanup_history(input: CleanupInput) -> dict:
    """Apply retention to deliveries and sync jobs.

    Stale unfinished jobs are only failed when stale_job_hours is given
    explicitly; nothing is failed by default.
    """
    hub = get_hub()
    with with_correlation(workflow_id=_workflow_id(), activity_name="cleanup_history"):
        log_activity_start("cleanup_history")
        result = {
            "deliveries_removed": hub.webhooks.cleanup_old_deliveries(input.delivery_days),
            "sync_jobs_removed": hub.integrations.cleanup_old_jobs(input.sync_job_days),
            "stale_jobs_failed": 0,
        }
        if input.stale_job_hours is not None:
            result["stale_jobs_failed"] = hub.integrations.fail_stale_jobs(timedelta(hours=input.stale_job_hours))
        log_activity_complete("cleanup_history", **result)
        return result


HUB_ACTIVITIES = [
    process_due_deliveries,
    run_sync_job,
    trigger_event,
    cleanup_history,
]
