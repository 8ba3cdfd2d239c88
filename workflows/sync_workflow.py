"""Sync Job Workflow.

Runs one connector sync through the run_sync_job activity. There is no
automatic retry: a failed sync is recorded as a failed SyncJob and stays
visible until someone runs it again.
"""

from datetime import timedelta

from temporalio import workflow
from temporalio.common import RetryPolicy

with workflow.unsafe.imports_passed_through():
    from activities.orchestration import RunSyncJobInput, run_sync_job


# Upper bound for the activity; the connector call has its own, shorter timeout
SYNC_ACTIVITY_TIMEOUT = timedelta(hours=2)


@workflow.defn
class SyncJobWorkflow:
    """Run a sync job for an integration and return the finished job."""

    @workflow.run
    async def run(self, input: RunSyncJobInput) -> dict:
        workflow.logger.info(f"Starting sync {input.job_type} for integration {input.integration_id}")

        job = await workflow.execute_activity(
            run_sync_job,
            input,
            start_to_close_timeout=SYNC_ACTIVITY_TIMEOUT,
            retry_policy=RetryPolicy(maximum_attempts=1),
        )

        workflow.logger.info(f"Sync job {job['id']} finished with status {job['status']}")
        return job
