"""Cleanup Workflow.

Applies retention to webhook deliveries and sync jobs. Meant to run on a cron
schedule (see workers/worker.py --bootstrap).
"""

from datetime import timedelta

from temporalio import workflow

with workflow.unsafe.imports_passed_through():
    from activities.orchestration import CleanupInput, cleanup_history


CLEANUP_WORKFLOW_ID = "hub-cleanup"
CLEANUP_CRON = "0 3 * * *"


@workflow.defn
class CleanupWorkflow:

    @workflow.run
    async def run(self, input: CleanupInput) -> dict:
        result = await workflow.execute_activity(
            cleanup_history,
            input,
            start_to_close_timeout=timedelta(minutes=10),
        )
        workflow.logger.info(f"Cleanup finished: {result}")
        return result
