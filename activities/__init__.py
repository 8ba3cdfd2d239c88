"""Activity definitions module."""

from activities.orchestration import (
    HUB_ACTIVITIES,
    CleanupInput,
    ProcessDeliveriesInput,
    RunSyncJobInput,
    TriggerEventInput,
    cleanup_history,
    process_due_deliveries,
    run_sync_job,
    trigger_event,
)

__all__ = [
    "HUB_ACTIVITIES",
    "CleanupInput",
    "ProcessDeliveriesInput",
    "RunSyncJobInput",
    "TriggerEventInput",
    "cleanup_history",
    "process_due_deliveries",
    "run_sync_job",
    "trigger_event",
]
