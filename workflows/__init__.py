"""Workflow definitions module."""

from workflows.cleanup_workflow import CleanupWorkflow
from workflows.delivery_workflow import DeliveryPollInput, WebhookDeliveryWorkflow
from workflows.sync_workflow import SyncJobWorkflow

HUB_WORKFLOWS = [WebhookDeliveryWorkflow, SyncJobWorkflow, CleanupWorkflow]

__all__ = [
    "CleanupWorkflow",
    "DeliveryPollInput",
    "WebhookDeliveryWorkflow",
    "SyncJobWorkflow",
    "HUB_WORKFLOWS",
]
