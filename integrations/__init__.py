"""Integrations - external system connections and their sync jobs."""

from integrations.db import IntegrationStore, init_integrations_db
from integrations.manager import IntegrationManager
from integrations.models import (
    Integration,
    IntegrationStatus,
    IntegrationType,
    SyncJob,
    SyncJobStatus,
)

__all__ = [
    "IntegrationStore",
    "init_integrations_db",
    "IntegrationManager",
    "Integration",
    "IntegrationStatus",
    "IntegrationType",
    "SyncJob",
    "SyncJobStatus",
]
