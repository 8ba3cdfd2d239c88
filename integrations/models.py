"""
Integration Models

- Integration: a configured connection to an external system
- SyncJob: one asynchronous run of a connector against an integration
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class IntegrationType(str, Enum):
    """Direction/kind of an integration; also the connector registry key."""
    IMPORT = "import"
    EXPORT = "export"
    SYNC = "sync"
    WEBHOOK = "webhook"


class IntegrationStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    ERROR = "error"


class SyncJobStatus(str, Enum):
    """Sync job lifecycle: pending → running → completed | failed."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SyncJobStatus.COMPLETED, SyncJobStatus.FAILED)


@dataclass
class Integration:
    """
    A configured external system connection.

    Attributes:
        name: Display name
        type: IntegrationType value, used to resolve the connector
        status: Only active integrations may run sync jobs
        config: Opaque connector settings (credentials, endpoints)
    """
    name: str
    type: IntegrationType
    status: IntegrationStatus = IntegrationStatus.INACTIVE
    config: Dict[str, Any] = field(default_factory=dict)
    id: Optional[int] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status == IntegrationStatus.ACTIVE

    def to_dict(self, include_config: bool = True) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "name": self.name,
            "type": self.type.value,
            "status": self.status.value,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
        if include_config:
            data["config"] = self.config
        return data


@dataclass
class SyncJob:
    """History row for one sync run."""
    integration_id: int
    job_type: str
    status: SyncJobStatus = SyncJobStatus.PENDING
    progress: int = 0
    total_records: int = 0
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    error_log: Optional[str] = None
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "integration_id": self.integration_id,
            "job_type": self.job_type,
            "status": self.status.value,
            "progress": self.progress,
            "total_records": self.total_records,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "error_log": self.error_log,
        }
