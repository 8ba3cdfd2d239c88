"""Abstract Connector Interface.

A connector talks to one kind of external system (ERP, accounting package,
file drop). The hub only depends on this interface; concrete protocols live
with whoever registers them.

Connectors are created per call by the ConnectorRegistry and receive the
integration's decrypted config on every call, so they hold no per-integration
state between calls.
"""

from abc import ABC, abstractmethod
from typing import Any, ClassVar, Dict, FrozenSet, Optional

from pydantic import BaseModel, ConfigDict, Field


class ConnectionTestResult(BaseModel):
    """Outcome of Connector.test_connection."""
    success: bool
    error: Optional[str] = None
    info: Dict[str, Any] = Field(default_factory=dict)


class SyncResult(BaseModel):
    """Outcome of Connector.execute_sync.

    Connectors may return extra keys (counts per entity, cursors); they are
    kept but only total_records is persisted on the job.
    """
    model_config = ConfigDict(extra="allow")

    total_records: int = 0


class UnsupportedJobType(ValueError):
    """Connector does not implement the requested job type."""

    def __init__(self, connector_type: str, job_type: str, supported=()):
        super().__init__(
            f"Unsupported job type for {connector_type}: {job_type}. "
            f"Supported: {sorted(supported)}"
        )
        self.job_type = job_type


class Connector(ABC):
    """Abstract base class for integration connectors.

    Subclasses set `connector_type` and, optionally, `supported_job_types`
    (an empty set accepts any job type).
    """

    connector_type: ClassVar[str] = ""
    supported_job_types: ClassVar[FrozenSet[str]] = frozenset()

    @abstractmethod
    async def test_connection(self, config: Dict[str, Any]) -> ConnectionTestResult:
        """Check that the external system is reachable with this config."""
        pass

    @abstractmethod
    async def execute_sync(
        self,
        job_type: str,
        config: Dict[str, Any],
        options: Dict[str, Any],
    ) -> SyncResult:
        """Run one sync job. Raise on failure; the manager records the message."""
        pass

    def check_job_type(self, job_type: str) -> None:
        if self.supported_job_types and job_type not in self.supported_job_types:
            raise UnsupportedJobType(self.connector_type or type(self).__name__, job_type, self.supported_job_types)
