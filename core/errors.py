"""Error taxonomy for the integration hub.

Validation problems fail fast at the boundary. Job and delivery failures are
absorbed into persistent state by the managers; the exceptions below are what
callers see when an operation cannot proceed at all.
"""

from typing import Any, Dict, Optional


class HubError(Exception):
    """Base exception for hub errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        data = {"error": type(self).__name__, "message": self.message}
        if self.details:
            data["details"] = self.details
        return data


class ValidationError(HubError):
    """Input failed validation (missing name, bad enum value, bad URL...)."""
    pass


class NotFound(HubError):
    """A referenced id does not exist."""

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(f"{entity} not found: {entity_id}", {"entity": entity, "id": entity_id})
        self.entity = entity
        self.entity_id = entity_id


class InvalidState(HubError):
    """Operation is not allowed in the entity's current state."""
    pass


class ConnectorNotFound(HubError):
    """No connector is registered for an integration type."""

    def __init__(self, integration_type: str, available: Optional[list] = None):
        available = available or []
        super().__init__(
            f"Unknown connector type: {integration_type}. Available: {available}",
            {"type": integration_type, "available": available},
        )
        self.integration_type = integration_type


class ConnectorError(HubError):
    """A connector call failed. The SyncJob row has already been marked failed."""

    def __init__(self, message: str, job_id: Optional[int] = None):
        super().__init__(message, {"job_id": job_id} if job_id is not None else None)
        self.job_id = job_id


class DeliveryError(HubError):
    """Transport-level webhook failure (connect error, timeout, too many redirects)."""

    def __init__(self, message: str, status_code: int = 0, response_body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class TransformationWarning(HubError):
    """A rule could not be evaluated. Logged by the engine, never propagated."""
    pass
