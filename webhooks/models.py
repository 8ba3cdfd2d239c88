"""
Webhook Models

- Webhook: an outbound subscription (URL + events + signing secret)
- WebhookDelivery: one event sent (or being retried) to one webhook

Delivery lifecycle:

    scheduled ──attempt──▶ delivered                  (2xx, terminal)
        │                  retry_pending ──attempt──▶ ...
        │                  exhausted                  (attempts used up, terminal)
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class WebhookStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"


# Methods that carry the JSON envelope as request body
BODY_METHODS = {HttpMethod.POST, HttpMethod.PUT, HttpMethod.PATCH}

WILDCARD_EVENT = "*"


class DeliveryStatus(str, Enum):
    SCHEDULED = "scheduled"
    RETRY_PENDING = "retry_pending"
    DELIVERED = "delivered"
    EXHAUSTED = "exhausted"

    @property
    def is_terminal(self) -> bool:
        return self in (DeliveryStatus.DELIVERED, DeliveryStatus.EXHAUSTED)


@dataclass
class Webhook:
    """
    Outbound webhook subscription.

    Attributes:
        events: Event names this webhook receives; "*" receives all
        secret: HMAC-SHA256 signing key, never returned by the API
        retry_attempts: Attempts allowed before a delivery is exhausted
        timeout: Total request timeout in seconds
    """
    name: str
    url: str
    events: List[str]
    secret: str
    http_method: HttpMethod = HttpMethod.POST
    headers: Dict[str, str] = field(default_factory=dict)
    status: WebhookStatus = WebhookStatus.ACTIVE
    retry_attempts: int = 3
    timeout: float = 30
    integration_id: Optional[int] = None
    id: Optional[int] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status == WebhookStatus.ACTIVE

    def subscribes_to(self, event_type: str) -> bool:
        return event_type in self.events or WILDCARD_EVENT in self.events

    def to_dict(self, include_secret: bool = False) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "integration_id": self.integration_id,
            "name": self.name,
            "url": self.url,
            "http_method": self.http_method.value,
            "headers": self.headers,
            "events": self.events,
            "status": self.status.value,
            "retry_attempts": self.retry_attempts,
            "timeout": self.timeout,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
        if include_secret:
            data["secret"] = self.secret
        return data


@dataclass
class WebhookDelivery:
    """
    One event delivery to one webhook.

    `payload` is the exact JSON text sent as the body and signed.
    """
    webhook_id: int
    event_type: str
    payload: str
    status: DeliveryStatus = DeliveryStatus.SCHEDULED
    attempt_count: int = 0
    response_status: Optional[int] = None
    response_body: Optional[str] = None
    delivered_at: Optional[str] = None
    next_retry_at: Optional[str] = None
    claimed_by: Optional[str] = None
    claim_expires_at: Optional[str] = None
    created_at: Optional[str] = None
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "webhook_id": self.webhook_id,
            "event_type": self.event_type,
            "payload": self.payload,
            "status": self.status.value,
            "attempt_count": self.attempt_count,
            "response_status": self.response_status,
            "response_body": self.response_body,
            "delivered_at": self.delivered_at,
            "next_retry_at": self.next_retry_at,
            "created_at": self.created_at,
        }


@dataclass
class DeliveryBatchResult:
    """Summary of one process_due_queue pass."""
    processed: int = 0
    delivered: int = 0
    failed: int = 0
    errors: int = 0
    delivery_ids: List[int] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processed": self.processed,
            "delivered": self.delivered,
            "failed": self.failed,
            "errors": self.errors,
            "delivery_ids": self.delivery_ids,
        }
