"""Webhooks - outbound event notifications with signing and retry."""

from webhooks.client import AiohttpWebhookSender, WebhookResponse, WebhookSender
from webhooks.db import WebhookStore, init_webhooks_db
from webhooks.manager import WebhookManager, retry_delay
from webhooks.models import (
    DeliveryBatchResult,
    DeliveryStatus,
    HttpMethod,
    Webhook,
    WebhookDelivery,
    WebhookStatus,
)
from webhooks.signing import (
    SIGNATURE_HEADER,
    USER_AGENT,
    generate_secret,
    sign_payload,
    verify_signature,
)

__all__ = [
    "AiohttpWebhookSender",
    "WebhookResponse",
    "WebhookSender",
    "WebhookStore",
    "init_webhooks_db",
    "WebhookManager",
    "retry_delay",
    "DeliveryBatchResult",
    "DeliveryStatus",
    "HttpMethod",
    "Webhook",
    "WebhookDelivery",
    "WebhookStatus",
    "SIGNATURE_HEADER",
    "USER_AGENT",
    "generate_secret",
    "sign_payload",
    "verify_signature",
]
