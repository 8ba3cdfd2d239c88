"""Webhook, event and delivery endpoints."""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from api.dependencies import get_hub
from hub import Hub


router = APIRouter()


class WebhookCreateRequest(BaseModel):
    """Request to register a webhook. Omitted numeric fields use the configured defaults."""
    name: str
    url: str
    events: List[str] = Field(..., description='Event names; "*" subscribes to all')
    integration_id: Optional[int] = None
    http_method: Optional[str] = Field(None, description="POST (default), PUT, PATCH, GET or DELETE")
    headers: Optional[Dict[str, str]] = None
    secret: Optional[str] = Field(None, description="Signing secret; generated when omitted")
    status: Optional[str] = None
    retry_attempts: Optional[int] = None
    timeout: Optional[float] = None


class WebhookUpdateRequest(BaseModel):
    """Partial update. The secret is kept unless a new one is supplied."""
    name: Optional[str] = None
    url: Optional[str] = None
    events: Optional[List[str]] = None
    integration_id: Optional[int] = None
    http_method: Optional[str] = None
    headers: Optional[Dict[str, str]] = None
    secret: Optional[str] = None
    status: Optional[str] = None
    retry_attempts: Optional[int] = None
    timeout: Optional[float] = None


class EventRequest(BaseModel):
    event_type: str
    payload: Any = None
    integration_id: Optional[int] = Field(None, description="Limit fan-out to this integration's webhooks")


# =============================================================================
# Events and deliveries (static paths first)
# =============================================================================

@router.post("/events", status_code=202)
async def trigger_event(request: EventRequest, hub: Hub = Depends(get_hub)) -> Dict[str, Any]:
    """Fan an event out to every active subscribed webhook."""
    delivery_ids = hub.webhooks.trigger_event(request.event_type, request.payload, request.integration_id)
    return {"event_type": request.event_type, "delivery_ids": delivery_ids}


@router.get("/deliveries/{delivery_id}")
async def get_delivery(delivery_id: int, hub: Hub = Depends(get_hub)) -> Dict[str, Any]:
    return hub.webhooks.get_delivery(delivery_id).to_dict()


@router.post("/deliveries/{delivery_id}/redeliver", status_code=202)
async def redeliver(delivery_id: int, hub: Hub = Depends(get_hub)) -> Dict[str, Any]:
    """Schedule a fresh copy of a delivery; the original row is kept as history."""
    new_id = hub.webhooks.redeliver(delivery_id)
    return hub.webhooks.get_delivery(new_id).to_dict()


@router.post("/queue/process")
async def process_queue(
    limit: Optional[int] = Query(None, ge=1, le=1000),
    hub: Hub = Depends(get_hub),
) -> Dict[str, Any]:
    """Process due deliveries now instead of waiting for the next poll."""
    result = await hub.webhooks.process_due_queue(limit)
    return result.to_dict()


# =============================================================================
# Webhooks
# =============================================================================

@router.get("")
async def list_webhooks(
    integration_id: Optional[int] = Query(None),
    status: Optional[str] = Query(None),
    hub: Hub = Depends(get_hub),
) -> List[Dict[str, Any]]:
    return [w.to_dict() for w in hub.webhooks.list(integration_id, status)]


@router.post("", status_code=201)
async def create_webhook(request: WebhookCreateRequest, hub: Hub = Depends(get_hub)) -> Dict[str, Any]:
    """Register a webhook. The response is the only place the secret is shown."""
    webhook_id = hub.webhooks.create(request.model_dump(exclude_none=True))
    return hub.webhooks.get(webhook_id).to_dict(include_secret=True)


@router.get("/{webhook_id}")
async def get_webhook(webhook_id: int, hub: Hub = Depends(get_hub)) -> Dict[str, Any]:
    return hub.webhooks.get(webhook_id).to_dict()


@router.put("/{webhook_id}")
async def update_webhook(
    webhook_id: int,
    request: WebhookUpdateRequest,
    hub: Hub = Depends(get_hub),
) -> Dict[str, Any]:
    webhook = hub.webhooks.update(webhook_id, request.model_dump(exclude_unset=True))
    return webhook.to_dict()


@router.delete("/{webhook_id}", status_code=204)
async def delete_webhook(webhook_id: int, hub: Hub = Depends(get_hub)) -> None:
    hub.webhooks.delete(webhook_id)


@router.get("/{webhook_id}/deliveries")
async def list_deliveries(
    webhook_id: int,
    limit: int = Query(50, ge=1, le=500),
    hub: Hub = Depends(get_hub),
) -> List[Dict[str, Any]]:
    """Delivery history, most recent first."""
    return [d.to_dict() for d in hub.webhooks.delivery_history(webhook_id, limit)]
