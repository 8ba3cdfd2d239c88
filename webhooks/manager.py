"""
Webhook Manager

Owns the Webhook and WebhookDelivery lifecycle:
- CRUD on webhooks with validation and secret generation
- Event fan-out to subscribed webhooks
- Delivery attempts with HMAC signing, exponential backoff and a lease per row

Backoff: after failed attempt n the next try is due 2^n minutes later. Once
attempt_count reaches retry_attempts the delivery is exhausted and stays
that way; `redeliver` schedules a fresh copy when someone wants another go.
"""

import os
import re
import socket
import time
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from pydantic import AnyHttpUrl, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from core.config import HubSettings
from core.database import to_iso, utcnow
from core.errors import DeliveryError, NotFound, ValidationError
from core.observability.logging import get_logger, with_correlation
from core.observability.metrics import (
    get_metrics,
    record_delivery_attempt,
    record_delivery_scheduled,
)
from webhooks.client import WebhookSender
from webhooks.db import WebhookStore
from webhooks.models import (
    BODY_METHODS,
    DeliveryBatchResult,
    DeliveryStatus,
    HttpMethod,
    Webhook,
    WebhookDelivery,
    WebhookStatus,
)
from webhooks.signing import build_headers, encode_envelope, generate_secret


logger = get_logger(__name__)

_url_adapter = TypeAdapter(AnyHttpUrl)
_HEADER_BREAK_RE = re.compile(r"[\r\n\x00]")


def default_worker_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


def retry_delay(attempt_count: int) -> timedelta:
    """Delay before the next attempt after `attempt_count` failed attempts."""
    return timedelta(minutes=2 ** attempt_count)


def _require_int(value: Any, field_name: str, minimum: int) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or int(value) != value:
        raise ValidationError(f"{field_name} must be an integer", {"field": field_name})
    if value < minimum:
        raise ValidationError(f"{field_name} must be >= {minimum}", {"field": field_name})
    return int(value)


def validate_webhook(
    data: Dict[str, Any],
    settings: HubSettings,
    existing: Optional[Webhook] = None,
) -> Webhook:
    """Build a Webhook from input, merged over `existing` for updates.

    The existing secret is kept unless a new one is supplied.
    """
    def pick(key, default=None):
        if key in data and data[key] is not None:
            return data[key]
        return getattr(existing, key) if existing else default

    name = pick("name")
    if name is None or not str(name).strip():
        raise ValidationError("Webhook name is required", {"field": "name"})

    url = pick("url")
    if not url or not isinstance(url, str):
        raise ValidationError("Webhook url is required", {"field": "url"})
    try:
        _url_adapter.validate_python(url)
    except PydanticValidationError:
        raise ValidationError(f"Webhook url is not a valid http(s) URL: {url}", {"field": "url"})

    raw_method = pick("http_method", HttpMethod.POST)
    try:
        method = HttpMethod(raw_method.upper() if isinstance(raw_method, str) else raw_method)
    except ValueError:
        raise ValidationError(
            f"Invalid http_method '{raw_method}'. Allowed: {', '.join(m.value for m in HttpMethod)}",
            {"field": "http_method"},
        )

    events = pick("events")
    if (
        not isinstance(events, list)
        or not events
        or not all(isinstance(e, str) and e.strip() for e in events)
    ):
        raise ValidationError("events must be a non-empty list of event names", {"field": "events"})

    headers = pick("headers", {})
    if not isinstance(headers, dict) or not all(
        isinstance(k, str) and isinstance(v, str) for k, v in headers.items()
    ):
        raise ValidationError("headers must be an object of string values", {"field": "headers"})
    for key, value in headers.items():
        if not key.strip() or _HEADER_BREAK_RE.search(key) or _HEADER_BREAK_RE.search(value):
            raise ValidationError(f"Invalid header {key!r}: line breaks are not allowed", {"field": "headers"})

    raw_status = pick("status", WebhookStatus.ACTIVE)
    try:
        status = WebhookStatus(raw_status)
    except ValueError:
        raise ValidationError(f"Invalid status '{raw_status}'", {"field": "status"})

    retry_attempts = _require_int(pick("retry_attempts", settings.webhook_max_retries), "retry_attempts", 0)

    timeout = pick("timeout", settings.webhook_timeout)
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
        raise ValidationError("timeout must be a positive number of seconds", {"field": "timeout"})

    integration_id = data["integration_id"] if "integration_id" in data else (
        existing.integration_id if existing else None
    )
    if integration_id is not None:
        integration_id = _require_int(integration_id, "integration_id", 1)

    secret = data.get("secret") or (existing.secret if existing else None) or generate_secret()

    return Webhook(
        id=existing.id if existing else None,
        integration_id=integration_id,
        name=str(name).strip(),
        url=url,
        http_method=method,
        headers=headers,
        events=[e.strip() for e in events],
        secret=secret,
        status=status,
        retry_attempts=retry_attempts,
        timeout=timeout,
        created_at=existing.created_at if existing else None,
    )


class WebhookManager:
    """
    Webhook CRUD, event fan-out and delivery processing.

    Usage:
        manager = WebhookManager(store, AiohttpWebhookSender())
        manager.create({"name": "orders", "url": "https://example.com/hook", "events": ["order.created"]})
        manager.trigger_event("order.created", {"order_id": 42})
        await manager.process_due_queue()
    """

    def __init__(
        self,
        store: WebhookStore,
        sender: WebhookSender,
        settings: Optional[HubSettings] = None,
        clock: Callable[[], datetime] = utcnow,
        worker_id: Optional[str] = None,
    ):
        self.store = store
        self.sender = sender
        self.settings = settings or HubSettings()
        self.clock = clock
        self.worker_id = worker_id or default_worker_id()
        # Called after a delivery is scheduled; the local poller uses it to wake early.
        self.on_schedule: Optional[Callable[[], None]] = None

    def _now(self) -> str:
        return to_iso(self.clock())

    # =========================================================================
    # CRUD
    # =========================================================================

    def create(self, data: Dict[str, Any]) -> int:
        webhook = validate_webhook(data, self.settings)
        webhook_id = self.store.insert_webhook(webhook, self._now())
        with with_correlation(webhook_id=webhook_id, integration_id=webhook.integration_id):
            logger.info(f"Webhook created: {webhook.name}", extra_fields={"events": webhook.events})
        return webhook_id

    def update(self, webhook_id: int, data: Dict[str, Any]) -> Webhook:
        existing = self.get(webhook_id)
        webhook = validate_webhook(data, self.settings, existing)
        if not self.store.update_webhook(webhook, self._now()):
            raise NotFound("Webhook", webhook_id)
        with with_correlation(webhook_id=webhook_id):
            logger.info(f"Webhook updated: {webhook.name}", extra_fields={"fields": sorted(data)})
        return self.get(webhook_id)

    def delete(self, webhook_id: int) -> None:
        if not self.store.delete_webhook(webhook_id):
            raise NotFound("Webhook", webhook_id)
        with with_correlation(webhook_id=webhook_id):
            logger.info("Webhook deleted with its delivery history")

    def get(self, webhook_id: int) -> Webhook:
        webhook = self.store.get_webhook(webhook_id)
        if webhook is None:
            raise NotFound("Webhook", webhook_id)
        return webhook

    def list(self, integration_id: Optional[int] = None, status: Optional[str] = None) -> List[Webhook]:
        if status is not None:
            try:
                status = WebhookStatus(status).value
            except ValueError:
                raise ValidationError(f"Invalid status '{status}'", {"field": "status"})
        return self.store.list_webhooks(integration_id, status)

    # =========================================================================
    # Scheduling
    # =========================================================================

    def trigger_event(
        self,
        event_type: str,
        payload: Any,
        integration_id: Optional[int] = None,
    ) -> List[int]:
        """Schedule a delivery to every active webhook subscribed to the event."""
        if not event_type or not str(event_type).strip():
            raise ValidationError("event_type is required", {"field": "event_type"})

        with with_correlation(event_type=event_type, integration_id=integration_id):
            webhooks = self.store.subscribers(event_type, integration_id)
            delivery_ids = [self._schedule(w.id, event_type, payload) for w in webhooks]
            logger.info(
                f"Event {event_type} fanned out to {len(delivery_ids)} webhook(s)",
                extra_fields={"delivery_ids": delivery_ids},
            )
        if delivery_ids:
            self._wake()
        return delivery_ids

    def schedule_delivery(self, webhook_id: int, event_type: str, payload: Any) -> int:
        """Schedule one delivery to one webhook, regardless of its event list."""
        self.get(webhook_id)
        delivery_id = self._schedule(webhook_id, event_type, payload)
        self._wake()
        return delivery_id

    def _schedule(self, webhook_id: int, event_type: str, payload: Any) -> int:
        now = self.clock()
        try:
            body = encode_envelope(event_type, now.isoformat(timespec="seconds"), payload)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Payload is not JSON serializable: {e}", {"field": "payload"})
        delivery_id = self.store.insert_delivery(webhook_id, event_type, body, to_iso(now))
        record_delivery_scheduled()
        logger.debug("Delivery scheduled", extra_fields={"webhook_id": webhook_id, "delivery_id": delivery_id})
        return delivery_id

    def redeliver(self, delivery_id: int) -> int:
        """Schedule a fresh copy of a delivery with the same envelope.

        The original row, delivered or exhausted, is left as history.
        """
        original = self.get_delivery(delivery_id)
        new_id = self.store.insert_delivery(original.webhook_id, original.event_type, original.payload, self._now())
        record_delivery_scheduled()
        with with_correlation(webhook_id=original.webhook_id, delivery_id=new_id):
            logger.info(f"Redelivery scheduled for delivery {delivery_id}")
        self._wake()
        return new_id

    def _wake(self) -> None:
        if self.on_schedule is not None:
            self.on_schedule()

    # =========================================================================
    # Delivery
    # =========================================================================

    def get_delivery(self, delivery_id: int) -> WebhookDelivery:
        delivery = self.store.get_delivery(delivery_id)
        if delivery is None:
            raise NotFound("WebhookDelivery", delivery_id)
        return delivery

    async def process_delivery(self, delivery_id: int) -> bool:
        """Attempt one delivery.

        Returns True when the delivery is (or already was) delivered. A
        delivered row is never touched again; an exhausted row, one not due
        before its next_retry_at, or one leased by another worker returns
        False without changes.
        """
        delivery = self.get_delivery(delivery_id)
        if delivery.status == DeliveryStatus.DELIVERED:
            return True
        if delivery.status == DeliveryStatus.EXHAUSTED:
            return False

        webhook = self.get(delivery.webhook_id)
        now = self.clock()
        claim_until = now + timedelta(seconds=self.settings.claim_ttl_seconds)

        with with_correlation(webhook_id=webhook.id, delivery_id=delivery_id, event_type=delivery.event_type):
            if delivery.next_retry_at is not None and delivery.next_retry_at > to_iso(now):
                logger.info(f"Delivery not due until {delivery.next_retry_at}, skipping")
                return False
            if not self.store.claim_delivery(delivery_id, self.worker_id, to_iso(now), to_iso(claim_until)):
                logger.info("Delivery is leased by another worker or not due, skipping")
                return False
            try:
                return await self._attempt(delivery, webhook)
            finally:
                self.store.release_claim(delivery_id, self.worker_id)

    async def _attempt(self, delivery: WebhookDelivery, webhook: Webhook) -> bool:
        attempt = self.store.start_attempt(delivery.id, self.worker_id, max(webhook.retry_attempts, 1))
        if attempt is None:
            # Budget already spent (retry_attempts lowered after earlier failures)
            self.store.mark_failed(delivery.id, delivery.response_status, delivery.response_body, None)
            logger.warning("Delivery has no attempts left, marked exhausted")
            return False

        body = delivery.payload.encode("utf-8")
        headers = build_headers(webhook.secret, body, webhook.headers)
        send_body = body if webhook.http_method in BODY_METHODS else None

        started = time.monotonic()
        try:
            response = await self.sender.send(
                webhook.http_method.value,
                webhook.url,
                headers,
                send_body,
                webhook.timeout,
            )
            status_code, response_body = response.status, response.body
        except DeliveryError as e:
            status_code, response_body = None, str(e)
        except Exception as e:
            logger.exception("Sender raised an unexpected error")
            status_code, response_body = None, str(e) or type(e).__name__
        duration_ms = (time.monotonic() - started) * 1000

        now = self.clock()
        log_fields = {"attempt": attempt, "status": status_code, "duration_ms": round(duration_ms, 1)}

        if status_code is not None and 200 <= status_code < 300:
            self.store.mark_delivered(delivery.id, status_code, response_body, to_iso(now))
            record_delivery_attempt(delivery.event_type, delivered=True, duration_ms=duration_ms)
            logger.info("Delivery succeeded", extra_fields=log_fields)
            return True

        if attempt < webhook.retry_attempts:
            next_retry = now + retry_delay(attempt)
            self.store.mark_failed(delivery.id, status_code, response_body, to_iso(next_retry))
            record_delivery_attempt(delivery.event_type, delivered=False, duration_ms=duration_ms)
            logger.warning(
                f"Delivery failed, retry at {to_iso(next_retry)}",
                extra_fields={**log_fields, "error": response_body if status_code is None else None},
            )
        else:
            self.store.mark_failed(delivery.id, status_code, response_body, None)
            record_delivery_attempt(delivery.event_type, delivered=False, exhausted=True, duration_ms=duration_ms)
            logger.error("Delivery exhausted all retry attempts", extra_fields=log_fields)
        return False

    async def process_due_queue(self, limit: Optional[int] = None) -> DeliveryBatchResult:
        """Process due deliveries, oldest first, up to `limit`.

        A delivery that blows up is logged and counted; the rest of the batch
        still runs.
        """
        limit = limit or self.settings.webhook_batch_size
        now = self._now()
        result = DeliveryBatchResult()

        for delivery_id in self.store.due_delivery_ids(now, limit):
            result.processed += 1
            result.delivery_ids.append(delivery_id)
            with with_correlation(delivery_id=delivery_id):
                try:
                    delivered = await self.process_delivery(delivery_id)
                except Exception:
                    logger.exception("Unexpected error processing delivery")
                    result.errors += 1
                    continue
            if delivered:
                result.delivered += 1
            else:
                result.failed += 1

        get_metrics().update_queue_backlog("webhooks", self.store.count_due(self._now()))
        if result.processed:
            logger.info(
                f"Processed {result.processed} deliveries",
                extra_fields={"delivered": result.delivered, "failed": result.failed, "errors": result.errors},
            )
        return result

    # =========================================================================
    # History
    # =========================================================================

    def delivery_history(self, webhook_id: int, limit: int = 50) -> List[WebhookDelivery]:
        self.get(webhook_id)
        return self.store.list_deliveries(webhook_id, limit)

    def cleanup_old_deliveries(self, days: Optional[int] = None) -> int:
        """Delete delivered/exhausted deliveries created more than `days` ago."""
        days = self.settings.delivery_retention_days if days is None else days
        cutoff = self.clock() - timedelta(days=days)
        removed = self.store.delete_finished_deliveries(to_iso(cutoff))
        logger.info(f"Removed {removed} webhook deliveries older than {days} days")
        return removed
