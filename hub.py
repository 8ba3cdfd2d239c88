"""Hub container.

Builds the stores, connector registry, cache, HTTP sender and managers from
settings. The API server, the Temporal activities and the local poller all
get their managers from here.

Usage:
    hub = create_hub()
    hub.integrations.create({...})
    await hub.webhooks.process_due_queue()
    await hub.close()
"""

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Union

from connectors.registry import ConnectorRegistry
from core.cache import TTLCache
from core.config import HubSettings, get_settings
from core.database import utcnow
from core.observability.logging import get_logger
from core.security.encryption import ConfigCodec, ConfigEncryption
from integrations.db import IntegrationStore, init_integrations_db
from integrations.manager import IntegrationManager
from transform.db import MappingStore, init_mapping_db
from transform.engine import TransformationEngine
from webhooks.client import AiohttpWebhookSender, WebhookSender
from webhooks.db import WebhookStore, init_webhooks_db
from webhooks.manager import WebhookManager


logger = get_logger(__name__)


def init_hub_db(db_path: Union[str, Path]) -> None:
    """Create every hub table. Integrations first; the others reference it."""
    init_integrations_db(db_path)
    init_mapping_db(db_path)
    init_webhooks_db(db_path)


@dataclass
class Hub:
    settings: HubSettings
    registry: ConnectorRegistry
    cache: TTLCache
    integrations: IntegrationManager
    webhooks: WebhookManager
    mappings: MappingStore
    transformer: TransformationEngine

    async def close(self) -> None:
        await self.webhooks.sender.close()


def create_hub(
    settings: Optional[HubSettings] = None,
    registry: Optional[ConnectorRegistry] = None,
    sender: Optional[WebhookSender] = None,
    clock: Callable[[], datetime] = utcnow,
) -> Hub:
    """Wire up a Hub. Tables are created if missing."""
    settings = settings or get_settings()
    init_hub_db(settings.db_path)

    if registry is None:
        registry = ConnectorRegistry()
        registry.load(settings.connectors)

    encryption = ConfigEncryption(settings.encryption_key) if settings.encryption_key else None
    if encryption is None:
        logger.warning("HUB_ENCRYPTION_KEY not set, integration configs are stored unencrypted")

    cache = TTLCache(settings.cache_ttl_seconds)
    mappings = MappingStore(settings.db_path)
    sender = sender or AiohttpWebhookSender(
        connect_timeout=settings.webhook_connect_timeout,
        max_redirects=settings.webhook_max_redirects,
    )

    return Hub(
        settings=settings,
        registry=registry,
        cache=cache,
        integrations=IntegrationManager(
            IntegrationStore(settings.db_path, ConfigCodec(encryption)),
            registry,
            cache,
            settings,
            clock,
        ),
        webhooks=WebhookManager(WebhookStore(settings.db_path), sender, settings, clock),
        mappings=mappings,
        transformer=TransformationEngine(mappings),
    )


_hub: Optional[Hub] = None


def get_hub() -> Hub:
    """Process-wide hub for activities and the worker, built on first use."""
    global _hub
    if _hub is None:
        _hub = create_hub()
    return _hub


def set_hub(hub: Optional[Hub]) -> None:
    """Install (or clear) the process-wide hub."""
    global _hub
    _hub = hub
