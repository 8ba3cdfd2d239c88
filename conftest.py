"""Shared pytest fixtures: temp database, fake connector, fake HTTP sender, fake clock."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest

from connectors.base import ConnectionTestResult, Connector, SyncResult
from connectors.registry import ConnectorRegistry
from core.config import HubSettings
from hub import create_hub, set_hub
from webhooks.client import WebhookResponse, WebhookSender


class FakeConnector(Connector):
    """Scriptable connector. Class attributes are reset by the `registry` fixture."""

    connector_type = "sync"
    total_records = 7
    error: Optional[Exception] = None
    delay = 0.0
    calls: List[Dict[str, Any]] = []

    async def test_connection(self, config):
        if self.error is not None:
            raise self.error
        return ConnectionTestResult(success=True, info={"host": config.get("host")})

    async def execute_sync(self, job_type, config, options):
        FakeConnector.calls.append({"job_type": job_type, "config": config, "options": options})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return SyncResult(total_records=self.total_records)


class FakeSender(WebhookSender):
    """Records requests and replies with queued responses (default 200)."""

    def __init__(self):
        self.requests: List[Dict[str, Any]] = []
        self.responses: List[Any] = []
        self.closed = False

    def queue(self, *responses) -> None:
        self.responses.extend(responses)

    async def send(self, method, url, headers, body, timeout):
        self.requests.append({
            "method": method,
            "url": url,
            "headers": headers,
            "body": body,
            "timeout": timeout,
        })
        response = self.responses.pop(0) if self.responses else 200
        if isinstance(response, Exception):
            raise response
        if isinstance(response, tuple):
            return WebhookResponse(*response)
        return WebhookResponse(response, "ok")

    async def close(self):
        self.closed = True


class FakeClock:
    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "hub.db"


@pytest.fixture
def settings(db_path):
    return HubSettings(db_path=db_path)


@pytest.fixture
def connector():
    """The FakeConnector class, reset. Tests set `error`, `delay` or `total_records` on it."""
    FakeConnector.total_records = 7
    FakeConnector.error = None
    FakeConnector.delay = 0.0
    FakeConnector.calls = []
    return FakeConnector


@pytest.fixture
def registry(connector):
    registry = ConnectorRegistry()
    registry.register("sync", connector)
    registry.register("import", connector)
    return registry


@pytest.fixture
def sender():
    return FakeSender()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def hub(settings, registry, sender, clock):
    hub = create_hub(settings, registry=registry, sender=sender, clock=clock)
    set_hub(hub)
    yield hub
    set_hub(None)


@pytest.fixture
def integration_id(hub):
    return hub.integrations.create({
        "name": "ERP",
        "type": "sync",
        "status": "active",
        "config": {"host": "erp.local", "api_key": "k-123"},
    })

