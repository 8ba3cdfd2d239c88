"""
Integration Manager

Owns the Integration and SyncJob lifecycle:
- CRUD on integrations with validation and a cached list
- Connection tests through the connector registry (never mutate state)
- Sync job execution with a persisted pending → running → completed/failed trail

A sync job row is written before the connector is called, so a crash in the
middle of a sync leaves a `running` row an operator can find.
"""

import asyncio
import copy
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from connectors.base import ConnectionTestResult, SyncResult
from connectors.registry import ConnectorRegistry
from core.cache import TTLCache
from core.config import HubSettings
from core.database import to_iso, utcnow
from core.errors import ConnectorError, InvalidState, NotFound, ValidationError
from core.observability.logging import get_logger, with_correlation
from core.observability.metrics import (
    record_sync_completed,
    record_sync_failed,
    record_sync_started,
)
from integrations.db import IntegrationStore
from integrations.models import (
    Integration,
    IntegrationStatus,
    IntegrationType,
    SyncJob,
)


logger = get_logger(__name__)

CACHE_PREFIX = "integrations."


def _enum_value(enum_cls, value: Any, field_name: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(
            f"Invalid {field_name} '{value}'. Allowed: {allowed}",
            {"field": field_name},
        )


def validate_integration(data: Dict[str, Any], existing: Optional[Integration] = None) -> Integration:
    """Build an Integration from input data, merged over `existing` for updates.

    Raises:
        ValidationError: missing name, unknown type/status, non-dict config
    """
    name = data.get("name", existing.name if existing else None)
    if name is None or not str(name).strip():
        raise ValidationError("Integration name is required", {"field": "name"})

    raw_type = data.get("type", existing.type if existing else None)
    if raw_type is None:
        raise ValidationError("Integration type is required", {"field": "type"})
    integration_type = _enum_value(IntegrationType, raw_type, "type")

    raw_status = data.get("status")
    if raw_status is None:
        raw_status = existing.status if existing else IntegrationStatus.INACTIVE
    status = _enum_value(IntegrationStatus, raw_status, "status")

    config = data.get("config", existing.config if existing else {})
    if config is None:
        config = {}
    if not isinstance(config, dict):
        raise ValidationError("Integration config must be an object", {"field": "config"})

    return Integration(
        id=existing.id if existing else None,
        name=str(name).strip(),
        type=integration_type,
        status=status,
        config=config,
        created_at=existing.created_at if existing else None,
    )


def _failure_message(exc: BaseException, timeout: Optional[float] = None) -> str:
    if isinstance(exc, asyncio.TimeoutError):
        return f"Timed out after {timeout}s"
    message = str(exc)
    return message if message else type(exc).__name__


class IntegrationManager:
    """
    Integration and SyncJob lifecycle.

    Usage:
        manager = IntegrationManager(store, registry, TTLCache())
        integration_id = manager.create({"name": "ERP", "type": "sync", "status": "active"})
        job_id = await manager.run_sync_job(integration_id, "sync_customers")
    """

    def __init__(
        self,
        store: IntegrationStore,
        registry: ConnectorRegistry,
        cache: Optional[TTLCache] = None,
        settings: Optional[HubSettings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.registry = registry
        self.settings = settings or HubSettings()
        self.cache = cache or TTLCache(self.settings.cache_ttl_seconds)
        self.clock = clock

    def _now(self) -> str:
        return to_iso(self.clock())

    def _require_connector(self, integration: Integration) -> None:
        if integration.type.value not in self.registry:
            raise ValidationError(
                f"No connector registered for integration type '{integration.type.value}'",
                {"field": "type", "available": self.registry.types()},
            )

    def _invalidate(self) -> None:
        dropped = self.cache.delete_prefix(CACHE_PREFIX)
        logger.debug(f"Invalidated {dropped} cached integration lists")

    # =========================================================================
    # CRUD
    # =========================================================================

    def create(self, data: Dict[str, Any]) -> int:
        integration = validate_integration(data)
        self._require_connector(integration)
        integration_id = self.store.insert(integration, self._now())
        self._invalidate()
        with with_correlation(integration_id=integration_id):
            logger.info(
                f"Integration created: {integration.name}",
                extra_fields={"type": integration.type.value, "status": integration.status.value},
            )
        return integration_id

    def update(self, integration_id: int, data: Dict[str, Any]) -> Integration:
        existing = self.get(integration_id)
        integration = validate_integration(data, existing)
        if integration.type != existing.type:
            self._require_connector(integration)
        if not self.store.update(integration, self._now()):
            raise NotFound("Integration", integration_id)
        self._invalidate()
        with with_correlation(integration_id=integration_id):
            logger.info(f"Integration updated: {integration.name}", extra_fields={"fields": sorted(data)})
        return self.get(integration_id)

    def delete(self, integration_id: int) -> None:
        if not self.store.delete(integration_id):
            raise NotFound("Integration", integration_id)
        self._invalidate()
        with with_correlation(integration_id=integration_id):
            logger.info("Integration deleted with its sync jobs, mapping rules and webhooks")

    def get(self, integration_id: int) -> Integration:
        integration = self.store.get(integration_id)
        if integration is None:
            raise NotFound("Integration", integration_id)
        return integration

    def list(self, integration_type: Optional[str] = None, status: Optional[str] = None) -> List[Integration]:
        """Integrations ordered by name, optionally filtered. Served from cache."""
        if integration_type is not None:
            integration_type = _enum_value(IntegrationType, integration_type, "type").value
        if status is not None:
            status = _enum_value(IntegrationStatus, status, "status").value

        key = f"{CACHE_PREFIX}list.{integration_type or '*'}.{status or '*'}"
        cached = self.cache.get(key)
        if cached is None:
            cached = self.store.list(integration_type, status)
            self.cache.set(key, cached)
        # Callers get their own objects; the cached list is never handed out
        return copy.deepcopy(cached)

    # =========================================================================
    # Connection Test
    # =========================================================================

    async def test(self, integration_id: int) -> ConnectionTestResult:
        """Ask the connector whether the integration's config works.

        Never mutates state. Connector errors, unknown connector types and
        timeouts come back as `success=False` with the message.
        """
        integration = self.get(integration_id)
        timeout = self.settings.connector_timeout_seconds

        with with_correlation(integration_id=integration_id):
            try:
                connector = self.registry.resolve(integration.type.value)
                result = await asyncio.wait_for(
                    connector.test_connection(integration.config),
                    timeout=timeout,
                )
                if not isinstance(result, ConnectionTestResult):
                    result = ConnectionTestResult.model_validate(result)
            except Exception as e:
                message = _failure_message(e, timeout)
                logger.warning(f"Connection test failed: {message}")
                return ConnectionTestResult(success=False, error=message)

            logger.info(f"Connection test {'passed' if result.success else 'failed'}")
            return result

    # =========================================================================
    # Sync Jobs
    # =========================================================================

    async def run_sync_job(
        self,
        integration_id: int,
        job_type: str,
        options: Optional[Dict[str, Any]] = None,
    ) -> int:
        """Run a connector sync and record it as a SyncJob.

        Options are passed to the connector untouched; `options["timeout"]`
        (seconds) overrides the configured sync timeout.

        Returns:
            The job id (the job is completed when this returns)

        Raises:
            ValidationError: empty job_type
            InvalidState: integration missing or not active, or the same
                job type is already pending/running for it
            ConnectorError: the connector failed; the job is marked failed
        """
        if not job_type or not str(job_type).strip():
            raise ValidationError("job_type is required", {"field": "job_type"})
        options = dict(options or {})

        integration = self.store.get(integration_id)
        if integration is None:
            raise InvalidState(f"Integration {integration_id} does not exist")
        if not integration.is_active:
            raise InvalidState(
                f"Integration {integration_id} is not active (status: {integration.status.value})"
            )

        timeout = options.get("timeout")
        if timeout is None:
            timeout = self.settings.sync_timeout_seconds
        elif isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or not 0 < timeout < float("inf"):
            raise ValidationError(
                f"Invalid timeout option: {timeout!r} (expected a positive number of seconds)",
                {"field": "timeout"},
            )
        timeout = float(timeout)

        job_id = self.store.create_job(integration_id, job_type, self._now())

        with with_correlation(integration_id=integration_id, job_id=job_id, job_type=job_type):
            self.store.mark_job_running(job_id)
            record_sync_started(job_type)
            logger.info(f"Sync job started: {job_type}")
            started = time.monotonic()

            try:
                connector = self.registry.resolve(integration.type.value)
                raw = await asyncio.wait_for(
                    connector.execute_sync(job_type, integration.config, options),
                    timeout=timeout,
                )
                result = raw if isinstance(raw, SyncResult) else SyncResult.model_validate(raw or {})
            except Exception as e:
                message = _failure_message(e, timeout)
                self.store.fail_job(job_id, message, self._now())
                record_sync_failed(job_type)
                logger.error(f"Sync job failed: {message}")
                raise ConnectorError(message, job_id=job_id) from e

            self.store.complete_job(job_id, result.total_records, self._now())
            duration_ms = (time.monotonic() - started) * 1000
            record_sync_completed(job_type, result.total_records, duration_ms)
            logger.info(
                f"Sync job completed: {job_type}",
                extra_fields={"total_records": result.total_records, "duration_ms": round(duration_ms, 1)},
            )

        return job_id

    def job_status(self, job_id: int) -> SyncJob:
        job = self.store.get_job(job_id)
        if job is None:
            raise NotFound("SyncJob", job_id)
        return job

    def jobs_for(self, integration_id: int, limit: int = 50) -> List[SyncJob]:
        self.get(integration_id)
        return self.store.list_jobs(integration_id, limit)

    def fail_stale_jobs(self, older_than: timedelta) -> int:
        """Operator action: fail pending/running jobs started before now - older_than.

        Never called automatically; a stuck `running` row is left visible
        until someone decides it is dead.
        """
        cutoff = self.clock() - older_than
        message = f"Marked failed by operator: no result after {older_than}"
        job_ids = self.store.fail_unfinished_jobs(to_iso(cutoff), message, self._now())
        for job_id in job_ids:
            logger.warning("Stale sync job marked failed", extra_fields={"job_id": job_id})
        return len(job_ids)

    def cleanup_old_jobs(self, days: Optional[int] = None) -> int:
        """Delete finished jobs completed more than `days` ago."""
        days = self.settings.sync_job_retention_days if days is None else days
        cutoff = self.clock() - timedelta(days=days)
        removed = self.store.delete_finished_jobs(to_iso(cutoff))
        logger.info(f"Removed {removed} sync jobs older than {days} days")
        return removed
