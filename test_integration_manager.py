"""
Integration Manager Tests

CRUD validation, connection tests and the sync job lifecycle:
pending -> running -> completed | failed, with failures recorded on the job
and re-raised to the caller.
"""

import asyncio
import sqlite3
from datetime import timedelta

import pytest

from core.config import HubSettings
from connectors.registry import ConnectorRegistry
from core.errors import ConnectorError, InvalidState, NotFound, ValidationError
from core.security import generate_encryption_key, is_encrypted
from hub import create_hub
from integrations.models import IntegrationStatus, SyncJobStatus


def _raw_config(db_path, integration_id):
    conn = sqlite3.connect(str(db_path))
    try:
        return conn.execute("SELECT config FROM integrations WHERE id = ?", (integration_id,)).fetchone()[0]
    finally:
        conn.close()


class TestIntegrationCrud:

    def test_create_defaults_to_inactive(self, hub):
        integration_id = hub.integrations.create({"name": " Shop ", "type": "import"})
        integration = hub.integrations.get(integration_id)

        assert integration.name == "Shop"
        assert integration.status == IntegrationStatus.INACTIVE
        assert integration.config == {}
        assert integration.created_at is not None

    @pytest.mark.parametrize("data", [
        {"type": "sync"},
        {"name": "  ", "type": "sync"},
        {"name": "ERP"},
        {"name": "ERP", "type": "ftp"},
        {"name": "ERP", "type": "sync", "status": "paused"},
        {"name": "ERP", "type": "sync", "status": ""},
        {"name": "ERP", "type": "export"},
        {"name": "ERP", "type": "sync", "config": ["not", "a", "dict"]},
    ])
    def test_create_rejects_invalid_input(self, hub, data):
        with pytest.raises(ValidationError):
            hub.integrations.create(data)
        assert hub.integrations.list() == []

    def test_update_merges_fields(self, hub, integration_id):
        updated = hub.integrations.update(integration_id, {"status": "inactive"})

        assert updated.status == IntegrationStatus.INACTIVE
        assert updated.name == "ERP"
        assert updated.config["host"] == "erp.local"

    def test_get_missing(self, hub):
        with pytest.raises(NotFound):
            hub.integrations.get(404)

    def test_delete_missing(self, hub):
        with pytest.raises(NotFound):
            hub.integrations.delete(404)

    def test_list_filters_and_orders_by_name(self, hub, connector):
        hub.registry.register("export", connector)
        hub.integrations.create({"name": "b-export", "type": "export", "status": "active"})
        hub.integrations.create({"name": "a-import", "type": "import"})
        hub.integrations.create({"name": "c-import", "type": "import", "status": "active"})

        assert [i.name for i in hub.integrations.list()] == ["a-import", "b-export", "c-import"]
        assert [i.name for i in hub.integrations.list("import")] == ["a-import", "c-import"]
        assert [i.name for i in hub.integrations.list("import", "active")] == ["c-import"]
        with pytest.raises(ValidationError):
            hub.integrations.list("ftp")

    def test_list_cache_invalidated_on_write(self, hub):
        assert hub.integrations.list() == []
        assert len(hub.cache) == 1

        hub.integrations.create({"name": "ERP", "type": "sync"})
        assert len(hub.cache) == 0
        assert [i.name for i in hub.integrations.list()] == ["ERP"]

    def test_listed_integrations_are_copies(self, hub, integration_id):
        listed = hub.integrations.list()
        listed[0].config["host"] = "evil.example"
        listed[0].name = "renamed"
        listed.clear()

        [integration] = hub.integrations.list()
        assert integration.name == "ERP"
        assert integration.config["host"] == "erp.local"

    def test_type_must_have_registered_connector(self, hub, integration_id):
        with pytest.raises(ValidationError) as exc_info:
            hub.integrations.create({"name": "Out", "type": "export"})
        assert exc_info.value.details["available"] == ["import", "sync"]

        with pytest.raises(ValidationError):
            hub.integrations.update(integration_id, {"type": "webhook"})
        assert hub.integrations.get(integration_id).type.value == "sync"

    def test_blank_status_on_update_rejected(self, hub, integration_id):
        with pytest.raises(ValidationError):
            hub.integrations.update(integration_id, {"status": ""})

    def test_delete_cascades_jobs(self, hub, integration_id):
        job_id = asyncio.run(hub.integrations.run_sync_job(integration_id, "sync_customers"))
        hub.integrations.delete(integration_id)

        with pytest.raises(NotFound):
            hub.integrations.job_status(job_id)


class TestConfigEncryption:

    def test_config_encrypted_at_rest(self, db_path, registry, sender, clock):
        settings = HubSettings(db_path=db_path, encryption_key=generate_encryption_key())
        hub = create_hub(settings, registry=registry, sender=sender, clock=clock)

        integration_id = hub.integrations.create({"name": "ERP", "type": "sync", "config": {"api_key": "secret"}})

        raw = _raw_config(db_path, integration_id)
        assert is_encrypted(raw)
        assert "secret" not in raw
        assert hub.integrations.get(integration_id).config == {"api_key": "secret"}

    def test_plain_json_without_key(self, hub, db_path, integration_id):
        raw = _raw_config(db_path, integration_id)
        assert not is_encrypted(raw)
        assert "erp.local" in raw

    def test_list_omits_config_in_api_view(self, hub, integration_id):
        data = hub.integrations.list()[0].to_dict(include_config=False)
        assert "config" not in data


class TestConnectionTest:

    def test_success(self, hub, integration_id, connector):
        result = asyncio.run(hub.integrations.test(integration_id))
        assert result.success is True
        assert result.info == {"host": "erp.local"}

    def test_connector_error_reported_not_raised(self, hub, integration_id, connector):
        connector.error = RuntimeError("401 Unauthorized")
        result = asyncio.run(hub.integrations.test(integration_id))

        assert result.success is False
        assert result.error == "401 Unauthorized"

    def test_unknown_connector_type(self, hub, integration_id):
        hub.integrations.registry = ConnectorRegistry()
        result = asyncio.run(hub.integrations.test(integration_id))

        assert result.success is False
        assert "Unknown connector type" in result.error

    def test_does_not_change_state(self, hub, integration_id, connector):
        before = hub.integrations.get(integration_id)
        connector.error = RuntimeError("down")
        asyncio.run(hub.integrations.test(integration_id))

        assert hub.integrations.get(integration_id) == before


class TestSyncJobs:

    def test_completed_job(self, hub, integration_id, connector):
        """Active integration, connector returns 7 records -> completed job."""
        job_id = asyncio.run(hub.integrations.run_sync_job(integration_id, "sync_customers", {}))
        job = hub.integrations.job_status(job_id)

        assert job.status == SyncJobStatus.COMPLETED
        assert job.total_records == 7
        assert job.completed_at is not None
        assert job.error_log is None

    def test_inactive_integration_creates_no_job(self, hub):
        integration_id = hub.integrations.create({"name": "ERP", "type": "sync", "status": "inactive"})

        with pytest.raises(InvalidState):
            asyncio.run(hub.integrations.run_sync_job(integration_id, "sync_customers"))
        assert hub.integrations.jobs_for(integration_id) == []

    def test_missing_integration(self, hub):
        with pytest.raises(InvalidState):
            asyncio.run(hub.integrations.run_sync_job(404, "sync_customers"))

    def test_empty_job_type(self, hub, integration_id):
        with pytest.raises(ValidationError):
            asyncio.run(hub.integrations.run_sync_job(integration_id, " "))

    def test_connector_failure_recorded_and_raised(self, hub, integration_id, connector):
        connector.error = RuntimeError("ERP returned 503")

        with pytest.raises(ConnectorError) as exc_info:
            asyncio.run(hub.integrations.run_sync_job(integration_id, "sync_orders"))

        job = hub.integrations.job_status(exc_info.value.job_id)
        assert job.status == SyncJobStatus.FAILED
        assert job.error_log == "ERP returned 503"
        assert job.completed_at is not None

    def test_options_and_config_passed_through(self, hub, integration_id, connector):
        asyncio.run(hub.integrations.run_sync_job(integration_id, "sync_orders", {"since": "2024-01-01"}))

        call = connector.calls[-1]
        assert call["job_type"] == "sync_orders"
        assert call["options"] == {"since": "2024-01-01"}
        assert call["config"]["api_key"] == "k-123"

    def test_timeout_fails_job(self, hub, integration_id, connector):
        connector.delay = 1.0

        with pytest.raises(ConnectorError) as exc_info:
            asyncio.run(hub.integrations.run_sync_job(integration_id, "sync_orders", {"timeout": 0.05}))

        job = hub.integrations.job_status(exc_info.value.job_id)
        assert job.status == SyncJobStatus.FAILED
        assert "Timed out" in job.error_log

    @pytest.mark.parametrize("timeout", ["soon", 0, -5, True, float("nan")])
    def test_invalid_timeout_option(self, hub, integration_id, timeout):
        with pytest.raises(ValidationError):
            asyncio.run(hub.integrations.run_sync_job(integration_id, "sync_orders", {"timeout": timeout}))
        assert hub.integrations.jobs_for(integration_id) == []

    def test_same_job_type_cannot_overlap(self, hub, integration_id):
        hub.integrations.store.create_job(integration_id, "sync_orders", "2024-03-01T11:00:00.000000+00:00")

        with pytest.raises(InvalidState):
            asyncio.run(hub.integrations.run_sync_job(integration_id, "sync_orders"))

        # a different job type may run alongside
        job_id = asyncio.run(hub.integrations.run_sync_job(integration_id, "sync_customers"))
        assert hub.integrations.job_status(job_id).status == SyncJobStatus.COMPLETED

    def test_same_job_type_allowed_after_completion(self, hub, integration_id):
        first = asyncio.run(hub.integrations.run_sync_job(integration_id, "sync_orders"))
        second = asyncio.run(hub.integrations.run_sync_job(integration_id, "sync_orders"))
        assert first != second

    def test_terminal_status_iff_completed_at(self, hub, integration_id, connector):
        asyncio.run(hub.integrations.run_sync_job(integration_id, "a"))
        connector.error = RuntimeError("boom")
        with pytest.raises(ConnectorError):
            asyncio.run(hub.integrations.run_sync_job(integration_id, "b"))

        for job in hub.integrations.jobs_for(integration_id):
            assert job.status.is_terminal
            assert job.completed_at is not None

    def test_jobs_most_recent_first(self, hub, integration_id, clock):
        first = asyncio.run(hub.integrations.run_sync_job(integration_id, "a"))
        clock.advance(minutes=1)
        second = asyncio.run(hub.integrations.run_sync_job(integration_id, "b"))

        assert [j.id for j in hub.integrations.jobs_for(integration_id)] == [second, first]

    def test_job_status_missing(self, hub):
        with pytest.raises(NotFound):
            hub.integrations.job_status(404)


class TestJobMaintenance:

    def test_fail_stale_jobs(self, hub, integration_id, clock):
        store = hub.integrations.store
        stale = store.create_job(integration_id, "sync_orders", "2024-03-01T08:00:00.000000+00:00")
        store.mark_job_running(stale)
        fresh = store.create_job(integration_id, "sync_customers", "2024-03-01T11:30:00.000000+00:00")

        assert hub.integrations.fail_stale_jobs(timedelta(hours=2)) == 1

        job = hub.integrations.job_status(stale)
        assert job.status == SyncJobStatus.FAILED
        assert "operator" in job.error_log
        assert hub.integrations.job_status(fresh).status == SyncJobStatus.PENDING

    def test_stale_jobs_never_failed_automatically(self, hub, integration_id, clock):
        job_id = hub.integrations.store.create_job(integration_id, "sync_orders", "2024-01-01T00:00:00.000000+00:00")
        hub.integrations.cleanup_old_jobs()

        assert hub.integrations.job_status(job_id).status == SyncJobStatus.PENDING

    def test_cleanup_old_jobs(self, hub, integration_id, clock):
        old = asyncio.run(hub.integrations.run_sync_job(integration_id, "a"))
        clock.advance(days=15)
        recent = asyncio.run(hub.integrations.run_sync_job(integration_id, "b"))

        assert hub.integrations.cleanup_old_jobs() == 1
        assert [j.id for j in hub.integrations.jobs_for(integration_id)] == [recent]
        with pytest.raises(NotFound):
            hub.integrations.job_status(old)
