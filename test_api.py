"""
API Tests

Drives the FastAPI app through TestClient with a hub built on a temporary
database, a fake connector and a fake webhook sender.
"""

import pytest
from fastapi.testclient import TestClient

from api.server import create_app


@pytest.fixture
def client(hub):
    with TestClient(create_app(hub)) as client:
        yield client


@pytest.fixture
def erp(client):
    response = client.post("/integrations", json={
        "name": "ERP",
        "type": "sync",
        "status": "active",
        "config": {"host": "erp.local"},
    })
    assert response.status_code == 201
    return response.json()["id"]


class TestHealth:

    def test_health(self, client):
        data = client.get("/health").json()
        assert data["status"] == "healthy"
        assert data["services"]["storage"] == "up"
        assert "sync" in data["services"]["connectors"]

    def test_probes(self, client):
        assert client.get("/ready").json() == {"status": "ready"}
        assert client.get("/live").json() == {"status": "alive"}

    def test_metrics(self, client):
        data = client.get("/metrics").json()
        assert set(data) >= {"sync_jobs", "deliveries", "timings", "queues"}


class TestIntegrationRoutes:

    def test_create_hides_config(self, client, erp):
        listed = client.get("/integrations").json()
        assert [i["id"] for i in listed] == [erp]
        assert "config" not in listed[0]

        detail = client.get(f"/integrations/{erp}").json()
        assert detail["config"] == {"host": "erp.local"}

    def test_invalid_type_is_422(self, client):
        response = client.post("/integrations", json={"name": "X", "type": "ftp"})
        assert response.status_code == 422
        assert response.json()["error"] == "ValidationError"

    def test_type_without_connector_is_422(self, client):
        response = client.post("/integrations", json={"name": "X", "type": "export"})
        assert response.status_code == 422
        assert response.json()["details"]["field"] == "type"

    def test_missing_name_is_422(self, client):
        assert client.post("/integrations", json={"type": "sync"}).status_code == 422

    def test_not_found(self, client):
        response = client.get("/integrations/404")
        assert response.status_code == 404
        assert response.json()["error"] == "NotFound"

    def test_update_and_delete(self, client, erp):
        response = client.put(f"/integrations/{erp}", json={"status": "inactive"})
        assert response.json()["status"] == "inactive"
        assert response.json()["name"] == "ERP"

        assert client.delete(f"/integrations/{erp}").status_code == 204
        assert client.get(f"/integrations/{erp}").status_code == 404

    def test_connection_test(self, client, erp):
        data = client.post(f"/integrations/{erp}/test").json()
        assert data["success"] is True

    def test_sync(self, client, erp):
        response = client.post(f"/integrations/{erp}/sync", json={"job_type": "sync_customers"})
        assert response.status_code == 200
        job = response.json()
        assert job["status"] == "completed"
        assert job["total_records"] == 7

        assert client.get(f"/integrations/jobs/{job['id']}").json()["status"] == "completed"
        assert [j["id"] for j in client.get(f"/integrations/{erp}/jobs").json()] == [job["id"]]

    def test_sync_inactive_is_409(self, client):
        integration_id = client.post("/integrations", json={"name": "Off", "type": "sync"}).json()["id"]
        response = client.post(f"/integrations/{integration_id}/sync", json={"job_type": "sync_customers"})
        assert response.status_code == 409

    def test_sync_connector_failure_is_502(self, client, erp, connector):
        connector.error = RuntimeError("ERP returned 503")
        response = client.post(f"/integrations/{erp}/sync", json={"job_type": "sync_orders"})

        assert response.status_code == 502
        body = response.json()
        assert body["message"] == "ERP returned 503"
        job = client.get(f"/integrations/jobs/{body['details']['job_id']}").json()
        assert job["status"] == "failed"
        assert job["error_log"] == "ERP returned 503"

    def test_fail_stale(self, client, hub, erp):
        hub.integrations.store.create_job(erp, "sync_orders", "2024-03-01T00:00:00.000000+00:00")
        response = client.post("/integrations/jobs/fail-stale", json={"older_than_hours": 1})
        assert response.json() == {"failed": 1}


class TestMappingRoutes:

    def test_crud_and_transform(self, client, erp):
        response = client.put(f"/integrations/{erp}/mappings/qty", json={
            "target_field": "quantity",
            "transformation_rule": {"type": "cast", "target_type": "int"},
        })
        assert response.status_code == 200
        assert response.json()["target_field"] == "quantity"

        assert [m["source_field"] for m in client.get(f"/integrations/{erp}/mappings").json()] == ["qty"]

        transformed = client.post(f"/integrations/{erp}/transform", json={"records": [{"qty": "3", "sku": "A"}]})
        assert transformed.json() == {"records": [{"quantity": 3, "sku": "A"}]}

        assert client.delete(f"/integrations/{erp}/mappings/qty").status_code == 204
        assert client.delete(f"/integrations/{erp}/mappings/qty").status_code == 404

    def test_invalid_rule_is_422(self, client, erp):
        response = client.put(f"/integrations/{erp}/mappings/qty", json={
            "target_field": "quantity",
            "transformation_rule": {"type": "uppercase"},
        })
        assert response.status_code == 422

    def test_unknown_integration(self, client):
        assert client.get("/integrations/404/mappings").status_code == 404


class TestWebhookRoutes:

    @pytest.fixture
    def webhook(self, client):
        response = client.post("/webhooks", json={
            "name": "orders",
            "url": "https://example.com/hook",
            "events": ["order.created"],
        })
        assert response.status_code == 201
        return response.json()

    def test_secret_only_on_create(self, client, webhook):
        assert len(webhook["secret"]) == 64
        assert "secret" not in client.get(f"/webhooks/{webhook['id']}").json()
        assert "secret" not in client.get("/webhooks").json()[0]

    def test_invalid_url_is_422(self, client):
        response = client.post("/webhooks", json={"name": "x", "url": "nope", "events": ["a"]})
        assert response.status_code == 422

    def test_update(self, client, webhook):
        response = client.put(f"/webhooks/{webhook['id']}", json={"events": ["*"], "retry_attempts": 5})
        assert response.json()["events"] == ["*"]
        assert response.json()["retry_attempts"] == 5

    def test_event_to_delivery(self, client, sender, webhook):
        response = client.post("/webhooks/events", json={"event_type": "order.created", "payload": {"id": 1}})
        assert response.status_code == 202
        [delivery_id] = response.json()["delivery_ids"]

        result = client.post("/webhooks/queue/process").json()
        assert result["delivered"] == 1

        delivery = client.get(f"/webhooks/deliveries/{delivery_id}").json()
        assert delivery["status"] == "delivered"
        assert delivery["attempt_count"] == 1
        assert len(sender.requests) == 1

        redelivered = client.post(f"/webhooks/deliveries/{delivery_id}/redeliver").json()
        assert redelivered["status"] == "scheduled"

        history = client.get(f"/webhooks/{webhook['id']}/deliveries").json()
        assert [d["id"] for d in history] == [redelivered["id"], delivery_id]

    def test_delete(self, client, webhook):
        assert client.delete(f"/webhooks/{webhook['id']}").status_code == 204
        assert client.get(f"/webhooks/{webhook['id']}").status_code == 404

    def test_missing_delivery(self, client):
        assert client.get("/webhooks/deliveries/404").status_code == 404
