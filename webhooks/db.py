"""
Webhook Database

Creates and manages:
- webhooks: outbound subscriptions
- webhook_deliveries: one row per event per webhook, advanced by the poller

Deliveries are leased with claimed_by/claim_expires_at before an attempt so
two workers never send the same row concurrently. Every state change is a
single-row UPDATE that refuses to touch a delivered row.
"""

import json
import sqlite3
from pathlib import Path
from typing import Any, List, Optional, Union

from core.database import get_db_connection, transaction
from core.errors import ValidationError
from webhooks.models import (
    DeliveryStatus,
    HttpMethod,
    Webhook,
    WebhookDelivery,
    WebhookStatus,
)


def init_webhooks_db(db_path: Union[str, Path]) -> None:
    """Create webhook tables. The integrations table must exist first."""
    with transaction(db_path) as conn:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS webhooks (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                integration_id INTEGER,
                name TEXT NOT NULL,
                url TEXT NOT NULL,
                http_method TEXT NOT NULL DEFAULT 'POST',
                headers TEXT NOT NULL DEFAULT '{}',
                events TEXT NOT NULL,
                secret TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'active' CHECK(status IN ('active', 'inactive')),
                retry_attempts INTEGER NOT NULL DEFAULT 3,
                timeout REAL NOT NULL DEFAULT 30,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                FOREIGN KEY (integration_id) REFERENCES integrations(id) ON DELETE CASCADE
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_webhooks_status
            ON webhooks(status, integration_id)
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS webhook_deliveries (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                webhook_id INTEGER NOT NULL,
                event_type TEXT NOT NULL,
                payload TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'scheduled'
                    CHECK(status IN ('scheduled', 'retry_pending', 'delivered', 'exhausted')),
                attempt_count INTEGER NOT NULL DEFAULT 0,
                response_status INTEGER,
                response_body TEXT,
                delivered_at TEXT,
                next_retry_at TEXT,
                claimed_by TEXT,
                claim_expires_at TEXT,
                created_at TEXT NOT NULL,
                FOREIGN KEY (webhook_id) REFERENCES webhooks(id) ON DELETE CASCADE
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_deliveries_due
            ON webhook_deliveries(status, next_retry_at, created_at)
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_deliveries_webhook
            ON webhook_deliveries(webhook_id, created_at)
        """)


def _row_to_webhook(row) -> Webhook:
    return Webhook(
        id=row["id"],
        integration_id=row["integration_id"],
        name=row["name"],
        url=row["url"],
        http_method=HttpMethod(row["http_method"]),
        headers=json.loads(row["headers"] or "{}"),
        events=json.loads(row["events"]),
        secret=row["secret"],
        status=WebhookStatus(row["status"]),
        retry_attempts=row["retry_attempts"],
        timeout=row["timeout"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_delivery(row) -> WebhookDelivery:
    return WebhookDelivery(
        id=row["id"],
        webhook_id=row["webhook_id"],
        event_type=row["event_type"],
        payload=row["payload"],
        status=DeliveryStatus(row["status"]),
        attempt_count=row["attempt_count"],
        response_status=row["response_status"],
        response_body=row["response_body"],
        delivered_at=row["delivered_at"],
        next_retry_at=row["next_retry_at"],
        claimed_by=row["claimed_by"],
        claim_expires_at=row["claim_expires_at"],
        created_at=row["created_at"],
    )


class WebhookStore:
    """SQLite persistence for webhooks and deliveries."""

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = db_path

    def _fetchone(self, sql: str, params: tuple):
        conn = get_db_connection(self.db_path)
        try:
            return conn.execute(sql, params).fetchone()
        finally:
            conn.close()

    def _fetchall(self, sql: str, params: tuple):
        conn = get_db_connection(self.db_path)
        try:
            return conn.execute(sql, params).fetchall()
        finally:
            conn.close()

    def _execute(self, sql: str, params: tuple) -> int:
        with transaction(self.db_path) as conn:
            return conn.execute(sql, params).rowcount

    # =========================================================================
    # Webhooks
    # =========================================================================

    def _webhook_params(self, webhook: Webhook) -> tuple:
        return (
            webhook.integration_id,
            webhook.name,
            webhook.url,
            webhook.http_method.value,
            json.dumps(webhook.headers),
            json.dumps(webhook.events),
            webhook.secret,
            webhook.status.value,
            webhook.retry_attempts,
            webhook.timeout,
        )

    def insert_webhook(self, webhook: Webhook, now: str) -> int:
        try:
            with transaction(self.db_path) as conn:
                cursor = conn.execute("""
                    INSERT INTO webhooks
                        (integration_id, name, url, http_method, headers, events, secret,
                         status, retry_attempts, timeout, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, self._webhook_params(webhook) + (now, now))
                return cursor.lastrowid
        except sqlite3.IntegrityError as e:
            raise ValidationError(f"Integration {webhook.integration_id} does not exist: {e}", {"field": "integration_id"})

    def update_webhook(self, webhook: Webhook, now: str) -> bool:
        try:
            with transaction(self.db_path) as conn:
                cursor = conn.execute("""
                    UPDATE webhooks
                    SET integration_id = ?, name = ?, url = ?, http_method = ?, headers = ?,
                        events = ?, secret = ?, status = ?, retry_attempts = ?, timeout = ?,
                        updated_at = ?
                    WHERE id = ?
                """, self._webhook_params(webhook) + (now, webhook.id))
                return cursor.rowcount > 0
        except sqlite3.IntegrityError as e:
            raise ValidationError(f"Integration {webhook.integration_id} does not exist: {e}", {"field": "integration_id"})

    def delete_webhook(self, webhook_id: int) -> bool:
        """Delete a webhook; its deliveries cascade."""
        return self._execute("DELETE FROM webhooks WHERE id = ?", (webhook_id,)) > 0

    def get_webhook(self, webhook_id: int) -> Optional[Webhook]:
        row = self._fetchone("SELECT * FROM webhooks WHERE id = ?", (webhook_id,))
        return _row_to_webhook(row) if row else None

    def list_webhooks(self, integration_id: Optional[int] = None, status: Optional[str] = None) -> List[Webhook]:
        query = "SELECT * FROM webhooks WHERE 1=1"
        params: List[Any] = []
        if integration_id is not None:
            query += " AND integration_id = ?"
            params.append(integration_id)
        if status:
            query += " AND status = ?"
            params.append(status)
        query += " ORDER BY created_at DESC, id DESC"
        return [_row_to_webhook(row) for row in self._fetchall(query, tuple(params))]

    def subscribers(self, event_type: str, integration_id: Optional[int] = None) -> List[Webhook]:
        """Active webhooks listening for event_type (or "*"), oldest first."""
        query = "SELECT * FROM webhooks WHERE status = 'active'"
        params: List[Any] = []
        if integration_id is not None:
            query += " AND integration_id = ?"
            params.append(integration_id)
        query += " ORDER BY id"
        webhooks = [_row_to_webhook(row) for row in self._fetchall(query, tuple(params))]
        return [w for w in webhooks if w.subscribes_to(event_type)]

    # =========================================================================
    # Deliveries
    # =========================================================================

    def insert_delivery(self, webhook_id: int, event_type: str, payload: str, now: str) -> int:
        with transaction(self.db_path) as conn:
            cursor = conn.execute("""
                INSERT INTO webhook_deliveries (webhook_id, event_type, payload, status, attempt_count, created_at)
                VALUES (?, ?, ?, 'scheduled', 0, ?)
            """, (webhook_id, event_type, payload, now))
            return cursor.lastrowid

    def get_delivery(self, delivery_id: int) -> Optional[WebhookDelivery]:
        row = self._fetchone("SELECT * FROM webhook_deliveries WHERE id = ?", (delivery_id,))
        return _row_to_delivery(row) if row else None

    def claim_delivery(self, delivery_id: int, worker_id: str, now: str, expires_at: str) -> bool:
        """Take the lease on an open, due delivery.

        False if another worker holds it or its next_retry_at is still ahead.
        """
        return self._execute("""
            UPDATE webhook_deliveries
            SET claimed_by = ?, claim_expires_at = ?
            WHERE id = ?
              AND status IN ('scheduled', 'retry_pending')
              AND (next_retry_at IS NULL OR next_retry_at <= ?)
              AND (claimed_by IS NULL OR claim_expires_at <= ? OR claimed_by = ?)
        """, (worker_id, expires_at, delivery_id, now, now, worker_id)) == 1

    def release_claim(self, delivery_id: int, worker_id: str) -> None:
        self._execute("""
            UPDATE webhook_deliveries
            SET claimed_by = NULL, claim_expires_at = NULL
            WHERE id = ? AND claimed_by = ?
        """, (delivery_id, worker_id))

    def start_attempt(self, delivery_id: int, worker_id: str, max_attempts: int) -> Optional[int]:
        """Increment attempt_count before sending. Returns the new count, or None
        if the lease was lost or the attempt budget is already spent."""
        with transaction(self.db_path) as conn:
            cursor = conn.execute("""
                UPDATE webhook_deliveries
                SET attempt_count = attempt_count + 1
                WHERE id = ?
                  AND claimed_by = ?
                  AND status IN ('scheduled', 'retry_pending')
                  AND attempt_count < ?
            """, (delivery_id, worker_id, max_attempts))
            if cursor.rowcount != 1:
                return None
            row = conn.execute(
                "SELECT attempt_count FROM webhook_deliveries WHERE id = ?", (delivery_id,)
            ).fetchone()
            return row["attempt_count"]

    def mark_delivered(self, delivery_id: int, response_status: int, response_body: str, now: str) -> bool:
        return self._execute("""
            UPDATE webhook_deliveries
            SET status = 'delivered', response_status = ?, response_body = ?,
                delivered_at = ?, next_retry_at = NULL
            WHERE id = ? AND delivered_at IS NULL
        """, (response_status, response_body, now, delivery_id)) == 1

    def mark_failed(
        self,
        delivery_id: int,
        response_status: Optional[int],
        response_body: Optional[str],
        next_retry_at: Optional[str],
    ) -> bool:
        """Record a failed attempt: retry_pending when next_retry_at is given, else exhausted."""
        status = DeliveryStatus.RETRY_PENDING if next_retry_at else DeliveryStatus.EXHAUSTED
        return self._execute("""
            UPDATE webhook_deliveries
            SET status = ?, response_status = ?, response_body = ?, next_retry_at = ?
            WHERE id = ? AND delivered_at IS NULL
        """, (status.value, response_status, response_body, next_retry_at, delivery_id)) == 1

    def due_delivery_ids(self, now: str, limit: int) -> List[int]:
        """Open, unleased deliveries whose retry time has come, oldest first."""
        rows = self._fetchall("""
            SELECT id FROM webhook_deliveries
            WHERE status IN ('scheduled', 'retry_pending')
              AND (next_retry_at IS NULL OR next_retry_at <= ?)
              AND (claimed_by IS NULL OR claim_expires_at <= ?)
            ORDER BY created_at ASC, id ASC
            LIMIT ?
        """, (now, now, limit))
        return [row["id"] for row in rows]

    def count_due(self, now: str) -> int:
        row = self._fetchone("""
            SELECT COUNT(*) AS n FROM webhook_deliveries
            WHERE status IN ('scheduled', 'retry_pending')
              AND (next_retry_at IS NULL OR next_retry_at <= ?)
        """, (now,))
        return row["n"]

    def list_deliveries(self, webhook_id: int, limit: int = 50) -> List[WebhookDelivery]:
        rows = self._fetchall("""
            SELECT * FROM webhook_deliveries
            WHERE webhook_id = ?
            ORDER BY created_at DESC, id DESC
            LIMIT ?
        """, (webhook_id, limit))
        return [_row_to_delivery(row) for row in rows]

    def delete_finished_deliveries(self, created_before: str) -> int:
        return self._execute("""
            DELETE FROM webhook_deliveries
            WHERE status IN ('delivered', 'exhausted') AND created_at < ?
        """, (created_before,))
