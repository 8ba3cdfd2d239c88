"""
Integration Database

Creates and manages:
- integrations: external system connections (config encrypted at rest when a key is set)
- sync_jobs: sync history, one row per run

Sync job transitions are single-row UPDATEs guarded by the expected prior
status, so a job can only move forward.
"""

import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from core.database import get_db_connection, transaction
from core.errors import InvalidState
from core.security.encryption import ConfigCodec
from integrations.models import (
    Integration,
    IntegrationStatus,
    IntegrationType,
    SyncJob,
    SyncJobStatus,
)


def init_integrations_db(db_path: Union[str, Path]) -> None:
    """
    Initialize the integration tables.

    Creates:
    - integrations
    - sync_jobs, with a partial unique index allowing one unfinished job
      per (integration_id, job_type)
    """
    with transaction(db_path) as conn:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS integrations (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                type TEXT NOT NULL CHECK(type IN ('import', 'export', 'sync', 'webhook')),
                status TEXT NOT NULL DEFAULT 'inactive' CHECK(status IN ('active', 'inactive', 'error')),
                config TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_integrations_type_status
            ON integrations(type, status)
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS sync_jobs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                integration_id INTEGER NOT NULL,
                job_type TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending'
                    CHECK(status IN ('pending', 'running', 'completed', 'failed')),
                progress INTEGER NOT NULL DEFAULT 0,
                total_records INTEGER NOT NULL DEFAULT 0,
                started_at TEXT NOT NULL,
                completed_at TEXT,
                error_log TEXT,
                FOREIGN KEY (integration_id) REFERENCES integrations(id) ON DELETE CASCADE
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_sync_jobs_integration
            ON sync_jobs(integration_id, started_at)
        """)
        conn.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS idx_sync_jobs_active
            ON sync_jobs(integration_id, job_type)
            WHERE status IN ('pending', 'running')
        """)


def _row_to_job(row) -> SyncJob:
    return SyncJob(
        id=row["id"],
        integration_id=row["integration_id"],
        job_type=row["job_type"],
        status=SyncJobStatus(row["status"]),
        progress=row["progress"],
        total_records=row["total_records"],
        started_at=row["started_at"],
        completed_at=row["completed_at"],
        error_log=row["error_log"],
    )


class IntegrationStore:
    """SQLite persistence for integrations and their sync jobs."""

    def __init__(self, db_path: Union[str, Path], codec: Optional[ConfigCodec] = None):
        self.db_path = db_path
        self.codec = codec or ConfigCodec()

    def _row_to_integration(self, row) -> Integration:
        return Integration(
            id=row["id"],
            name=row["name"],
            type=IntegrationType(row["type"]),
            status=IntegrationStatus(row["status"]),
            config=self.codec.loads(row["config"], context=row["type"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    # =========================================================================
    # Integrations
    # =========================================================================

    def insert(self, integration: Integration, now: str) -> int:
        with transaction(self.db_path) as conn:
            cursor = conn.execute("""
                INSERT INTO integrations (name, type, status, config, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (
                integration.name,
                integration.type.value,
                integration.status.value,
                self.codec.dumps(integration.config, context=integration.type.value),
                now,
                now,
            ))
            return cursor.lastrowid

    def update(self, integration: Integration, now: str) -> bool:
        with transaction(self.db_path) as conn:
            cursor = conn.execute("""
                UPDATE integrations
                SET name = ?, type = ?, status = ?, config = ?, updated_at = ?
                WHERE id = ?
            """, (
                integration.name,
                integration.type.value,
                integration.status.value,
                self.codec.dumps(integration.config, context=integration.type.value),
                now,
                integration.id,
            ))
            return cursor.rowcount > 0

    def delete(self, integration_id: int) -> bool:
        """Delete an integration; FK cascades remove its jobs, rules and webhooks."""
        with transaction(self.db_path) as conn:
            cursor = conn.execute("DELETE FROM integrations WHERE id = ?", (integration_id,))
            return cursor.rowcount > 0

    def get(self, integration_id: int) -> Optional[Integration]:
        conn = get_db_connection(self.db_path)
        try:
            row = conn.execute("SELECT * FROM integrations WHERE id = ?", (integration_id,)).fetchone()
        finally:
            conn.close()
        return self._row_to_integration(row) if row else None

    def list(self, integration_type: Optional[str] = None, status: Optional[str] = None) -> List[Integration]:
        query = "SELECT * FROM integrations WHERE 1=1"
        params: List[Any] = []
        if integration_type:
            query += " AND type = ?"
            params.append(integration_type)
        if status:
            query += " AND status = ?"
            params.append(status)
        query += " ORDER BY name, id"

        conn = get_db_connection(self.db_path)
        try:
            rows = conn.execute(query, params).fetchall()
        finally:
            conn.close()
        return [self._row_to_integration(row) for row in rows]

    # =========================================================================
    # Sync Jobs
    # =========================================================================

    def create_job(self, integration_id: int, job_type: str, now: str) -> int:
        """Insert a pending job.

        Raises:
            InvalidState: an unfinished job of this type already exists
        """
        try:
            with transaction(self.db_path) as conn:
                cursor = conn.execute("""
                    INSERT INTO sync_jobs (integration_id, job_type, status, progress, total_records, started_at)
                    VALUES (?, ?, 'pending', 0, 0, ?)
                """, (integration_id, job_type, now))
                return cursor.lastrowid
        except sqlite3.IntegrityError as e:
            if "UNIQUE" in str(e).upper():
                raise InvalidState(
                    f"A '{job_type}' sync job is already pending or running for integration {integration_id}",
                    {"integration_id": integration_id, "job_type": job_type},
                )
            raise

    def _transition(self, job_id: int, sql: str, params: tuple) -> bool:
        with transaction(self.db_path) as conn:
            cursor = conn.execute(sql, params + (job_id,))
            return cursor.rowcount == 1

    def mark_job_running(self, job_id: int) -> bool:
        return self._transition(
            job_id,
            "UPDATE sync_jobs SET status = 'running' WHERE status = 'pending' AND id = ?",
            (),
        )

    def complete_job(self, job_id: int, total_records: int, now: str) -> bool:
        return self._transition(
            job_id,
            """UPDATE sync_jobs
               SET status = 'completed', progress = 100, total_records = ?, completed_at = ?
               WHERE status = 'running' AND id = ?""",
            (total_records, now),
        )

    def fail_job(self, job_id: int, error_log: str, now: str) -> bool:
        return self._transition(
            job_id,
            """UPDATE sync_jobs
               SET status = 'failed', error_log = ?, completed_at = ?
               WHERE status IN ('pending', 'running') AND id = ?""",
            (error_log, now),
        )

    def get_job(self, job_id: int) -> Optional[SyncJob]:
        conn = get_db_connection(self.db_path)
        try:
            row = conn.execute("SELECT * FROM sync_jobs WHERE id = ?", (job_id,)).fetchone()
        finally:
            conn.close()
        return _row_to_job(row) if row else None

    def list_jobs(self, integration_id: int, limit: int = 50) -> List[SyncJob]:
        """Most recent jobs first."""
        conn = get_db_connection(self.db_path)
        try:
            rows = conn.execute("""
                SELECT * FROM sync_jobs
                WHERE integration_id = ?
                ORDER BY started_at DESC, id DESC
                LIMIT ?
            """, (integration_id, limit)).fetchall()
        finally:
            conn.close()
        return [_row_to_job(row) for row in rows]

    def fail_unfinished_jobs(self, started_before: str, error_log: str, now: str) -> List[int]:
        """Mark pending/running jobs started before the cutoff as failed."""
        with transaction(self.db_path) as conn:
            rows = conn.execute("""
                SELECT id FROM sync_jobs
                WHERE status IN ('pending', 'running') AND started_at < ?
            """, (started_before,)).fetchall()
            job_ids = [row["id"] for row in rows]
            for job_id in job_ids:
                conn.execute("""
                    UPDATE sync_jobs
                    SET status = 'failed', error_log = ?, completed_at = ?
                    WHERE status IN ('pending', 'running') AND id = ?
                """, (error_log, now, job_id))
            return job_ids

    def delete_finished_jobs(self, completed_before: str) -> int:
        with transaction(self.db_path) as conn:
            cursor = conn.execute("""
                DELETE FROM sync_jobs
                WHERE status IN ('completed', 'failed') AND completed_at < ?
            """, (completed_before,))
            return cursor.rowcount
