"""
Mapping Rule Storage

Table:
- mapping_rules: integration_id + source_field → target_field + transformation_rule

Rows cascade away with their integration (FK on integrations.id).
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from core.database import get_db_connection, to_iso, transaction, utcnow
from core.errors import NotFound, ValidationError
from transform.models import MappingRule, parse_rule, rule_to_dict


def init_mapping_db(db_path: Union[str, Path]) -> None:
    """Create the mapping_rules table if it does not exist.

    The integrations table must already exist for the foreign key.
    """
    with transaction(db_path) as conn:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS mapping_rules (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                integration_id INTEGER NOT NULL,
                source_field TEXT NOT NULL,
                target_field TEXT NOT NULL,
                transformation_rule TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                FOREIGN KEY (integration_id) REFERENCES integrations(id) ON DELETE CASCADE,
                UNIQUE(integration_id, source_field)
            )
        """)


def _row_to_rule(row) -> MappingRule:
    return MappingRule(
        id=row["id"],
        integration_id=row["integration_id"],
        source_field=row["source_field"],
        target_field=row["target_field"],
        transformation_rule=json.loads(row["transformation_rule"]) if row["transformation_rule"] else None,
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class MappingStore:
    """Persists per-integration mapping rules."""

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = db_path

    def save(
        self,
        integration_id: int,
        source_field: str,
        target_field: str,
        transformation_rule: Optional[Dict[str, Any]] = None,
    ) -> MappingRule:
        """Insert or replace the rule for (integration_id, source_field).

        The rule is validated here so bad rules are rejected when saved rather
        than silently skipped on every record later.
        """
        if not source_field or not str(source_field).strip():
            raise ValidationError("source_field is required")
        if not target_field or not str(target_field).strip():
            raise ValidationError("target_field is required")

        rule_json = None
        if transformation_rule is not None:
            try:
                rule_json = json.dumps(rule_to_dict(parse_rule(transformation_rule)))
            except PydanticValidationError as e:
                raise ValidationError(
                    f"Invalid transformation rule for {source_field}",
                    {"errors": e.errors(include_url=False, include_context=False)},
                )

        now = to_iso(utcnow())
        with transaction(self.db_path) as conn:
            exists = conn.execute(
                "SELECT 1 FROM integrations WHERE id = ?", (integration_id,)
            ).fetchone()
            if not exists:
                raise NotFound("Integration", integration_id)
            conn.execute("""
                INSERT INTO mapping_rules
                    (integration_id, source_field, target_field, transformation_rule, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(integration_id, source_field) DO UPDATE SET
                    target_field = excluded.target_field,
                    transformation_rule = excluded.transformation_rule,
                    updated_at = excluded.updated_at
            """, (integration_id, source_field, target_field, rule_json, now, now))

        return self.get(integration_id, source_field)

    def get(self, integration_id: int, source_field: str) -> MappingRule:
        conn = get_db_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT * FROM mapping_rules WHERE integration_id = ? AND source_field = ?",
                (integration_id, source_field),
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            raise NotFound("MappingRule", f"{integration_id}/{source_field}")
        return _row_to_rule(row)

    def delete(self, integration_id: int, source_field: str) -> bool:
        """Delete one rule. Returns False if there was nothing to delete."""
        with transaction(self.db_path) as conn:
            cursor = conn.execute(
                "DELETE FROM mapping_rules WHERE integration_id = ? AND source_field = ?",
                (integration_id, source_field),
            )
            return cursor.rowcount > 0

    def list(self, integration_id: int) -> List[MappingRule]:
        """Rules for an integration, in insertion order."""
        conn = get_db_connection(self.db_path)
        try:
            rows = conn.execute(
                "SELECT * FROM mapping_rules WHERE integration_id = ? ORDER BY id",
                (integration_id,),
            ).fetchall()
        finally:
            conn.close()
        return [_row_to_rule(row) for row in rows]
