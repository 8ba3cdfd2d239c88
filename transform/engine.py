"""
Transformation Engine

Applies mapping rules to values and whole records.

Failure semantics: an unknown rule tag, a malformed rule or an evaluation
error is logged as a warning and the field keeps its original value. A bad
rule never aborts the rest of the record.

Usage:
    engine = TransformationEngine(MappingStore(db_path))
    engine.apply("42", {"type": "cast", "target_type": "int"})   # 42
    engine.transform_record({"sku": "A-1"}, integration_id=3)
"""

from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError as PydanticValidationError

from core.errors import TransformationWarning
from core.observability.logging import get_logger
from transform.db import MappingStore
from transform.models import MappingRule, parse_rule
from transform.rules import apply_rule


logger = get_logger(__name__)


class TransformationEngine:
    """Evaluates transformation rules against values and records."""

    def __init__(self, store: Optional[MappingStore] = None):
        self.store = store

    def apply(self, value: Any, rule: Any, field: Optional[str] = None) -> Any:
        """Apply one rule. Returns the original value if the rule cannot be applied."""
        if rule is None:
            return value
        try:
            parsed = parse_rule(rule)
        except PydanticValidationError as e:
            rule_type = rule.get("type") if isinstance(rule, dict) else type(rule).__name__
            logger.warning(
                f"Invalid transformation rule '{rule_type}', value left unchanged",
                extra_fields={"field": field, "errors": e.error_count()},
            )
            return value

        try:
            return apply_rule(value, parsed)
        except TransformationWarning as e:
            logger.warning(
                f"Transformation failed: {e}",
                extra_fields={"field": field, "rule_type": parsed.type},
            )
            return value
        except Exception as e:
            logger.warning(
                f"Transformation raised {type(e).__name__}: {e}",
                extra_fields={"field": field, "rule_type": parsed.type},
                exc_info=True,
            )
            return value

    def apply_rules(self, record: Dict[str, Any], rules: Iterable[MappingRule]) -> Dict[str, Any]:
        """Transform a record with an explicit rule set.

        Keys with a rule are transformed and renamed to the rule's target
        field; other keys pass through. When two keys land on the same target
        the later one in the record wins.
        """
        by_source = {rule.source_field: rule for rule in rules}
        result: Dict[str, Any] = {}
        for key, value in record.items():
            rule = by_source.get(key)
            if rule is None:
                result[key] = value
                continue
            result[rule.target_field] = self.apply(value, rule.transformation_rule, field=key)
        return result

    def transform_record(self, record: Dict[str, Any], integration_id: int) -> Dict[str, Any]:
        """Transform a record with the rules stored for an integration."""
        if self.store is None:
            raise RuntimeError("TransformationEngine has no MappingStore")
        return self.apply_rules(record, self.store.list(integration_id))

    def transform_records(self, records: Iterable[Dict[str, Any]], integration_id: int) -> List[Dict[str, Any]]:
        """Transform many records, loading the rule set once."""
        if self.store is None:
            raise RuntimeError("TransformationEngine has no MappingStore")
        rules = self.store.list(integration_id)
        return [self.apply_rules(record, rules) for record in records]
