"""Field mapping and value transformation for integrations."""

from transform.db import MappingStore, init_mapping_db
from transform.engine import TransformationEngine
from transform.models import MappingRule, RuleType, parse_rule

__all__ = [
    "MappingStore",
    "init_mapping_db",
    "TransformationEngine",
    "MappingRule",
    "RuleType",
    "parse_rule",
]
