"""
Transformation Rule Models

A mapping rule is a closed tagged variant keyed by `type`:

    {"type": "cast", "target_type": "int"}
    {"type": "format", "format": "%08.2f"}
    {"type": "lookup", "lookup_table": {"A": "Active"}}
    {"type": "calculate", "formula": "{value} * 1.2"}
    {"type": "concatenate", "parts": ["-", {"type": "field", "value": "X"}], "separator": ""}
    {"type": "extract", "pattern": "(\\d+)"}
    {"type": "default", "default_value": "N/A"}
    {"type": "conditional", "conditions": [{"condition": {"operator": ">", "value": 100}, "result": "high"}]}

Rules are stored as JSON on MappingRule rows and parsed with `parse_rule`.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator


class RuleType(str, Enum):
    CAST = "cast"
    FORMAT = "format"
    LOOKUP = "lookup"
    CALCULATE = "calculate"
    CONCATENATE = "concatenate"
    EXTRACT = "extract"
    DEFAULT = "default"
    CONDITIONAL = "conditional"


class CastTarget(str, Enum):
    STRING = "string"
    INT = "int"
    FLOAT = "float"
    BOOL = "bool"
    ARRAY = "array"
    JSON = "json"


CAST_ALIASES = {
    "integer": CastTarget.INT,
    "double": CastTarget.FLOAT,
    "boolean": CastTarget.BOOL,
}


class ConditionOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    GREATER_EQUAL = "greater_equal"
    LESS_THAN = "less_than"
    LESS_EQUAL = "less_equal"
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    MATCHES = "matches"
    IN = "in"
    NOT_IN = "not_in"
    EMPTY = "empty"
    NOT_EMPTY = "not_empty"


OPERATOR_ALIASES = {
    "==": ConditionOperator.EQUALS,
    "!=": ConditionOperator.NOT_EQUALS,
    ">": ConditionOperator.GREATER_THAN,
    ">=": ConditionOperator.GREATER_EQUAL,
    "<": ConditionOperator.LESS_THAN,
    "<=": ConditionOperator.LESS_EQUAL,
}


# =============================================================================
# Rule Variants
# =============================================================================

class _Rule(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", use_enum_values=False)


class CastRule(_Rule):
    type: Literal["cast"] = "cast"
    target_type: CastTarget

    @field_validator("target_type", mode="before")
    @classmethod
    def _normalize_target(cls, v):
        if isinstance(v, str):
            return CAST_ALIASES.get(v.lower(), v.lower())
        return v


class FormatRule(_Rule):
    type: Literal["format"] = "format"
    format: str


class LookupRule(_Rule):
    type: Literal["lookup"] = "lookup"
    lookup_table: Dict[str, Any]


class CalculateRule(_Rule):
    type: Literal["calculate"] = "calculate"
    formula: str


class FieldPart(_Rule):
    """A `{"type": "field", "value": ...}` part; contributes its literal value."""
    type: Literal["field"] = "field"
    value: Any = ""


class ConcatenateRule(_Rule):
    type: Literal["concatenate"] = "concatenate"
    parts: List[Union[FieldPart, str, int, float]] = Field(default_factory=list)
    separator: str = ""


class ExtractRule(_Rule):
    type: Literal["extract"] = "extract"
    pattern: str


class DefaultRule(_Rule):
    type: Literal["default"] = "default"
    default_value: Any = None


class Condition(_Rule):
    operator: ConditionOperator
    value: Any = None

    @field_validator("operator", mode="before")
    @classmethod
    def _normalize_operator(cls, v):
        if isinstance(v, str):
            return OPERATOR_ALIASES.get(v, v)
        return v


class ConditionalBranch(_Rule):
    condition: Condition
    result: Any = None


class ConditionalRule(_Rule):
    type: Literal["conditional"] = "conditional"
    conditions: List[ConditionalBranch] = Field(default_factory=list)


TransformationRule = Annotated[
    Union[
        CastRule,
        FormatRule,
        LookupRule,
        CalculateRule,
        ConcatenateRule,
        ExtractRule,
        DefaultRule,
        ConditionalRule,
    ],
    Field(discriminator="type"),
]

_rule_adapter = TypeAdapter(TransformationRule)


def parse_rule(data: Union[Dict[str, Any], BaseModel]) -> TransformationRule:
    """Parse a stored rule dict into its typed variant.

    Raises:
        pydantic.ValidationError: unknown `type` tag or missing/invalid fields
    """
    if isinstance(data, BaseModel):
        return data
    return _rule_adapter.validate_python(data)


def rule_to_dict(rule: Any) -> Dict[str, Any]:
    return rule.model_dump(mode="json")


# =============================================================================
# Mapping Rule (persisted)
# =============================================================================

@dataclass
class MappingRule:
    """
    A per-integration field mapping.

    Attributes:
        integration_id: Owning integration
        source_field: Key in the incoming record
        target_field: Key in the outgoing record
        transformation_rule: Rule dict, or None for a plain rename
        id: Database ID
    """
    integration_id: int
    source_field: str
    target_field: str
    transformation_rule: Optional[Dict[str, Any]] = None
    id: Optional[int] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "integration_id": self.integration_id,
            "source_field": self.source_field,
            "target_field": self.target_field,
            "transformation_rule": self.transformation_rule,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
