"""
Rule Evaluation

One apply function per rule variant. Each takes the field value and the
parsed rule and returns the new value, raising TransformationWarning (or a
subclass) when the rule cannot be evaluated. The engine decides what to do
with the warning.
"""

import json
import math
import re
from decimal import Decimal
from functools import lru_cache
from typing import Any, Callable, Dict, Optional, Tuple

from core.errors import TransformationWarning
from transform.expression import evaluate_formula
from transform.models import (
    CalculateRule,
    CastRule,
    CastTarget,
    ConcatenateRule,
    Condition,
    ConditionalRule,
    ConditionOperator,
    DefaultRule,
    ExtractRule,
    FieldPart,
    FormatRule,
    LookupRule,
    RuleType,
)


TRUE_STRINGS = {"1", "true", "on", "yes"}

# Delimited form: /pattern/flags
_DELIMITED_RE = re.compile(r"^/(?P<body>.*)/(?P<flags>[imsx]*)$", re.DOTALL)
_FLAG_MAP = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL, "x": re.VERBOSE}


def is_empty(value: Any) -> bool:
    """None, blank strings and empty collections are empty. Zero is not."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) == 0
    return False


@lru_cache(maxsize=256)
def compile_pattern(pattern: str) -> "re.Pattern":
    """Compile a regex, accepting both bare and `/.../flags` delimited forms."""
    match = _DELIMITED_RE.match(pattern)
    flags = 0
    if match:
        pattern = match.group("body")
        for flag in match.group("flags"):
            flags |= _FLAG_MAP[flag]
    try:
        return re.compile(pattern, flags)
    except re.error as e:
        raise TransformationWarning(f"Invalid pattern {pattern!r}: {e}")


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _as_number(value: Any) -> Optional[float]:
    """Finite float for numeric values and numeric strings, else None."""
    if isinstance(value, bool):
        return None
    try:
        if isinstance(value, (int, float, Decimal)):
            number = float(value)
        elif isinstance(value, str):
            number = float(value.strip())
        else:
            return None
    except (ValueError, OverflowError):
        return None
    return number if math.isfinite(number) else None


def _comparable(left: Any, right: Any) -> Tuple[Any, Any]:
    """Compare numerically when both sides read as numbers, else as text."""
    left_num, right_num = _as_number(left), _as_number(right)
    if left_num is not None and right_num is not None:
        return left_num, right_num
    return _as_text(left), _as_text(right)


def _equal(left: Any, right: Any) -> bool:
    left, right = _comparable(left, right)
    return left == right


# =============================================================================
# Cast
# =============================================================================

def _cast_int(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, (bool, int)):
        return int(value)
    number = _as_number(value)
    if number is None:
        raise TransformationWarning(f"Cannot cast {value!r} to int")
    try:
        return int(number)
    except (OverflowError, ValueError) as e:
        raise TransformationWarning(f"Cannot cast {value!r} to int: {e}")


def _cast_float(value: Any) -> float:
    if value is None:
        return 0.0
    if isinstance(value, bool):
        return float(value)
    number = _as_number(value)
    if number is None:
        raise TransformationWarning(f"Cannot cast {value!r} to float")
    return number


def _cast_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float, Decimal)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in TRUE_STRINGS
    return False


def _cast_json(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    try:
        return json.loads(value)
    except ValueError as e:
        raise TransformationWarning(f"Invalid JSON: {e}")


def apply_cast(value: Any, rule: CastRule) -> Any:
    target = rule.target_type
    if target == CastTarget.STRING:
        return _as_text(value)
    if target == CastTarget.INT:
        return _cast_int(value)
    if target == CastTarget.FLOAT:
        return _cast_float(value)
    if target == CastTarget.BOOL:
        return _cast_bool(value)
    if target == CastTarget.ARRAY:
        if isinstance(value, list):
            return value
        if isinstance(value, tuple):
            return list(value)
        return [value]
    return _cast_json(value)


# =============================================================================
# Other variants
# =============================================================================

def apply_format(value: Any, rule: FormatRule) -> str:
    try:
        return rule.format % (value,)
    except (TypeError, ValueError, OverflowError) as e:
        raise TransformationWarning(f"Cannot format {value!r} with {rule.format!r}: {e}")


def apply_lookup(value: Any, rule: LookupRule) -> Any:
    key = _as_text(value)
    if key in rule.lookup_table:
        return rule.lookup_table[key]
    return value


def apply_calculate(value: Any, rule: CalculateRule) -> Any:
    return evaluate_formula(rule.formula, value)


def apply_concatenate(value: Any, rule: ConcatenateRule) -> str:
    pieces = [_as_text(value)]
    for part in rule.parts:
        if isinstance(part, FieldPart):
            pieces.append(_as_text(part.value))
        else:
            pieces.append(_as_text(part))
    return rule.separator.join(pieces)


def apply_extract(value: Any, rule: ExtractRule) -> Any:
    if not isinstance(value, str):
        return value
    match = compile_pattern(rule.pattern).search(value)
    if not match:
        return value
    if match.re.groups >= 1 and match.group(1) is not None:
        return match.group(1)
    return match.group(0)


def apply_default(value: Any, rule: DefaultRule) -> Any:
    return rule.default_value if is_empty(value) else value


def evaluate_condition(value: Any, condition: Condition) -> bool:
    op = condition.operator
    expected = condition.value

    if op == ConditionOperator.EMPTY:
        return is_empty(value)
    if op == ConditionOperator.NOT_EMPTY:
        return not is_empty(value)
    if op in (ConditionOperator.IN, ConditionOperator.NOT_IN):
        options = expected if isinstance(expected, (list, tuple, set)) else [expected]
        found = any(_equal(value, option) for option in options)
        return found if op == ConditionOperator.IN else not found
    if op == ConditionOperator.CONTAINS:
        return _as_text(expected) in _as_text(value)
    if op == ConditionOperator.STARTS_WITH:
        return _as_text(value).startswith(_as_text(expected))
    if op == ConditionOperator.ENDS_WITH:
        return _as_text(value).endswith(_as_text(expected))
    if op == ConditionOperator.MATCHES:
        return compile_pattern(_as_text(expected)).search(_as_text(value)) is not None

    left, right = _comparable(value, expected)
    if op == ConditionOperator.EQUALS:
        return left == right
    if op == ConditionOperator.NOT_EQUALS:
        return left != right
    if op == ConditionOperator.GREATER_THAN:
        return left > right
    if op == ConditionOperator.GREATER_EQUAL:
        return left >= right
    if op == ConditionOperator.LESS_THAN:
        return left < right
    return left <= right


def apply_conditional(value: Any, rule: ConditionalRule) -> Any:
    for branch in rule.conditions:
        if evaluate_condition(value, branch.condition):
            return branch.result
    return value


RULE_HANDLERS: Dict[RuleType, Callable[[Any, Any], Any]] = {
    RuleType.CAST: apply_cast,
    RuleType.FORMAT: apply_format,
    RuleType.LOOKUP: apply_lookup,
    RuleType.CALCULATE: apply_calculate,
    RuleType.CONCATENATE: apply_concatenate,
    RuleType.EXTRACT: apply_extract,
    RuleType.DEFAULT: apply_default,
    RuleType.CONDITIONAL: apply_conditional,
}

assert set(RULE_HANDLERS) == set(RuleType), "every rule type needs a handler"


def apply_rule(value: Any, rule: Any) -> Any:
    """Dispatch a parsed rule to its handler."""
    return RULE_HANDLERS[RuleType(rule.type)](value, rule)
