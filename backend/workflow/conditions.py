"""Condition evaluation shared by entry criteria and decision steps.

A condition is ``{"field": "status", "operator": "equals", "value": "new"}``.
Evaluation fails closed: an unknown operator, a missing operand or a value
that cannot be compared makes the condition false, never raises.
"""

import logging
from typing import Any, Iterable, Optional

from core.constants import ConditionOperator, MatchType, OPERATOR_ALIASES

logger = logging.getLogger(__name__)

_MISSING = object()


class ConditionError(ValueError):
    """A condition could not be evaluated (bad operator or operand)."""


def resolve_field(data: dict, path: str, default: Any = None) -> Any:
    """Resolve a dot path (``client.address.city``) inside nested dicts."""
    if not path:
        return default
    if path in data:
        return data[path]
    current: Any = data
    for part in path.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return default
    return current


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _as_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).strip())
    except ValueError:
        return None


def _as_list(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        return list(value)
    return [part.strip() for part in str(value).split(",") if part.strip()]


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, dict, tuple, set)):
        return len(value) == 0
    return False


def _compare(left: Any, right: Any) -> int:
    """Three-way compare, numerically when both sides are numbers.

    ISO dates compare correctly as text, so that is the fallback.
    """
    if left is None or right is None or _is_empty(left) or _is_empty(right):
        raise ConditionError("cannot order an empty value")
    lnum, rnum = _as_number(left), _as_number(right)
    if lnum is not None and rnum is not None:
        return (lnum > rnum) - (lnum < rnum)
    if (lnum is None) != (rnum is None):
        raise ConditionError(f"cannot compare {left!r} with {right!r}")
    ltext, rtext = _as_text(left), _as_text(right)
    return (ltext > rtext) - (ltext < rtext)


def normalize_operator(operator: Optional[str]) -> str:
    op = (operator or "").strip().lower()
    return OPERATOR_ALIASES.get(op, op)


def apply_operator(operator: str, actual: Any, expected: Any = None) -> bool:
    """Apply one operator. Raises ConditionError when it cannot be evaluated."""
    op = normalize_operator(operator)

    if op == ConditionOperator.EQUALS:
        return _as_text(actual) == _as_text(expected)
    if op == ConditionOperator.NOT_EQUALS:
        return _as_text(actual) != _as_text(expected)
    if op == ConditionOperator.CONTAINS:
        if isinstance(actual, (list, tuple, set)):
            return _as_text(expected) in [_as_text(v) for v in actual]
        return _as_text(expected) in _as_text(actual)
    if op == ConditionOperator.NOT_CONTAINS:
        if isinstance(actual, (list, tuple, set)):
            return _as_text(expected) not in [_as_text(v) for v in actual]
        return _as_text(expected) not in _as_text(actual)
    if op == ConditionOperator.STARTS_WITH:
        return _as_text(actual).startswith(_as_text(expected))
    if op == ConditionOperator.ENDS_WITH:
        return _as_text(actual).endswith(_as_text(expected))
    if op == ConditionOperator.GREATER_THAN:
        return _compare(actual, expected) > 0
    if op == ConditionOperator.GREATER_THAN_OR_EQUAL:
        return _compare(actual, expected) >= 0
    if op == ConditionOperator.LESS_THAN:
        return _compare(actual, expected) < 0
    if op == ConditionOperator.LESS_THAN_OR_EQUAL:
        return _compare(actual, expected) <= 0
    if op == ConditionOperator.IS_NULL:
        return actual is None
    if op == ConditionOperator.IS_NOT_NULL:
        return actual is not None
    if op == ConditionOperator.IS_EMPTY:
        return _is_empty(actual)
    if op == ConditionOperator.IS_NOT_EMPTY:
        return not _is_empty(actual)
    if op == ConditionOperator.IN:
        return _as_text(actual) in [_as_text(v) for v in _as_list(expected)]
    if op == ConditionOperator.NOT_IN:
        return _as_text(actual) not in [_as_text(v) for v in _as_list(expected)]
    if op == ConditionOperator.BETWEEN:
        bounds = _as_list(expected)
        if len(bounds) != 2:
            raise ConditionError("between needs exactly two bounds")
        return _compare(actual, bounds[0]) >= 0 and _compare(actual, bounds[1]) <= 0

    raise ConditionError(f"unknown operator '{operator}'")


def evaluate_condition(condition: Any, data: dict) -> bool:
    """Evaluate a single ``{field, operator, value}`` condition against ``data``."""
    if not isinstance(condition, dict):
        logger.warning("Malformed condition ignored: %r", condition)
        return False
    field = condition.get("field")
    if not field:
        logger.warning("Condition without a field treated as non-matching: %r", condition)
        return False
    actual = resolve_field(data, field)
    try:
        return apply_operator(condition.get("operator", ""), actual, condition.get("value"))
    except ConditionError as e:
        logger.warning("Condition on '%s' treated as non-matching: %s", field, e)
        return False


def evaluate_criteria(criteria: Optional[dict], data: dict) -> bool:
    """Evaluate workflow entry criteria. Empty criteria always match."""
    if not criteria:
        return True
    conditions: Iterable = criteria.get("conditions") or []
    conditions = list(conditions)
    if not conditions:
        return True

    match_type = (criteria.get("match_type") or MatchType.ALL.value).lower()
    results = (evaluate_condition(c, data) for c in conditions)
    if match_type == MatchType.ANY:
        return any(results)
    if match_type != MatchType.ALL:
        logger.warning("Unknown match_type '%s', requiring all conditions", match_type)
    return all(results)


def values_differ(previous: dict, current: dict, field: str) -> bool:
    """True when ``field`` changed between two record snapshots."""
    before = resolve_field(previous or {}, field, _MISSING)
    after = resolve_field(current or {}, field, _MISSING)
    if before is _MISSING and after is _MISSING:
        return False
    if before is _MISSING or after is _MISSING:
        return True
    return _as_text(before) != _as_text(after) or (before is None) != (after is None)


def as_text(value: Any) -> str:
    """Public text normalisation used when matching trigger ``from``/``to`` values."""
    return _as_text(value)
