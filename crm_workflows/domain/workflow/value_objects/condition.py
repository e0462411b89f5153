import logging
import re
from datetime import date, datetime, timezone
from typing import Any, Iterable

from crm_workflows.domain.workflow.exceptions import (
    EmptyConditionsError,
    InvalidConditionError,
    UnknownOperatorError,
)
from crm_workflows.domain.workflow.value_objects.nodes import Condition, ConditionOperator
from crm_workflows.domain.workflow.value_objects.template import VariableResolver

logger = logging.getLogger(__name__)


def _is_absent(value: Any) -> bool:
    return value is None


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
        # float() accepts "nan"/"inf"; treat them as text
        if number != number or number in (float("inf"), float("-inf")):
            return None
        return number
    return None


def _as_datetime(value: Any) -> datetime | None:
    if hasattr(value, "to_datetime") and callable(value.to_datetime):
        value = value.to_datetime()
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    return None


def _parse_iso(value: Any) -> datetime | None:
    if not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _sign(a, b) -> int:
    if a < b:
        return -1
    if a > b:
        return 1
    return 0


def compare_values(a: Any, b: Any) -> int:
    """
    Three-way comparison with loose typing.

    Order of attempts: absent values, numbers (numeric strings and booleans
    included), dates, booleans, then case-insensitive text.
    """
    if _is_absent(a):
        return 0 if _is_absent(b) else -1
    if _is_absent(b):
        return 1

    num_a, num_b = _as_number(a), _as_number(b)
    if num_a is not None and num_b is not None:
        return _sign(num_a, num_b)

    date_a, date_b = _as_datetime(a), _as_datetime(b)
    if date_a is not None or date_b is not None:
        date_a = date_a or _parse_iso(a)
        date_b = date_b or _parse_iso(b)
        if date_a is not None and date_b is not None:
            return _sign(date_a, date_b)

    if isinstance(a, bool) and isinstance(b, bool):
        return _sign(a, b)

    return _sign(_text(a).lower(), _text(b).lower())


def _text(value: Any) -> str:
    if value is None:
        return ""
    return VariableResolver.stringify(value)


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or (isinstance(value, (list, tuple)) and len(value) == 0)


class ConditionEvaluator:
    """
    Evaluates condition-node tests against a target record and run context.

    Definition problems (unknown operator, missing field) raise; evaluation
    problems (bad regex, non-list operand for `in`) log a warning and evaluate
    to False.
    """

    @classmethod
    def evaluate(
        cls,
        conditions: Iterable[Condition],
        record: dict,
        context: dict,
        operator: ConditionOperator | str = ConditionOperator.AND,
    ) -> bool:
        conditions = list(conditions)
        if not conditions:
            raise EmptyConditionsError()

        results = [cls.evaluate_single(c, record, context) for c in conditions]

        mode = operator.value if isinstance(operator, ConditionOperator) else str(operator).lower()
        if mode == ConditionOperator.OR.value:
            return any(results)
        return all(results)

    @classmethod
    def evaluate_single(cls, condition: Condition, record: dict, context: dict) -> bool:
        if not condition.field or not condition.operator:
            raise InvalidConditionError("missing field or operator")

        handler = _OPERATORS.get(condition.operator)
        if handler is None:
            raise UnknownOperatorError(condition.operator)

        actual = VariableResolver.get_field_value(condition.field, record, context)
        result = handler(actual, condition.value)
        logger.debug(f"Condition {condition.field} {condition.operator} {condition.value!r} -> {result}")
        return result


def _contains(actual, expected) -> bool:
    return _text(expected).lower() in _text(actual).lower()


def _in(actual, expected) -> bool:
    if not isinstance(expected, (list, tuple)):
        logger.warning(f"IN operator requires a list value, got {expected!r}")
        return False
    return any(compare_values(actual, item) == 0 for item in expected)


def _not_in(actual, expected) -> bool:
    if not isinstance(expected, (list, tuple)):
        logger.warning(f"NOT IN operator requires a list value, got {expected!r}")
        return False
    return not any(compare_values(actual, item) == 0 for item in expected)


def _matches_regex(actual, expected) -> bool:
    try:
        pattern = re.compile(_text(expected))
    except re.error as e:
        logger.warning(f"Invalid regex pattern {expected!r}: {e}")
        return False
    return pattern.search(_text(actual)) is not None


_OPERATORS = {
    "equals": lambda a, b: compare_values(a, b) == 0,
    "==": lambda a, b: compare_values(a, b) == 0,
    "===": lambda a, b: compare_values(a, b) == 0,
    "not_equals": lambda a, b: compare_values(a, b) != 0,
    "!=": lambda a, b: compare_values(a, b) != 0,
    "!==": lambda a, b: compare_values(a, b) != 0,
    "greater_than": lambda a, b: compare_values(a, b) > 0,
    ">": lambda a, b: compare_values(a, b) > 0,
    "greater_or_equal": lambda a, b: compare_values(a, b) >= 0,
    ">=": lambda a, b: compare_values(a, b) >= 0,
    "less_than": lambda a, b: compare_values(a, b) < 0,
    "<": lambda a, b: compare_values(a, b) < 0,
    "less_or_equal": lambda a, b: compare_values(a, b) <= 0,
    "<=": lambda a, b: compare_values(a, b) <= 0,
    "contains": _contains,
    "not_contains": lambda a, b: not _contains(a, b),
    "starts_with": lambda a, b: _text(a).lower().startswith(_text(b).lower()),
    "ends_with": lambda a, b: _text(a).lower().endswith(_text(b).lower()),
    "is_empty": lambda a, b: _is_empty(a),
    "is_null": lambda a, b: _is_empty(a),
    "is_not_empty": lambda a, b: not _is_empty(a),
    "is_not_null": lambda a, b: not _is_empty(a),
    "in": _in,
    "not_in": _not_in,
    "matches_regex": _matches_regex,
}

SUPPORTED_OPERATORS = frozenset(_OPERATORS)
