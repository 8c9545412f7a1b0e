"""
Condition Evaluator

Evaluates step skip conditions and routing rule conditions.

Comparison policy for equals/not_equals/in_array/contains on arrays:
    - operands are compared structurally (dicts key by key, lists item by item)
    - a boolean compared with a string matches only if the string is
      "true"/"false" (case-insensitive) with the same truth value
    - a number compared with a string matches if the string parses to the same number
    - booleans never equal numbers
Stored chains may hold routing values as the strings "true"/"false"; this
policy makes them behave like the booleans they were meant to be.
"""

import logging
import math
from typing import Any, Optional, Union

from .context import ExecutionContext
from .models import ConditionOperator, LogicCondition, LogicGroup, StepCondition
from .variables import VariableResolver, get_value_by_path, split_path, to_text

logger = logging.getLogger(__name__)


def coerce_bool(value: str) -> Optional[bool]:
    """Map "true"/"false" strings to booleans, None for anything else"""
    lowered = value.strip().lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    return None


def to_number(value: Any) -> Optional[float]:
    """Numeric value of an int/float or numeric string, None otherwise"""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str) and value.strip():
        try:
            number = float(value.strip())
        except ValueError:
            return None
        return None if math.isnan(number) else number
    return None


def values_equal(left: Any, right: Any) -> bool:
    """Structural equality with the string/boolean and string/number coercions"""
    if isinstance(left, bool) or isinstance(right, bool):
        if isinstance(left, bool) and isinstance(right, bool):
            return left is right
        if isinstance(left, bool) and isinstance(right, str):
            return coerce_bool(right) is left
        if isinstance(right, bool) and isinstance(left, str):
            return coerce_bool(left) is right
        return False

    if isinstance(left, str) and isinstance(right, (int, float)):
        return to_number(left) == float(right)
    if isinstance(right, str) and isinstance(left, (int, float)):
        return to_number(right) == float(left)

    if isinstance(left, dict) and isinstance(right, dict):
        return left.keys() == right.keys() and all(values_equal(left[k], right[k]) for k in left)

    if isinstance(left, list) and isinstance(right, list):
        return len(left) == len(right) and all(values_equal(a, b) for a, b in zip(left, right))

    return left == right


def compare(actual: Any, operator: ConditionOperator, expected: Any) -> bool:
    """
    Apply an operator to a resolved field value

    Args:
        actual: Value found at the condition's field path (None if missing)
        operator: Comparison operator
        expected: Comparison value

    Returns:
        Result of the comparison
    """
    operator = ConditionOperator(operator)

    if operator == ConditionOperator.EQUALS:
        return values_equal(actual, expected)

    if operator == ConditionOperator.NOT_EQUALS:
        return not values_equal(actual, expected)

    if operator in (ConditionOperator.CONTAINS, ConditionOperator.NOT_CONTAINS):
        if isinstance(actual, str):
            found = to_text(expected) in actual
        elif isinstance(actual, list):
            found = any(values_equal(item, expected) for item in actual)
        elif isinstance(actual, dict):
            found = to_text(expected) in actual
        else:
            # Nothing to search in
            return operator == ConditionOperator.NOT_CONTAINS
        return found if operator == ConditionOperator.CONTAINS else not found

    if operator in (
        ConditionOperator.GREATER_THAN,
        ConditionOperator.LESS_THAN,
        ConditionOperator.GREATER_OR_EQUAL,
        ConditionOperator.LESS_OR_EQUAL,
    ):
        left, right = to_number(actual), to_number(expected)
        if left is None or right is None:
            return False
        if operator == ConditionOperator.GREATER_THAN:
            return left > right
        if operator == ConditionOperator.LESS_THAN:
            return left < right
        if operator == ConditionOperator.GREATER_OR_EQUAL:
            return left >= right
        return left <= right

    if operator == ConditionOperator.EXISTS:
        return actual is not None

    if operator == ConditionOperator.NOT_EXISTS:
        return actual is None

    if operator == ConditionOperator.IN_ARRAY:
        if not isinstance(expected, list):
            return False
        return any(values_equal(actual, item) for item in expected)

    logger.warning(f"Unknown condition operator: {operator}")
    return False


class ConditionEvaluator:
    """Evaluates conditions against an ExecutionContext"""

    def __init__(self, resolver: Optional[VariableResolver] = None):
        self.resolver = resolver or VariableResolver()

    def evaluate(
        self,
        condition: Union[LogicCondition, LogicGroup],
        context: ExecutionContext,
    ) -> bool:
        """
        Evaluate a comparison or an AND/OR group

        Args:
            condition: Step condition, routing comparison or logic group
            context: Execution context of the run

        Returns:
            True if the condition holds (disabled step conditions always hold)

        Example:
            >>> cond = LogicCondition(field="step_1.result.success", operator="equals", value=True)
            >>> evaluator.evaluate(cond, ctx)
            True
        """
        if isinstance(condition, LogicGroup):
            results = (self.evaluate(c, context) for c in condition.conditions)
            return all(results) if condition.logic == "AND" else any(results)

        if isinstance(condition, StepCondition) and not condition.enabled:
            return True

        actual = self.resolve_field(condition, context)
        expected = self.resolver.resolve(condition.value, context)
        result = compare(actual, condition.operator, expected)

        logger.debug(
            f"Condition {condition.source_step or ''}:{condition.field} "
            f"{condition.operator.value} {expected!r} -> actual {actual!r} -> {result}"
        )
        return result

    def resolve_field(self, condition: LogicCondition, context: ExecutionContext) -> Any:
        """Value at the condition's field path (None if the source or path is missing)"""
        source = condition.source_step
        if not source:
            return self.resolver.lookup(condition.field, context)

        root = context.input if source == "input" else context.namespace(source)
        if root is None:
            return None

        segments = split_path(condition.field)
        # Tolerate fields written with the source step as prefix
        if segments and segments[0] == source:
            segments = segments[1:]
        return get_value_by_path(root, segments)

    def source_resolved(self, condition: LogicCondition, context: ExecutionContext) -> bool:
        """
        Whether the condition's source already has a value in the context

        The source is ``source_step``, or the first segment of a namespaced
        field ("step_1.result.ok"). input/env/context always count as resolved.
        """
        source = condition.source_step
        if not source:
            segments = split_path(condition.field)
            source = segments[0] if segments else ""
        return isinstance(source, str) and bool(source) and context.has_namespace(source)
