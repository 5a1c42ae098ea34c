"""
Condition evaluation for config overrides.

``ConditionEvaluator.evaluate`` is total: it never raises. Missing context
properties, type mismatches, unparseable conditions and operands that
cannot be resolved all make the condition false.
"""

import math
import operator
from dataclasses import dataclass
from typing import Any, Callable, FrozenSet, Iterable, Mapping, Optional

from pydantic import ValidationError

from replane_shared.errors import ReferenceResolutionError
from replane_shared.logging import get_logger
from .bucketer import Bucketer, default_bucketer, normalize_bucket_input
from .models import (
    Config, EvaluationContext, LiteralValue, PropertyCondition, ReferenceValue,
    SegmentationCondition, parse_condition,
)


ConfigLookup = Callable[[str], Optional[Config]]


@dataclass(frozen=True)
class ResolutionScope:
    """Per-call state threaded through nested evaluation.

    ``trail`` holds the names of configs currently being resolved, used to
    detect reference cycles. ``lookup`` pins reference resolution to one
    store snapshot for the whole call.
    """
    environment_id: Optional[str] = None
    trail: FrozenSet[str] = frozenset()
    lookup: Optional[ConfigLookup] = None

    def enter(self, name: str) -> "ResolutionScope":
        return ResolutionScope(self.environment_id, self.trail | {name}, self.lookup)


ReferenceLookup = Callable[[ReferenceValue, EvaluationContext, ResolutionScope], Any]

_UNRESOLVED = object()

_NUMERIC_COMPARATORS = {
    "less_than": operator.lt,
    "less_than_or_equal": operator.le,
    "greater_than": operator.gt,
    "greater_than_or_equal": operator.ge,
}


def _is_scalar(value: Any) -> bool:
    return isinstance(value, (str, int, float, bool))


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _strict_equals(left: Any, right: Any) -> bool:
    # True == 1 in Python; booleans only ever equal booleans here
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    return left == right


def _parse_number(text: str) -> Any:
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        return text
    return text if math.isnan(number) else number


def cast_to_context_type(expected: Any, context_value: Any) -> Any:
    """Cast a condition operand towards the type of the context value.

    Enables loose matching such as ``"25"`` against ``25`` or ``"true"``
    against ``True``. Values that cannot be cast are returned unchanged.
    """
    if isinstance(context_value, bool):
        if isinstance(expected, str):
            if expected == "true":
                return True
            if expected == "false":
                return False
        if _is_number(expected):
            return expected != 0
        return expected

    if _is_number(context_value):
        if isinstance(expected, str):
            return _parse_number(expected)
        return expected

    if isinstance(context_value, str):
        if _is_number(expected) or isinstance(expected, bool):
            rendered = normalize_bucket_input(expected)
            return expected if rendered is None else rendered
        return expected

    return expected


class ConditionEvaluator:
    """Evaluates override conditions against an evaluation context."""

    def __init__(self, bucketer: Optional[Bucketer] = None,
                 reference_lookup: Optional[ReferenceLookup] = None):
        self.bucketer = bucketer or default_bucketer
        self.reference_lookup = reference_lookup
        self.logger = get_logger("sdk.rules.evaluator")

    def evaluate(self, condition: Any, context: Optional[EvaluationContext] = None,
                 scope: Optional[ResolutionScope] = None) -> bool:
        """Evaluate a single condition (model or raw dict)."""
        if isinstance(condition, Mapping):
            try:
                condition = parse_condition(condition)
            except ValidationError as e:
                self.logger.warning("Unparseable condition", error=str(e))
                return False

        return self._evaluate(condition, context or {}, scope or ResolutionScope())

    def evaluate_all(self, conditions: Iterable[Any], context: Optional[EvaluationContext] = None,
                     scope: Optional[ResolutionScope] = None) -> bool:
        """Implicit AND across an override's condition list."""
        for condition in conditions:
            if not self.evaluate(condition, context, scope):
                return False
        return True

    def _evaluate(self, condition: Any, context: EvaluationContext, scope: ResolutionScope) -> bool:
        op = condition.operator

        if op == "and":
            for nested in condition.conditions:
                if not self._evaluate(nested, context, scope):
                    return False
            return True

        if op == "or":
            for nested in condition.conditions:
                if self._evaluate(nested, context, scope):
                    return True
            return False

        if op == "not":
            return not self._evaluate(condition.condition, context, scope)

        try:
            if op == "segmentation":
                return self._evaluate_segmentation(condition, context)
            return self._evaluate_property(condition, context, scope)
        except Exception as e:
            self.logger.error(
                "Error evaluating condition",
                operator=op,
                property=getattr(condition, "property", None),
                error=str(e)
            )
            return False

    def _evaluate_segmentation(self, condition: SegmentationCondition, context: EvaluationContext) -> bool:
        bucket = self.bucketer.assign(condition.seed, context.get(condition.property))
        return condition.from_percentage <= bucket < condition.to_percentage

    def _evaluate_property(self, condition: PropertyCondition, context: EvaluationContext,
                           scope: ResolutionScope) -> bool:
        context_value = context.get(condition.property)
        if context_value is None or not _is_scalar(context_value):
            return False

        operand = self._resolve_operand(condition.value, context, scope)
        if operand is _UNRESOLVED:
            return False

        op = condition.operator

        if op == "equals":
            return _strict_equals(context_value, cast_to_context_type(operand, context_value))

        if op in ("in", "not_in"):
            if not isinstance(operand, (list, tuple)):
                return False
            found = any(
                _strict_equals(context_value, cast_to_context_type(item, context_value))
                for item in operand
            )
            return found if op == "in" else not found

        compare = _NUMERIC_COMPARATORS.get(op)
        if compare is None:
            self.logger.warning("Unknown condition operator", operator=op)
            return False

        expected = cast_to_context_type(operand, context_value)
        if not (_is_number(context_value) and _is_number(expected)):
            return False
        return compare(context_value, expected)

    def _resolve_operand(self, value: Any, context: EvaluationContext, scope: ResolutionScope) -> Any:
        if isinstance(value, LiteralValue):
            return value.value

        if self.reference_lookup is None:
            self.logger.debug("No reference lookup configured", config_name=value.config_name)
            return _UNRESOLVED

        try:
            return self.reference_lookup(value, context, scope)
        except ReferenceResolutionError as e:
            self.logger.debug(
                "Reference operand unresolved",
                config_name=value.config_name,
                reason=e.message
            )
            return _UNRESOLVED
