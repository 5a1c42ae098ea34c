"""
Unit tests for condition evaluation.
"""

from unittest.mock import MagicMock

import pytest

from replane_sdk.app.rules.bucketer import Bucketer
from replane_sdk.app.rules.evaluator import ConditionEvaluator, ResolutionScope, cast_to_context_type
from replane_sdk.app.rules.models import parse_condition
from replane_shared.errors import ReferenceResolutionError
from replane_shared.test_helpers import ConfigFactory as F


class TestPropertyConditions:
    """Test cases for comparison operators."""

    @pytest.fixture
    def evaluator(self):
        return ConditionEvaluator()

    def test_equals(self, evaluator):
        condition = F.condition("equals", "plan", "premium")
        assert evaluator.evaluate(condition, {"plan": "premium"}) is True
        assert evaluator.evaluate(condition, {"plan": "free"}) is False

    def test_bare_operand_is_literal(self, evaluator):
        condition = {"operator": "equals", "property": "plan", "value": "premium"}
        assert evaluator.evaluate(condition, {"plan": "premium"}) is True

    def test_missing_property_is_false(self, evaluator):
        assert evaluator.evaluate(F.condition("equals", "plan", "premium"), {}) is False
        assert evaluator.evaluate(F.condition("not_in", "plan", ["a"]), {}) is False

    def test_none_context_value_is_false(self, evaluator):
        assert evaluator.evaluate(F.condition("equals", "plan", None), {"plan": None}) is False

    def test_in_and_not_in(self, evaluator):
        condition = F.condition("in", "country", ["DE", "FR"])
        assert evaluator.evaluate(condition, {"country": "DE"}) is True
        assert evaluator.evaluate(condition, {"country": "US"}) is False

        condition = F.condition("not_in", "country", ["DE", "FR"])
        assert evaluator.evaluate(condition, {"country": "US"}) is True
        assert evaluator.evaluate(condition, {"country": "FR"}) is False

    def test_in_requires_sequence_operand(self, evaluator):
        assert evaluator.evaluate(F.condition("in", "country", "DE"), {"country": "DE"}) is False
        assert evaluator.evaluate(F.condition("not_in", "country", "DE"), {"country": "US"}) is False

    @pytest.mark.parametrize("operator,operand,age,expected", [
        ("less_than", 18, 17, True),
        ("less_than", 18, 18, False),
        ("less_than_or_equal", 18, 18, True),
        ("greater_than", 18, 18, False),
        ("greater_than", 18, 18.5, True),
        ("greater_than_or_equal", 18, 18, True),
    ])
    def test_numeric_comparisons(self, evaluator, operator, operand, age, expected):
        assert evaluator.evaluate(F.condition(operator, "age", operand), {"age": age}) is expected

    def test_numeric_comparison_with_string_context_is_false(self, evaluator):
        assert evaluator.evaluate(F.condition("greater_than", "age", 18), {"age": "twenty"}) is False

    def test_numeric_comparison_never_uses_booleans(self, evaluator):
        assert evaluator.evaluate(F.condition("greater_than", "flag", 0), {"flag": True}) is False

    def test_bool_operand_never_equals_number(self, evaluator):
        assert evaluator.evaluate(F.condition("equals", "count", True), {"count": 1}) is False
        assert evaluator.evaluate(F.condition("in", "count", [True]), {"count": 1}) is False

    def test_loose_casting(self, evaluator):
        assert evaluator.evaluate(F.condition("equals", "age", "25"), {"age": 25}) is True
        assert evaluator.evaluate(F.condition("greater_than", "age", "18"), {"age": 25}) is True
        assert evaluator.evaluate(F.condition("equals", "beta", "true"), {"beta": True}) is True
        assert evaluator.evaluate(F.condition("equals", "id", 42), {"id": "42"}) is True
        assert evaluator.evaluate(F.condition("in", "age", ["18", "25"]), {"age": 25}) is True
        assert evaluator.evaluate(F.condition("in", "flag", [1]), {"flag": True}) is True

    def test_non_scalar_context_is_false(self, evaluator):
        assert evaluator.evaluate(F.condition("equals", "tags", ["a"]), {"tags": ["a"]}) is False


class TestCastToContextType:
    """Test cases for loose operand casting."""

    @pytest.mark.parametrize("expected,context_value,result", [
        ("25", 25, 25),
        ("2.5", 1.0, 2.5),
        ("abc", 1, "abc"),
        ("true", False, True),
        ("false", True, False),
        (0, True, False),
        (7, "x", "7"),
        (True, "x", "true"),
        ("same", "x", "same"),
    ])
    def test_casts(self, expected, context_value, result):
        assert cast_to_context_type(expected, context_value) == result


class TestCompositeConditions:
    """Test cases for and / or / not."""

    @pytest.fixture
    def evaluator(self):
        return ConditionEvaluator()

    def test_and(self, evaluator):
        condition = F.all_of(F.condition("equals", "a", 1), F.condition("equals", "b", 2))
        assert evaluator.evaluate(condition, {"a": 1, "b": 2}) is True
        assert evaluator.evaluate(condition, {"a": 1, "b": 3}) is False

    def test_or(self, evaluator):
        condition = F.any_of(F.condition("equals", "a", 1), F.condition("equals", "b", 2))
        assert evaluator.evaluate(condition, {"a": 0, "b": 2}) is True
        assert evaluator.evaluate(condition, {"a": 0, "b": 0}) is False

    def test_not(self, evaluator):
        condition = F.negate(F.condition("equals", "a", 1))
        assert evaluator.evaluate(condition, {"a": 2}) is True
        assert evaluator.evaluate(condition, {"a": 1}) is False

    def test_not_of_missing_property_is_true(self, evaluator):
        assert evaluator.evaluate(F.negate(F.condition("equals", "a", 1)), {}) is True

    def test_empty_composites(self, evaluator):
        assert evaluator.evaluate(F.all_of(), {}) is True
        assert evaluator.evaluate(F.any_of(), {}) is False

    def test_and_short_circuits(self):
        bucketer = MagicMock(spec=Bucketer)
        evaluator = ConditionEvaluator(bucketer=bucketer)
        condition = F.all_of(F.condition("equals", "a", 1), F.segmentation("user", 0, 100, "s"))

        assert evaluator.evaluate(condition, {"a": 2, "user": "u"}) is False
        bucketer.assign.assert_not_called()

    def test_or_short_circuits(self):
        bucketer = MagicMock(spec=Bucketer)
        evaluator = ConditionEvaluator(bucketer=bucketer)
        condition = F.any_of(F.condition("equals", "a", 1), F.segmentation("user", 0, 100, "s"))

        assert evaluator.evaluate(condition, {"a": 1, "user": "u"}) is True
        bucketer.assign.assert_not_called()

    def test_evaluate_all_is_conjunction(self, evaluator):
        conditions = [F.condition("equals", "a", 1), F.condition("equals", "b", 2)]
        assert evaluator.evaluate_all(conditions, {"a": 1, "b": 2}) is True
        assert evaluator.evaluate_all(conditions, {"a": 1}) is False
        assert evaluator.evaluate_all([], {}) is True


class TestSegmentation:
    """Test cases for percentage rollouts."""

    @pytest.fixture
    def evaluator(self):
        return ConditionEvaluator()

    def test_stable_over_repeated_evaluation(self, evaluator):
        condition = parse_condition(F.segmentation("userId", 0, 50, "exp1"))
        context = {"userId": "user-123"}
        bucket = Bucketer().assign("exp1", "user-123")

        results = {evaluator.evaluate(condition, context) for _ in range(1000)}
        buckets = {Bucketer().assign("exp1", "user-123") for _ in range(1000)}

        assert buckets == {bucket}
        assert results == {bucket < 50}

    def test_half_open_range(self):
        bucketer = MagicMock(spec=Bucketer)
        evaluator = ConditionEvaluator(bucketer=bucketer)

        bucketer.assign.return_value = 50.0
        assert evaluator.evaluate(F.segmentation("u", 0, 50, "s"), {"u": "x"}) is False
        assert evaluator.evaluate(F.segmentation("u", 50, 100, "s"), {"u": "x"}) is True

    def test_missing_property_never_matches(self, evaluator):
        assert evaluator.evaluate(F.segmentation("userId", 0, 100, "s"), {}) is False

    def test_full_range_matches_everyone(self, evaluator):
        for i in range(100):
            assert evaluator.evaluate(F.segmentation("userId", 0, 100, "s"), {"userId": f"u{i}"}) is True


class TestTotality:
    """Evaluation never raises."""

    @pytest.fixture
    def evaluator(self):
        return ConditionEvaluator()

    def test_unknown_operator(self, evaluator):
        assert evaluator.evaluate({"operator": "matches", "property": "a", "value": "x"}, {"a": "x"}) is False

    def test_malformed_condition(self, evaluator):
        assert evaluator.evaluate({"operator": "segmentation", "property": "a"}, {"a": "x"}) is False

    def test_bucketer_failure(self):
        bucketer = MagicMock(spec=Bucketer)
        bucketer.assign.side_effect = RuntimeError("boom")
        evaluator = ConditionEvaluator(bucketer=bucketer)
        assert evaluator.evaluate(F.segmentation("u", 0, 100, "s"), {"u": "x"}) is False

    def test_reference_without_lookup(self, evaluator):
        condition = F.condition("equals", "plan", F.reference("default-plan"))
        assert evaluator.evaluate(condition, {"plan": "pro"}) is False

    def test_unresolvable_reference(self):
        lookup = MagicMock(side_effect=ReferenceResolutionError("missing"))
        evaluator = ConditionEvaluator(reference_lookup=lookup)
        condition = F.condition("equals", "plan", F.reference("default-plan"))

        assert evaluator.evaluate(condition, {"plan": "pro"}, ResolutionScope()) is False
        lookup.assert_called_once()

    def test_resolved_reference(self):
        lookup = MagicMock(return_value="pro")
        evaluator = ConditionEvaluator(reference_lookup=lookup)
        condition = F.condition("equals", "plan", F.reference("default-plan"))

        assert evaluator.evaluate(condition, {"plan": "pro"}) is True
