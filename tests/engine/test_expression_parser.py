# tests/engine/test_expression_parser.py
"""Tests for safe formula parser."""

import pytest

from tokensim.engine.expression_parser import (
    ExpressionParser,
    ExpressionSecurityError,
    ExpressionSyntaxError,
    evaluate_formula,
)
from tokensim.contracts.errors import ExpressionEvaluationError


class TestExpressionParserBasicOperations:
    """Test basic allowed operations."""

    def test_simple_equality(self) -> None:
        parser = ExpressionParser("status == 'active'")
        assert parser.evaluate({"status": "active"}) is True
        assert parser.evaluate({"status": "inactive"}) is False

    def test_numeric_comparison(self) -> None:
        parser = ExpressionParser("value >= 0.85")
        assert parser.evaluate({"value": 0.9}) is True
        assert parser.evaluate({"value": 0.85}) is True
        assert parser.evaluate({"value": 0.8}) is False

    def test_not_equal(self) -> None:
        parser = ExpressionParser("state != 'done'")
        assert parser.evaluate({"state": "busy"}) is True
        assert parser.evaluate({"state": "done"}) is False

    def test_chained_comparison(self) -> None:
        parser = ExpressionParser("0 < count < 10")
        assert parser.evaluate({"count": 5}) is True
        assert parser.evaluate({"count": 10}) is False


class TestExpressionParserArithmetic:
    """Arithmetic used by process formulas."""

    def test_addition(self) -> None:
        assert ExpressionParser("a_value + b_value").evaluate({"a_value": 2, "b_value": 3}) == 5

    def test_precedence(self) -> None:
        assert ExpressionParser("2 + 3 * 4").evaluate({}) == 14

    def test_division(self) -> None:
        assert ExpressionParser("x / 4").evaluate({"x": 10}) == 2.5

    def test_floor_division_and_modulo(self) -> None:
        assert ExpressionParser("x // 3").evaluate({"x": 10}) == 3
        assert ExpressionParser("x % 3").evaluate({"x": 10}) == 1

    def test_power(self) -> None:
        assert ExpressionParser("x ** 2").evaluate({"x": 7}) == 49

    def test_unary_minus(self) -> None:
        assert ExpressionParser("-x").evaluate({"x": 4}) == -4

    def test_exponent_is_capped(self) -> None:
        parser = ExpressionParser("2 ** x")
        with pytest.raises(ExpressionEvaluationError, match="Exponent too large"):
            parser.evaluate({"x": 5000})

    def test_power_tower_is_refused(self) -> None:
        parser = ExpressionParser("((10 ** 1000) ** 1000) ** 1000")
        with pytest.raises(ExpressionEvaluationError, match="Power result too large"):
            parser.evaluate({})

    def test_large_base_is_refused(self) -> None:
        parser = ExpressionParser("x ** 50")
        with pytest.raises(ExpressionEvaluationError, match="Power result too large"):
            parser.evaluate({"x": 10**500})

    def test_pow_function_is_guarded(self) -> None:
        parser = ExpressionParser("pow(x, 1000)")
        assert ExpressionParser("pow(2, 10)").evaluate({}) == 1024
        with pytest.raises(ExpressionEvaluationError, match="Power result too large"):
            parser.evaluate({"x": 10**1000})


class TestExpressionParserFunctions:
    """Whitelisted math helpers."""

    def test_min_max(self) -> None:
        assert ExpressionParser("max(a, b)").evaluate({"a": 2, "b": 9}) == 9
        assert ExpressionParser("min(values)").evaluate({"values": [4, 1, 3]}) == 1

    def test_math_helpers(self) -> None:
        assert ExpressionParser("sqrt(16)").evaluate({}) == 4.0
        assert ExpressionParser("floor(2.7)").evaluate({}) == 2
        assert ExpressionParser("ceil(2.1)").evaluate({}) == 3
        assert ExpressionParser("abs(-3)").evaluate({}) == 3
        assert ExpressionParser("round(2.567, 2)").evaluate({}) == 2.57

    def test_get_with_default(self) -> None:
        parser = ExpressionParser("variables.get('count', 0) + 1")
        assert parser.evaluate({"variables": {}}) == 1
        assert parser.evaluate({"variables": {"count": 4}}) == 5

    def test_get_on_non_mapping(self) -> None:
        parser = ExpressionParser("x.get('a')")
        with pytest.raises(ExpressionEvaluationError, match="only available on mappings"):
            parser.evaluate({"x": 3})


class TestExpressionParserNames:
    """Names resolve against the evaluation context."""

    def test_attribute_is_key_lookup(self) -> None:
        parser = ExpressionParser("inputs.a.value * 2")
        assert parser.evaluate({"inputs": {"a": {"value": 21}}}) == 42

    def test_attribute_and_subscript_agree(self) -> None:
        context = {"inputs": {"a": {"value": 3}}}
        assert ExpressionParser("inputs.a.value").evaluate(context) == ExpressionParser(
            "inputs['a']['value']"
        ).evaluate(context)

    def test_unknown_name(self) -> None:
        with pytest.raises(ExpressionEvaluationError, match="Unknown name: missing"):
            ExpressionParser("missing + 1").evaluate({})

    def test_unknown_field(self) -> None:
        with pytest.raises(ExpressionEvaluationError, match="No field 'b'"):
            ExpressionParser("inputs.b").evaluate({"inputs": {"a": 1}})

    def test_bad_index(self) -> None:
        with pytest.raises(ExpressionEvaluationError, match="Cannot index"):
            ExpressionParser("values[5]").evaluate({"values": [1]})

    def test_names_excludes_functions(self) -> None:
        assert ExpressionParser("max(a, b) + c").names() == {"a", "b", "c"}


class TestExpressionParserBooleanOperations:
    """Test boolean and/or/not operations."""

    def test_and_operator(self) -> None:
        parser = ExpressionParser("count > 0 and state == 'ready'")
        assert parser.evaluate({"count": 1, "state": "ready"}) is True
        assert parser.evaluate({"count": 0, "state": "ready"}) is False

    def test_short_circuit_skips_unknown_names(self) -> None:
        assert ExpressionParser("False and missing").evaluate({}) is False
        assert ExpressionParser("True or missing").evaluate({}) is True

    def test_not_operator(self) -> None:
        assert ExpressionParser("not flag").evaluate({"flag": False}) is True

    def test_ternary(self) -> None:
        parser = ExpressionParser("'high' if value > 5 else 'low'")
        assert parser.evaluate({"value": 6}) == "high"
        assert parser.evaluate({"value": 5}) == "low"

    def test_membership(self) -> None:
        parser = ExpressionParser("state in ['a', 'b']")
        assert parser.evaluate({"state": "b"}) is True
        assert parser.evaluate({"state": "c"}) is False

    def test_is_none(self) -> None:
        parser = ExpressionParser("variables.get('x') is None")
        assert parser.evaluate({"variables": {}}) is True


class TestExpressionParserSecurityRejections:
    """Test that forbidden constructs are rejected at parse time."""

    def test_reject_import(self) -> None:
        with pytest.raises(ExpressionSecurityError, match="Function not allowed"):
            ExpressionParser("__import__('os')")

    def test_reject_eval(self) -> None:
        with pytest.raises(ExpressionSecurityError, match="Function not allowed: eval"):
            ExpressionParser("eval('1')")

    def test_reject_lambda(self) -> None:
        with pytest.raises(ExpressionSecurityError, match="Lambda"):
            ExpressionParser("lambda: True")

    def test_reject_calling_expression(self) -> None:
        with pytest.raises(ExpressionSecurityError, match="Only whitelisted functions"):
            ExpressionParser("(lambda: True)()")

    def test_reject_list_comprehension(self) -> None:
        with pytest.raises(ExpressionSecurityError, match="ListComp"):
            ExpressionParser("[x for x in values]")

    def test_reject_generator_expression(self) -> None:
        with pytest.raises(ExpressionSecurityError, match="GeneratorExp"):
            ExpressionParser("max(x for x in values)")

    def test_reject_private_name(self) -> None:
        with pytest.raises(ExpressionSecurityError, match="Private name"):
            ExpressionParser("_secret + 1")

    def test_reject_dunder_attribute(self) -> None:
        with pytest.raises(ExpressionSecurityError, match="Private attribute"):
            ExpressionParser("value.__class__")

    def test_reject_method_call_not_get(self) -> None:
        with pytest.raises(ExpressionSecurityError, match="Only whitelisted functions"):
            ExpressionParser("variables.keys()")

    def test_reject_assignment_expression(self) -> None:
        with pytest.raises(ExpressionSecurityError, match="NamedExpr"):
            ExpressionParser("(x := 5)")

    def test_reject_fstring(self) -> None:
        with pytest.raises(ExpressionSecurityError, match="JoinedStr"):
            ExpressionParser("f'value: {x}'")

    def test_reject_bitwise_operator(self) -> None:
        with pytest.raises(ExpressionSecurityError, match="Operator not allowed"):
            ExpressionParser("a & b")

    def test_reject_get_arity(self) -> None:
        with pytest.raises(ExpressionSecurityError, match="key and an optional default"):
            ExpressionParser("variables.get()")
        with pytest.raises(ExpressionSecurityError, match="key and an optional default"):
            ExpressionParser("variables.get('a', 1, 2)")

    def test_reject_keyword_arguments(self) -> None:
        with pytest.raises(ExpressionSecurityError, match="Keyword arguments"):
            ExpressionParser("round(x, ndigits=2)")

    def test_reject_starred_expression(self) -> None:
        with pytest.raises(ExpressionSecurityError, match="Starred expressions"):
            ExpressionParser("[*values]")

    def test_reject_dict_spread(self) -> None:
        with pytest.raises(ExpressionSecurityError, match="Dict unpacking"):
            ExpressionParser("{'key': 1, **other}")


class TestExpressionParserSyntaxErrors:
    """Test that syntax errors are handled correctly."""

    def test_invalid_syntax(self) -> None:
        with pytest.raises(ExpressionSyntaxError, match="Invalid expression"):
            ExpressionParser("value ==")

    def test_mismatched_parens(self) -> None:
        with pytest.raises(ExpressionSyntaxError, match="Invalid expression"):
            ExpressionParser("(value == 1")

    def test_deep_nesting(self) -> None:
        with pytest.raises(ExpressionSyntaxError):
            ExpressionParser("1+" * 3000 + "1")


class TestExpressionParserEdgeCases:
    def test_expression_property(self) -> None:
        parser = ExpressionParser("value == 1")
        assert parser.expression == "value == 1"

    def test_repr(self) -> None:
        parser = ExpressionParser("inputs['x'] == 1")
        assert repr(parser) == "ExpressionParser(\"inputs['x'] == 1\")"

    def test_dict_literal(self) -> None:
        parser = ExpressionParser("{'a': 1, 'b': 2}[key]")
        assert parser.evaluate({"key": "b"}) == 2

    def test_slice(self) -> None:
        assert ExpressionParser("values[1:]").evaluate({"values": [1, 2, 3]}) == [2, 3]


class TestEvaluateFormula:
    """evaluate_formula returns failures as data."""

    def test_success(self) -> None:
        result = evaluate_formula("a + b", {"a": 1, "b": 2})
        assert result.ok
        assert result.value == 3

    def test_empty_formula(self) -> None:
        result = evaluate_formula("   ", {})
        assert not result.ok
        assert result.error == "Empty formula"

    def test_unknown_name_is_failure(self) -> None:
        result = evaluate_formula("x * 2", {})
        assert not result.ok
        assert "Unknown name: x" in result.error

    def test_division_by_zero_is_failure(self) -> None:
        result = evaluate_formula("1 / x", {"x": 0})
        assert not result.ok
        assert result.error.startswith("ZeroDivisionError")

    def test_type_error_is_failure(self) -> None:
        result = evaluate_formula("x + 1", {"x": "text"})
        assert not result.ok
        assert result.error.startswith("TypeError")

    def test_security_violation_is_failure(self) -> None:
        result = evaluate_formula("__import__('os')", {})
        assert not result.ok
        assert "not allowed" in result.error

    def test_syntax_error_is_failure(self) -> None:
        assert not evaluate_formula("1 +", {}).ok

    def test_deep_nesting_is_failure(self) -> None:
        result = evaluate_formula("1+" * 3000 + "1", {})
        assert not result.ok
