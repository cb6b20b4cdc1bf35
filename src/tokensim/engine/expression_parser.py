# src/tokensim/engine/expression_parser.py
"""Safe formula parser for transformations, conditions and actions.

Formulas are Python expression syntax restricted to a whitelist of AST
nodes. Parsing validates the whole tree up front, so a formula that
constructs a lambda, reaches for a dunder, or calls an arbitrary function
is rejected before it ever sees data.

Names resolve against the evaluation context. Attribute access on a dict
is key lookup, so ``inputs.a.value`` and ``inputs['a']['value']`` are the
same thing.
"""

import ast
import math
import operator
from functools import lru_cache
from typing import Any

from tokensim.contracts.errors import (
    ExpressionEvaluationError,
    ExpressionSecurityError,
    ExpressionSyntaxError,
    SimulationError,
)
from tokensim.contracts.results import FormulaResult

_BIN_OPS: dict[type[ast.operator], Any] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}

_UNARY_OPS: dict[type[ast.unaryop], Any] = {
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
    ast.Not: operator.not_,
}

_COMPARE_OPS: dict[type[ast.cmpop], Any] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
}

# Exponents above this are refused at evaluation time
MAX_EXPONENT = 1000

# Integer powers whose result would exceed this many digits are refused
MAX_POWER_DIGITS = 10_000


def _check_power(base: Any, exponent: Any) -> None:
    """Refuse powers that would build an enormous integer."""
    if not isinstance(exponent, int | float):
        return
    if abs(exponent) > MAX_EXPONENT:
        raise ExpressionEvaluationError(f"Exponent too large: {exponent}")
    if isinstance(base, int) and abs(base) > 1 and exponent > 0:
        if math.log10(abs(base)) * exponent > MAX_POWER_DIGITS:
            raise ExpressionEvaluationError("Power result too large")


def _guarded_pow(base: Any, exponent: Any) -> Any:
    _check_power(base, exponent)
    return base**exponent


ALLOWED_FUNCTIONS: dict[str, Any] = {
    "abs": abs,
    "min": min,
    "max": max,
    "round": round,
    "floor": math.floor,
    "ceil": math.ceil,
    "sqrt": math.sqrt,
    "pow": _guarded_pow,
}

_SIMPLE_NODES = (
    ast.Expression,
    ast.Constant,
    ast.Name,
    ast.Load,
    ast.BinOp,
    ast.UnaryOp,
    ast.BoolOp,
    ast.And,
    ast.Or,
    ast.Compare,
    ast.IfExp,
    ast.Subscript,
    ast.List,
    ast.Tuple,
    ast.Set,
    ast.Dict,
    ast.Slice,
)


class _SecurityValidator(ast.NodeVisitor):
    """Walks a parsed expression and rejects anything off the whitelist."""

    def generic_visit(self, node: ast.AST) -> None:
        if isinstance(node, ast.operator | ast.unaryop | ast.cmpop):
            if type(node) not in _BIN_OPS | _UNARY_OPS | _COMPARE_OPS:
                raise ExpressionSecurityError(
                    f"Operator not allowed: {type(node).__name__}"
                )
            return
        if not isinstance(node, _SIMPLE_NODES):
            raise ExpressionSecurityError(
                f"Construct not allowed: {type(node).__name__}"
            )
        super().generic_visit(node)

    def visit_Name(self, node: ast.Name) -> None:
        if node.id.startswith("_"):
            raise ExpressionSecurityError(f"Private name not allowed: {node.id}")

    def visit_Attribute(self, node: ast.Attribute) -> None:
        if node.attr.startswith("_"):
            raise ExpressionSecurityError(
                f"Private attribute not allowed: {node.attr}"
            )
        self.visit(node.value)

    def visit_Starred(self, node: ast.Starred) -> None:
        raise ExpressionSecurityError("Starred expressions not allowed")

    def visit_Dict(self, node: ast.Dict) -> None:
        if any(key is None for key in node.keys):
            raise ExpressionSecurityError("Dict unpacking not allowed")
        self.generic_visit(node)

    def visit_Call(self, node: ast.Call) -> None:
        if node.keywords:
            raise ExpressionSecurityError("Keyword arguments not allowed")
        func = node.func
        if isinstance(func, ast.Name):
            if func.id not in ALLOWED_FUNCTIONS:
                raise ExpressionSecurityError(f"Function not allowed: {func.id}")
        elif isinstance(func, ast.Attribute) and func.attr == "get":
            if not 1 <= len(node.args) <= 2:
                raise ExpressionSecurityError("get() takes a key and an optional default")
            self.visit(func.value)
        else:
            raise ExpressionSecurityError("Only whitelisted functions and .get() may be called")
        for arg in node.args:
            self.visit(arg)


class ExpressionParser:
    """Parsed, validated formula ready to evaluate against contexts.

    Raises ExpressionSyntaxError or ExpressionSecurityError from the
    constructor. evaluate() raises ExpressionEvaluationError (or the
    arithmetic error itself) when the formula fails against a context.
    """

    def __init__(self, expression: str) -> None:
        self._expression = expression
        try:
            tree = ast.parse(expression.strip(), mode="eval")
            _SecurityValidator().visit(tree)
        except SyntaxError as e:
            raise ExpressionSyntaxError(f"Invalid expression '{expression}': {e.msg}") from e
        except (RecursionError, MemoryError) as e:
            raise ExpressionSyntaxError("Expression too deeply nested") from e
        self._tree = tree

    @property
    def expression(self) -> str:
        return self._expression

    def __repr__(self) -> str:
        return f"ExpressionParser({self._expression!r})"

    def names(self) -> set[str]:
        """Top-level names the formula reads from its context."""
        called = {
            n.func.id
            for n in ast.walk(self._tree)
            if isinstance(n, ast.Call) and isinstance(n.func, ast.Name)
        }
        return {
            n.id for n in ast.walk(self._tree) if isinstance(n, ast.Name)
        } - called

    def evaluate(self, context: dict[str, Any]) -> Any:
        return self._eval(self._tree.body, context)

    def _eval(self, node: ast.expr, ctx: dict[str, Any]) -> Any:
        match node:
            case ast.Constant(value=value):
                return value
            case ast.Name(id=name):
                if name in ctx:
                    return ctx[name]
                raise ExpressionEvaluationError(f"Unknown name: {name}")
            case ast.BinOp(left=left, op=op, right=right):
                lhs = self._eval(left, ctx)
                rhs = self._eval(right, ctx)
                if isinstance(op, ast.Pow):
                    _check_power(lhs, rhs)
                return _BIN_OPS[type(op)](lhs, rhs)
            case ast.UnaryOp(op=op, operand=operand):
                return _UNARY_OPS[type(op)](self._eval(operand, ctx))
            case ast.BoolOp(op=ast.And(), values=values):
                result: Any = True
                for value_node in values:
                    result = self._eval(value_node, ctx)
                    if not result:
                        return result
                return result
            case ast.BoolOp(op=ast.Or(), values=values):
                result = False
                for value_node in values:
                    result = self._eval(value_node, ctx)
                    if result:
                        return result
                return result
            case ast.Compare(left=left, ops=ops, comparators=comparators):
                lhs = self._eval(left, ctx)
                for op, comparator in zip(ops, comparators, strict=True):
                    rhs = self._eval(comparator, ctx)
                    if not _COMPARE_OPS[type(op)](lhs, rhs):
                        return False
                    lhs = rhs
                return True
            case ast.IfExp(test=test, body=body, orelse=orelse):
                if self._eval(test, ctx):
                    return self._eval(body, ctx)
                return self._eval(orelse, ctx)
            case ast.Subscript(value=value, slice=index):
                container = self._eval(value, ctx)
                key = self._eval(index, ctx)
                try:
                    return container[key]
                except (KeyError, IndexError, TypeError) as e:
                    raise ExpressionEvaluationError(f"Cannot index with {key!r}") from e
            case ast.Slice(lower=lower, upper=upper, step=step):
                return slice(
                    self._eval(lower, ctx) if lower else None,
                    self._eval(upper, ctx) if upper else None,
                    self._eval(step, ctx) if step else None,
                )
            case ast.Attribute(value=value, attr=attr):
                container = self._eval(value, ctx)
                if isinstance(container, dict) and attr in container:
                    return container[attr]
                raise ExpressionEvaluationError(f"No field '{attr}'")
            case ast.Call(func=ast.Name(id=fname), args=args):
                return ALLOWED_FUNCTIONS[fname](*(self._eval(a, ctx) for a in args))
            case ast.Call(func=ast.Attribute(value=value), args=args):
                container = self._eval(value, ctx)
                if not isinstance(container, dict):
                    raise ExpressionEvaluationError("get() is only available on mappings")
                return container.get(*(self._eval(a, ctx) for a in args))
            case ast.List(elts=elts):
                return [self._eval(e, ctx) for e in elts]
            case ast.Tuple(elts=elts):
                return tuple(self._eval(e, ctx) for e in elts)
            case ast.Set(elts=elts):
                return {self._eval(e, ctx) for e in elts}
            case ast.Dict(keys=keys, values=values):
                return {
                    self._eval(k, ctx): self._eval(v, ctx)
                    for k, v in zip(keys, values, strict=True)
                    if k is not None
                }
            case _:
                raise ExpressionSecurityError(f"Construct not allowed: {type(node).__name__}")


@lru_cache(maxsize=512)
def compile_expression(expression: str) -> ExpressionParser:
    """Parse once per distinct formula string."""
    return ExpressionParser(expression)


def evaluate_formula(expression: str, context: dict[str, Any]) -> FormulaResult:
    """Evaluate a formula, returning failures as data.

    Never raises. Parse errors, security rejections, unknown names and
    arithmetic failures all come back as ``FormulaResult.failure``.

    Args:
        expression: Formula text
        context: Names visible to the formula

    Returns:
        FormulaResult with either a value or an error message
    """
    if not expression or not expression.strip():
        return FormulaResult.failure("Empty formula")
    try:
        parser = compile_expression(expression)
        return FormulaResult.success(parser.evaluate(context))
    except SimulationError as e:
        return FormulaResult.failure(str(e))
    except (ArithmeticError, TypeError, ValueError) as e:
        return FormulaResult.failure(f"{type(e).__name__}: {e}")
    except RecursionError:
        return FormulaResult.failure("Expression too deeply nested")
