# src/tokensim/engine/aggregation.py
"""Queue aggregation methods.

Each method reduces the buffered tokens of a queue to one value and
describes how it got there. sum and average require numeric values;
count, first and last accept anything.
"""

from collections.abc import Sequence
from typing import Any

from tokensim.contracts.enums import AggregationMethod
from tokensim.contracts.identity import Token
from tokensim.contracts.results import AggregationResult


def _as_number(value: Any) -> int | float:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int | float):
        return value
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Cannot aggregate non-numeric value {value!r}") from e


def _fmt(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def aggregate(method: AggregationMethod, tokens: Sequence[Token]) -> AggregationResult:
    """Reduce tokens by method.

    Args:
        method: Aggregation method
        tokens: Buffered tokens, oldest first (must be non-empty)

    Returns:
        AggregationResult with the value and a calculation string such as
        ``sum(2, 4, 6) = 2 + 4 + 6 = 12``

    Raises:
        ValueError: If tokens is empty, or sum/average meets a non-numeric value
    """
    if not tokens:
        raise ValueError("Cannot aggregate an empty buffer")

    values = [t.value for t in tokens]
    contributions = tuple((t.token_id, t.value) for t in tokens)
    listing = ", ".join(_fmt(v) for v in values)

    match method:
        case AggregationMethod.SUM:
            numbers = [_as_number(v) for v in values]
            result: Any = sum(numbers)
            steps = " + ".join(_fmt(n) for n in numbers)
            calculation = f"sum({listing}) = {steps} = {_fmt(result)}"
        case AggregationMethod.AVERAGE:
            numbers = [_as_number(v) for v in values]
            result = sum(numbers) / len(numbers)
            steps = " + ".join(_fmt(n) for n in numbers)
            calculation = f"average({listing}) = ({steps}) / {len(numbers)} = {_fmt(result)}"
        case AggregationMethod.COUNT:
            result = len(values)
            calculation = f"count({listing}) = {result}"
        case AggregationMethod.FIRST:
            result = values[0]
            calculation = f"first({listing}) = {_fmt(result)}"
        case AggregationMethod.LAST:
            result = values[-1]
            calculation = f"last({listing}) = {_fmt(result)}"
        case _:
            raise ValueError(f"Unknown aggregation method: {method}")

    return AggregationResult(
        method=method.value,
        value=result,
        calculation=calculation,
        contributions=contributions,
    )
