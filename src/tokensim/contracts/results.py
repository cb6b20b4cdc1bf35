"""Operation outcomes.

These types answer: "What did an operation produce?"
"""

from dataclasses import dataclass, field
from typing import Any, Literal


@dataclass(frozen=True)
class FormulaResult:
    """Outcome of evaluating a formula. Errors are data, never raised.

    Use the factory methods to create instances.
    """

    status: Literal["success", "error"]
    value: Any = None
    error: str | None = None

    @classmethod
    def success(cls, value: Any) -> "FormulaResult":
        return cls(status="success", value=value)

    @classmethod
    def failure(cls, error: str) -> "FormulaResult":
        return cls(status="error", error=error)

    @property
    def ok(self) -> bool:
        return self.status == "success"


@dataclass(frozen=True)
class AggregationResult:
    """Outcome of reducing a queue's buffered values.

    Attributes:
        value: Reduced value
        calculation: Human-readable derivation, e.g.
            ``sum(2, 4, 6) = 2 + 4 + 6 = 12``
        contributions: (token_id, value) of every consumed token in
            buffer order
    """

    method: str
    value: Any
    calculation: str
    contributions: tuple[tuple[str, Any], ...] = ()


@dataclass(frozen=True)
class DeliveryOutcome:
    """What happened when a token reached a destination node."""

    destination_id: str
    accepted: bool
    reason: str | None = None


@dataclass
class TickReport:
    """Summary of one tick, handed to tick listeners."""

    tick: int
    tokens_created: int = 0
    deliveries: int = 0
    errors: list[str] = field(default_factory=list)
