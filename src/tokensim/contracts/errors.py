"""Exception types raised across subsystem boundaries.

Failures that happen inside a tick are not raised to callers of the
simulation. They are recorded as ``error`` ledger entries and appended
to the user-visible error list. The exceptions here cover the paths
where raising is the contract: strict file loading, formula parsing,
and the cascade work queue.
"""


class SimulationError(Exception):
    """Base class for tokensim errors."""


class DefinitionValidationError(SimulationError):
    """Raised when a graph definition fails validation.

    Carries every collected error message, not just the first.
    """

    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        summary = "; ".join(self.errors[:3])
        if len(self.errors) > 3:
            summary += f" (+{len(self.errors) - 3} more)"
        super().__init__(f"Invalid graph definition: {summary}")


class ExpressionSecurityError(SimulationError):
    """Raised when a formula uses a construct outside the allowed subset."""


class ExpressionSyntaxError(SimulationError):
    """Raised when a formula is not valid expression syntax."""


class ExpressionEvaluationError(SimulationError):
    """Raised when a valid formula fails against a concrete context."""


class CascadeOverflowError(SimulationError):
    """Raised when a token cascade exceeds the per-delivery iteration cap.

    A cycle of Process nodes with no time-gating would otherwise keep
    firing forever within one tick.
    """

    def __init__(self, origin_node_id: str, iterations: int, pending: int) -> None:
        self.origin_node_id = origin_node_id
        self.iterations = iterations
        self.pending = pending
        super().__init__(
            f"Cascade from node '{origin_node_id}' exceeded {iterations} "
            f"deliveries ({pending} still queued)"
        )


class UnknownNodeError(SimulationError):
    """Raised when an operation names a node id that is not loaded."""

    def __init__(self, node_id: str) -> None:
        self.node_id = node_id
        super().__init__(f"Unknown node id: '{node_id}'")
